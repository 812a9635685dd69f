
"""
Optional inference backends for detkit.

Backends are kept in a separate module so the decoding core stays
lightweight and can be used without installing inference runtimes.
"""

from __future__ import annotations

__all__ = []
