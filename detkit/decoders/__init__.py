"""
Head decoders: raw model outputs -> candidate detections.

Each decoder is an independent frozen dataclass holding only its read-only
geometry tables, so one instance can serve many inference calls.
"""

from .anchor import AnchorDecoder, AnchorTable, make_anchor_table, prepare_anchor_outputs, strides_from_output_shapes
from .base import Decoder, RawOutputs
from .grid import DEFAULT_STRIDES, GridDecoder, GridTable, make_grid_table
from .passthrough import PassthroughDecoder

__all__ = [
    "Decoder",
    "RawOutputs",
    "GridDecoder",
    "GridTable",
    "make_grid_table",
    "DEFAULT_STRIDES",
    "AnchorDecoder",
    "AnchorTable",
    "make_anchor_table",
    "prepare_anchor_outputs",
    "strides_from_output_shapes",
    "PassthroughDecoder",
]
