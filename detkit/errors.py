class DetkitError(Exception):
    """Base class for detkit errors."""


class OutputShapeError(DetkitError, ValueError):
    """Raised when a model output does not match the configured decoder tables."""


class ConfigError(DetkitError, ValueError):
    """Raised when a detector config is missing, malformed or out of range."""
