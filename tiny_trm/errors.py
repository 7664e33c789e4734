"""Exceptions raised by tiny_trm."""


class TRMError(Exception):
    """Base class for every error raised by this package."""


class DimensionMismatchError(TRMError, ValueError):
    """A vector length disagrees with the configured size."""

    def __init__(self, expected: int, actual: int, what: str = "input"):
        self.expected = expected
        self.actual = actual
        self.what = what
        super().__init__(f"Invalid {what} dimension: expected {expected}, got {actual}")


class NotReadyError(TRMError, RuntimeError):
    """backward() was called without a matching forward()."""


class PersistenceError(TRMError):
    """A serialized model record is malformed or has an unsupported version."""


class ConfigError(TRMError, ValueError):
    """A configuration value is out of range or unknown."""
