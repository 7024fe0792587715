"""Error types raised across the detection pipeline."""


class SentinelError(Exception):
    """Base exception for engine errors."""

    pass


class InputInvalidError(SentinelError):
    """Raised when a feature input or profile is malformed.

    No verdict is produced; callers must treat the event as unknown, not
    cleared.
    """

    pass


class TierUnavailableError(SentinelError):
    """Raised when the deep classification tier cannot produce a result."""

    pass


class ResourceMonitorUnavailableError(SentinelError):
    """Raised when device resource telemetry cannot be sampled."""

    pass


class PatternStoreCorruptError(SentinelError):
    """Raised when persisted pattern state cannot be loaded."""

    pass


class ConfidenceInvariantError(SentinelError, AssertionError):
    """Raised when confidence arithmetic leaves the [0, 1] interval.

    This indicates a bug, not a runtime condition, and is never caught by
    the engine.
    """

    pass


def check_confidence(value: float, what: str = "confidence") -> float:
    """Return *value* unchanged, raising if it lies outside [0, 1]."""
    if not 0.0 <= value <= 1.0:
        raise ConfidenceInvariantError(f"{what} out of range: {value!r}")
    return value
