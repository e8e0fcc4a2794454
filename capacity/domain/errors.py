"""
Error kinds raised by the analytics core.

Store and source failures are caught at the service boundary and degrade to
empty results; only caller mistakes (bad ranges, bad override values) are
allowed to propagate.
"""


class CapacityError(Exception):
    """Base class for every error raised by the analytics core."""


class StoreUnavailableError(CapacityError):
    """The event store could not be read."""


class SourceQueryFailedError(CapacityError):
    """A biometric source query failed or returned an error result."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(f"Biometric query for {key} failed: {reason}")
        self.key = key
        self.reason = reason


class InvalidRangeError(CapacityError, ValueError):
    """A date range whose end precedes its start, or a non-positive window."""


class InvalidInputError(CapacityError, ValueError):
    """A value outside the set the calculation accepts."""
