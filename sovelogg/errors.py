"""Exceptions raised by the Sovelogg engine."""


class SoveloggError(Exception):
    """Base class for all Sovelogg errors."""


class DurabilityError(SoveloggError):
    """An event could not be durably written to the log.

    Nothing is projected when this is raised; the caller must retry the
    whole mutation.
    """


class PayloadError(SoveloggError, ValueError):
    """A known event type carried a malformed payload."""

    def __init__(self, event_type: str, message: str):
        super().__init__(f"{event_type}: {message}")
        self.event_type = event_type


class InvalidEventError(SoveloggError):
    """An event is well-formed but not allowed in the current state."""

    def __init__(self, message: str, index: int | None = None):
        super().__init__(message)
        self.index = index


class BatchTooLargeError(InvalidEventError):
    """A submitted batch exceeds the configured maximum size."""
