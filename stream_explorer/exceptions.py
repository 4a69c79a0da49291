"""Exceptions raised by the stream explorer engine."""


class StreamExplorerError(Exception):
    """Base class for all stream explorer errors."""


class InvalidRangeError(StreamExplorerError, ValueError):
    """A user-entered time or time range was rejected before any fetch."""


class InvalidRecordIdError(StreamExplorerError, ValueError):
    """A record id is not in the truncated ISO-8601 form."""


class DerivedAttributeError(StreamExplorerError):
    """A derived attribute definition could not be compiled."""

    def __init__(self, name: str, message: str):
        super().__init__(f"custom attr {name}: {message}")
        self.name = name


class BackendError(StreamExplorerError):
    """A request to the profile/topic/id backend failed."""


class ProfileError(BackendError):
    """The profile could not be loaded, initialized or saved."""
