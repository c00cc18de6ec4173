"""Exception types raised by eventstream.

Transport faults never surface as exceptions; they drive the session into
the disconnected state. The errors below signal caller misuse.
"""


class EventStreamError(Exception):
    """Base class for all eventstream errors."""


class ConnectionClosedError(EventStreamError):
    """Raised when writing to a session that is not connected."""

    def __init__(self, message: str = "Session is not connected") -> None:
        super().__init__(message)


class RegistrationError(EventStreamError):
    """Raised when registering an inactive session to a channel."""


class ConstructionError(EventStreamError, ValueError):
    """Raised when transport input is missing required request fields."""
