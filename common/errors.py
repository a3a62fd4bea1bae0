from typing import Optional


class ProtocolError(Exception):
    """Base class for every error raised by the session protocol."""
    pass


class DecodeError(ProtocolError, ValueError):
    """Raised when a frame is not a valid encoded envelope."""
    pass


class FrameTooLarge(ProtocolError):
    """Raised when a frame exceeds the transport's size limit."""
    pass


class UnknownEventError(ProtocolError, ValueError):
    """Raised when a handler is registered for an event the role does not emit."""

    def __init__(self, kind, role: str):
        super().__init__(f"{role} has no event {kind!r}")
        self.kind = kind
        self.role = role


class AuthenticationFailure(ProtocolError):
    """Raised on the client when the server rejects its login and nobody listens for 'rejected'."""

    def __init__(self, reason: Optional[str] = None):
        super().__init__(f"Failed to log in: {reason}")
        self.reason = reason
