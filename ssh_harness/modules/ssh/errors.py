"""
SSH Session Errors

Exception taxonomy shared by the client and server sides of the harness.
"""


class SessionError(Exception):
    """Base class for every error raised by the session layer."""
    pass


class KeyLoadError(SessionError):
    """Raised when an identity or host key is missing, unreadable or malformed."""
    pass


class BindError(SessionError):
    """Raised when the server cannot bind its listening address."""
    pass


class NegotiationError(SessionError):
    """Raised when the transport to the peer cannot be established."""
    pass


class HostKeyVerificationError(NegotiationError):
    """Raised when the trust policy rejects the server's host key."""
    pass


class AuthenticationFailedError(SessionError):
    """Raised when the peer rejects the offered public key."""
    pass


class ChannelOpenError(SessionError):
    """Raised when the peer refuses to open a session channel."""
    pass


class ConnectionLostError(SessionError):
    """Raised when the connection drops or times out while waiting on a channel."""
    pass


class EncodingError(SessionError):
    """Raised when a channel payload is not valid UTF-8 text."""

    def __init__(self, chanid, data: bytes, reason: str):
        super().__init__(f"channel {chanid}: payload of {len(data)} bytes is not valid text ({reason})")
        self.chanid = chanid
        self.data = data


class ProtocolViolation(SessionError):
    """Raised when an event arrives for a channel that is not open."""
    pass
