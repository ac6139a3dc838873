"""
SSH Session Module
Public key authenticated client and server for a single request/response exchange
"""
from .auth import AcceptAllKeys, AuthDecider, AuthorizedKeysDecider, AuthVerdict, RejectAllKeys
from .client import ClientSession, ClientState, SessionOutcome
from .errors import (
    AuthenticationFailedError,
    BindError,
    ChannelOpenError,
    ConnectionLostError,
    EncodingError,
    HostKeyVerificationError,
    KeyLoadError,
    NegotiationError,
    ProtocolViolation,
    SessionError,
)
from .hostkeys import AcceptAnyHostKey, KnownHostsPolicy, TrustPolicy
from .keys import load_identity_key
from .responder import ChannelResponder, ChannelState
from .server import ServerDispatcher, serve

__all__ = [
    'AcceptAllKeys', 'AuthDecider', 'AuthorizedKeysDecider', 'AuthVerdict', 'RejectAllKeys',
    'ClientSession', 'ClientState', 'SessionOutcome',
    'AuthenticationFailedError', 'BindError', 'ChannelOpenError', 'ConnectionLostError',
    'EncodingError', 'HostKeyVerificationError', 'KeyLoadError', 'NegotiationError',
    'ProtocolViolation', 'SessionError',
    'AcceptAnyHostKey', 'KnownHostsPolicy', 'TrustPolicy',
    'load_identity_key',
    'ChannelResponder', 'ChannelState',
    'ServerDispatcher', 'serve',
]
