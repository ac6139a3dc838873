"""
SSH Client Session
Connects to a server with public key authentication and performs one
request/response exchange over a session channel.
"""
import sys
import socket
import logging
from dataclasses import dataclass
from enum import Enum
from typing import BinaryIO, Optional, Tuple

import paramiko
from paramiko.common import cMSG_DISCONNECT
from paramiko.ssh_exception import AuthenticationException, ChannelException, SSHException

from ssh_harness.core.config import ClientConfig
from .audit_logger import SSHAuditLogger
from .errors import (
    AuthenticationFailedError,
    ChannelOpenError,
    ConnectionLostError,
    HostKeyVerificationError,
    NegotiationError,
    SessionError,
)
from .events import ChannelEventStream, Closed, DataReceived, ExitStatus
from .hostkeys import AcceptAnyHostKey, TrustPolicy
from .keys import KeySource, resolve_identity_key

logger = logging.getLogger(__name__)

# RFC 4253 section 11.1
DISCONNECT_BY_APPLICATION = 11


class ClientState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATED = "authenticated"
    CHANNEL_OPEN = "channel_open"
    CLOSED = "closed"


@dataclass
class SessionOutcome:
    data: bytes = b""
    exit_code: Optional[int] = None


class ClientSession:
    """
    One outbound SSH connection.

    Use ``ClientSession.connect`` to get an authenticated session, ``send`` for
    the round trip and ``close`` (or a ``with`` block) to disconnect.
    """

    def __init__(self,
                 trust_policy: Optional[TrustPolicy] = None,
                 config: Optional[ClientConfig] = None,
                 output: Optional[BinaryIO] = None,
                 audit: Optional[SSHAuditLogger] = None):
        """
        Args:
            trust_policy: Server host key policy (default trusts every server)
            config: Client timeouts
            output: Sink that received data is streamed to (default stdout)
            audit: Audit logger for connection attempts
        """
        self.audit = audit or SSHAuditLogger()
        self.trust_policy = trust_policy or AcceptAnyHostKey(audit=self.audit)
        self.config = config or ClientConfig()
        self.output = output if output is not None else sys.stdout.buffer
        self.state = ClientState.DISCONNECTED
        self.transport: Optional[paramiko.Transport] = None

    @classmethod
    def connect(cls,
                identity_key: KeySource,
                username: str,
                address: Tuple[str, int],
                passphrase: Optional[str] = None,
                **kwargs) -> "ClientSession":
        """
        Connect and authenticate.

        Args:
            identity_key: Private key, or path to a private key file
            username: User to authenticate as
            address: (host, port) of the server
            passphrase: Passphrase for an encrypted key file
            **kwargs: Passed to the constructor

        Returns:
            A session in the AUTHENTICATED state

        Raises:
            KeyLoadError: the identity key cannot be loaded
            NegotiationError: the server is unreachable or the handshake failed
            HostKeyVerificationError: the trust policy rejected the server key
            AuthenticationFailedError: the server rejected the key
        """
        session = cls(**kwargs)
        session.open(identity_key, username, address, passphrase)
        return session

    def open(self,
             identity_key: KeySource,
             username: str,
             address: Tuple[str, int],
             passphrase: Optional[str] = None):
        if self.state is not ClientState.DISCONNECTED:
            raise SessionError(f"Session is {self.state.value}; a session connects only once")

        key = resolve_identity_key(identity_key, passphrase)
        host, port = address
        logger.info(f"Connecting to {username}@{host}:{port}")
        self.state = ClientState.CONNECTING

        try:
            self._negotiate(host, port)
            self._authenticate(username, key)
        except SessionError as e:
            self.audit.log_connection(host, port, username, connected=False, error=str(e))
            self._release()
            raise

        self.state = ClientState.AUTHENTICATED
        self.audit.log_connection(
            host, port, username, connected=True,
            host_key=self.transport.get_remote_server_key()
        )
        logger.info(f"Connected to {username}@{host}:{port}")

    def _negotiate(self, host: str, port: int):
        if not isinstance(port, int) or not 0 < port < 65536:
            raise NegotiationError(f"Invalid port {port!r}")
        try:
            sock = socket.create_connection((host, port), timeout=self.config.connect_timeout)
        except OSError as e:
            raise NegotiationError(f"Cannot reach {host}:{port}: {e}") from e

        self.transport = paramiko.Transport(sock)
        try:
            self.transport.start_client(timeout=self.config.connect_timeout)
        except (SSHException, EOFError, OSError) as e:
            raise NegotiationError(f"SSH negotiation with {host}:{port} failed: {e}") from e

        # known_hosts naming: bare host on the default port, [host]:port otherwise
        hostname = host if port == 22 else f"[{host}]:{port}"
        self.trust_policy.verify(hostname, self.transport.get_remote_server_key())

    def _authenticate(self, username: str, key: paramiko.PKey):
        try:
            remaining = self.transport.auth_publickey(username, key)
        except AuthenticationException as e:
            logger.error(f"Key authentication failed for {username}: {e}")
            raise AuthenticationFailedError(f"Server rejected {key.get_name()} key for {username}") from e
        except (SSHException, EOFError, OSError) as e:
            raise ConnectionLostError(f"Connection lost during authentication: {e}") from e

        if remaining or not self.transport.is_authenticated():
            raise AuthenticationFailedError(
                f"Server requires further authentication for {username}: {', '.join(remaining)}"
            )
        logger.info(f"Key authentication successful with {key.get_name()} key")

    def send(self, payload: bytes) -> SessionOutcome:
        """
        Send ``payload`` on a new session channel and collect the reply.

        Reads until the server sends an exit status or closes the channel.
        Received data is streamed to ``self.output`` as it arrives.

        Raises:
            ChannelOpenError: the server refused the channel
            ConnectionLostError: the connection dropped or went idle
        """
        if self.state is not ClientState.AUTHENTICATED:
            raise SessionError(f"Cannot send on a {self.state.value} session")

        try:
            chan = self.transport.open_session(timeout=self.config.connect_timeout)
        except ChannelException as e:
            raise ChannelOpenError(f"Server refused session channel: {e}") from e
        except (SSHException, EOFError, OSError) as e:
            if not self.transport.is_active():
                self.state = ClientState.CLOSED
                raise ConnectionLostError(f"Connection lost opening channel: {e}") from e
            raise ChannelOpenError(f"Cannot open session channel: {e}") from e
        self.state = ClientState.CHANNEL_OPEN

        chunks = []
        exit_code = None
        try:
            stream = ChannelEventStream(
                chan,
                inactivity_timeout=self.config.inactivity_timeout,
                wait_slice=self.config.wait_slice,
                read_size=self.config.read_size,
            )

            logger.info(f"Client: sending data to server: {payload!r}")
            try:
                chan.sendall(payload)
                chan.shutdown_write()
            except OSError as e:
                raise ConnectionLostError(f"Connection lost sending payload: {e}") from e

            for event in stream:
                if isinstance(event, DataReceived):
                    logger.info(f"Client: received data from server: {event.data.decode('utf-8', errors='replace')!r}")
                    self.output.write(event.data)
                    self.output.flush()
                    chunks.append(event.data)
                elif isinstance(event, ExitStatus):
                    logger.info(f"Client: received exit status: {event.code}")
                    exit_code = event.code
                elif isinstance(event, Closed):
                    logger.info(f"Client: channel {chan.get_id()} closed by server")
                else:
                    logger.debug(f"Client: ignoring {event}")
        except ConnectionLostError:
            self.state = ClientState.CLOSED
            raise
        finally:
            chan.close()
            if self.state is ClientState.CHANNEL_OPEN:
                self.state = ClientState.AUTHENTICATED

        return SessionOutcome(data=b"".join(chunks), exit_code=exit_code)

    def close(self):
        """
        Disconnect from the server. Calling it again is a no-op.
        """
        if self.state is ClientState.CLOSED and self.transport is None:
            logger.debug("Session already closed")
            return
        transport = self.transport
        self._release()
        if transport is not None:
            logger.info("Disconnected")

    def _release(self):
        transport, self.transport = self.transport, None
        self.state = ClientState.CLOSED
        if transport is None:
            return
        try:
            if transport.is_active():
                m = paramiko.Message()
                m.add_byte(cMSG_DISCONNECT)
                m.add_int(DISCONNECT_BY_APPLICATION)
                m.add_string("")
                m.add_string("en")
                transport.packetizer.send_message(m)
        except (SSHException, EOFError, OSError) as e:
            logger.warning(f"Failed to send disconnect notification: {e}")
        finally:
            transport.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
