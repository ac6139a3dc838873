"""
SSH Server Dispatcher

Accepts inbound SSH connections and serves each one on its own worker thread.
Every connection gets a fresh ``AuthDecider`` and ``ChannelResponder`` from the
dispatcher's factories, so no channel state is shared between peers.
"""
import socket
import logging
import threading
import time
from typing import Callable, Iterable, Optional, Set, Tuple

import paramiko

from ssh_harness.core.config import ServerConfig
from .audit_logger import SSHAuditLogger
from .auth import AcceptAllKeys, AuthDecider, AuthVerdict
from .errors import BindError, EncodingError, ProtocolViolation
from .keys import KeySource, key_fingerprint, load_host_keys
from .responder import ChannelResponder

logger = logging.getLogger(__name__)

Address = Tuple[str, int]

class SessionServer(paramiko.ServerInterface):
    """paramiko server callbacks for one connection."""

    def __init__(self,
                 decider: AuthDecider,
                 responder: ChannelResponder,
                 config: ServerConfig):
        self.decider = decider
        self.responder = responder
        self.config = config

    def get_allowed_auths(self, username):
        return "publickey"

    def check_auth_publickey(self, username, key):
        logger.info(f"{self.responder.peer}: auth request for user {username} with {key.get_name()} key {key_fingerprint(key)}")
        verdict = self.decider.evaluate(username, key)
        if verdict is AuthVerdict.REJECT and self.config.auth_rejection_time > 0:
            time.sleep(self.config.auth_rejection_time)
        return verdict.value

    def check_channel_request(self, kind, chanid):
        if kind != "session":
            logger.warning(f"{self.responder.peer}: refusing {kind} channel {chanid}")
            return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED
        if self.responder.on_channel_open(chanid):
            return paramiko.OPEN_SUCCEEDED
        return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED

class ServerDispatcher:
    """
    Binds a listening socket and serves SSH connections.

    Args:
        host_keys: Host identity keys, as loaded keys or key file paths
        auth_decider_factory: Called as ``factory(audit=..., peer=...)`` per connection
        responder_factory: Called as ``factory(peer=...)`` per connection
        config: Server timeouts
        audit: Audit logger shared by the default deciders

    Raises:
        KeyLoadError: if no usable host key is supplied
    """

    def __init__(self,
                 host_keys: Iterable[KeySource],
                 auth_decider_factory: Callable[..., AuthDecider] = AcceptAllKeys,
                 responder_factory: Callable[..., ChannelResponder] = ChannelResponder,
                 config: Optional[ServerConfig] = None,
                 audit: Optional[SSHAuditLogger] = None):
        self.host_keys = load_host_keys(host_keys)
        self.auth_decider_factory = auth_decider_factory
        self.responder_factory = responder_factory
        self.config = config or ServerConfig()
        self.audit = audit or SSHAuditLogger()

        self._server_socket: Optional[socket.socket] = None
        self._serving = False
        self._transports: Set[paramiko.Transport] = set()
        self._lock = threading.Lock()

    @property
    def address(self) -> Address:
        if self._server_socket is None:
            raise BindError("Server not bound")
        return self._server_socket.getsockname()[:2]

    def bind(self, address: Address) -> Address:
        """
        Bind and listen on ``address``. Port 0 picks a free port.

        Returns:
            The bound (host, port)

        Raises:
            BindError: if the address cannot be resolved or bound
        """
        host, port = address
        try:
            family, socktype, proto, _, sockaddr = socket.getaddrinfo(
                host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
            )[0]
            sock = socket.socket(family, socktype, proto)
        except (OSError, OverflowError) as e:
            raise BindError(f"Cannot resolve {host}:{port}: {e}") from e
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind(sockaddr)
            sock.listen(self.config.accept_backlog)
        except (OSError, OverflowError) as e:
            sock.close()
            raise BindError(f"Cannot bind {host}:{port}: {e}") from e
        # lets the accept loop notice shutdown()
        sock.settimeout(1.0)
        self._server_socket = sock

        if self.auth_decider_factory is AcceptAllKeys:
            logger.warning("Server accepts every public key (AcceptAllKeys); this is not an authentication boundary")
        bound = self.address
        logger.info(f"Server listening on {bound[0]}:{bound[1]}")
        return bound

    def serve_forever(self):
        """Accept connections until ``shutdown`` is called."""
        if self._server_socket is None:
            raise BindError("serve_forever() called before bind()")
        self._serving = True
        while self._serving:
            try:
                client, addr = self._server_socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if not self._serving:
                    break
                logger.error(f"Accept error: {e}")
                continue
            worker = threading.Thread(
                target=self._handle_connection,
                args=(client, addr),
                name=f"ssh-conn-{addr[0]}:{addr[1]}",
                daemon=True,
            )
            worker.start()

    def serve(self, address: Address):
        """Bind ``address`` and serve; does not return under normal operation."""
        self.bind(address)
        self.serve_forever()

    def shutdown(self):
        """Stop accepting and close every live connection."""
        self._serving = False
        with self._lock:
            transports = list(self._transports)
            self._transports.clear()
        for transport in transports:
            transport.close()
        if self._server_socket is not None:
            self._server_socket.close()
            self._server_socket = None
        logger.info("Server stopped")

    def _handle_connection(self, client_sock: socket.socket, addr):
        peer = f"{addr[0]}:{addr[1]}"
        logger.info(f"{peer}: new connection")

        transport = paramiko.Transport(client_sock)
        transport.banner_timeout = self.config.banner_timeout
        for key in self.host_keys:
            transport.add_server_key(key)
        with self._lock:
            self._transports.add(transport)

        try:
            server = SessionServer(
                decider=self.auth_decider_factory(audit=self.audit, peer=peer),
                responder=self.responder_factory(peer=peer),
                config=self.config,
            )
            try:
                transport.start_server(server=server)
            except (paramiko.SSHException, EOFError, OSError) as e:
                logger.warning(f"{peer}: SSH negotiation failed: {e}")
                return

            while transport.is_active():
                chan = transport.accept(timeout=self.config.inactivity_timeout)
                if chan is None:
                    if transport.is_active():
                        logger.warning(f"{peer}: no channel opened for {self.config.inactivity_timeout}s, closing")
                    break
                self._pump_channel(chan, server.responder, peer)
        finally:
            transport.close()
            with self._lock:
                self._transports.discard(transport)
            logger.info(f"{peer}: connection closed")

    def _pump_channel(self, chan: paramiko.Channel, responder: ChannelResponder, peer: str):
        """Feed one channel's events to the responder until the peer finishes it."""
        chanid = chan.get_id()
        try:
            responder.on_channel_ready(chanid)
        except ProtocolViolation as e:
            logger.error(str(e))
            chan.close()
            return

        chan.settimeout(self.config.inactivity_timeout)
        try:
            while True:
                try:
                    data = chan.recv(self.config.read_size)
                except socket.timeout:
                    logger.warning(f"{peer}: channel {chanid} idle for {self.config.inactivity_timeout}s, closing connection")
                    chan.get_transport().close()
                    return
                if not data:
                    break
                try:
                    responder.on_data(chan, data)
                except (EncodingError, ProtocolViolation) as e:
                    logger.error(f"{peer}: {e}")
                except (OSError, paramiko.SSHException) as e:
                    logger.error(f"{peer}: failed to reply on channel {chanid}: {e}")
                    return

            try:
                responder.on_channel_close(chanid)
            except ProtocolViolation as e:
                logger.error(str(e))
        finally:
            chan.close()


def serve(address: Address,
          identity_keys: Iterable[KeySource],
          **kwargs):
    """
    Serve SSH on ``address`` with the given host keys. Does not return under
    normal operation.

    Raises:
        KeyLoadError: if no usable host identity key is supplied
        BindError: if the address cannot be bound
    """
    dispatcher = ServerDispatcher(identity_keys, **kwargs)
    try:
        dispatcher.serve(address)
    finally:
        dispatcher.shutdown()
