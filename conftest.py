"""
Shared fixtures: RSA keys generated once per run and in-process servers on
OS-assigned ports, so no system sshd is needed.
"""
import threading
import time

import paramiko
import pytest

from ssh_harness.core.config import ClientConfig, ServerConfig
from ssh_harness.modules.ssh import AcceptAllKeys, ChannelResponder, ServerDispatcher
from ssh_harness.modules.ssh.audit_logger import SSHAuditLogger

TEST_HOST = "127.0.0.1"
TEST_USER = "username"


def wait_for(predicate, timeout: float = 5.0) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` passes."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.05)
    return predicate()


@pytest.fixture(scope="session")
def host_key():
    return paramiko.RSAKey.generate(2048)


@pytest.fixture(scope="session")
def client_key():
    return paramiko.RSAKey.generate(2048)


@pytest.fixture
def client_key_file(client_key, tmp_path):
    path = tmp_path / "id_rsa"
    client_key.write_private_key_file(str(path))
    return path


@pytest.fixture
def client_config():
    return ClientConfig(inactivity_timeout=10, connect_timeout=5)


@pytest.fixture
def audit(tmp_path):
    return SSHAuditLogger(str(tmp_path / "audit.log"))


class RunningServer:
    """A ServerDispatcher serving on a background thread."""

    def __init__(self, dispatcher: ServerDispatcher):
        self.dispatcher = dispatcher
        self.address = dispatcher.bind((TEST_HOST, 0))
        self.responders = []
        self._thread = threading.Thread(target=dispatcher.serve_forever, daemon=True)
        self._thread.start()

    @property
    def live_connections(self) -> int:
        with self.dispatcher._lock:
            return len(self.dispatcher._transports)

    def stop(self):
        self.dispatcher.shutdown()
        self._thread.join(timeout=5)


@pytest.fixture
def start_server(host_key, audit):
    """Factory fixture: ``start_server(decider=..., responder=...)`` returns a RunningServer."""
    running = []

    def _start(decider=AcceptAllKeys, responder=ChannelResponder, **config):
        config.setdefault("inactivity_timeout", 30)
        config.setdefault("auth_rejection_time", 0)
        created = []

        def responder_factory(peer):
            instance = responder(peer=peer)
            created.append(instance)
            return instance

        dispatcher = ServerDispatcher(
            [host_key],
            auth_decider_factory=decider,
            responder_factory=responder_factory,
            config=ServerConfig(**config),
            audit=audit,
        )
        server = RunningServer(dispatcher)
        server.responders = created
        running.append(server)
        return server

    yield _start
    for server in running:
        server.stop()


@pytest.fixture
def ssh_server(start_server):
    return start_server()
