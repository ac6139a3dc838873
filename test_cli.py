"""Command line parsing and startup failures."""
import socket

import pytest

from ssh_harness import __main__ as cli
from ssh_harness.__main__ import build_parser, main


@pytest.fixture(autouse=True)
def keep_logging_config(monkeypatch):
    # pytest owns the logging handlers during the run
    monkeypatch.setattr(cli, "configure", lambda debug=False: None)


def test_defaults():
    args = build_parser().parse_args(["-k", "id_rsa"])
    assert args.server is False
    assert args.host == "127.0.0.1"
    assert args.port == 2222
    assert args.user == "username"
    assert args.key == "id_rsa"


def test_server_flags():
    args = build_parser().parse_args(["--server", "0.0.0.0", "-p", "2022", "--key", "host_key"])
    assert args.server is True
    assert args.host == "0.0.0.0"
    assert args.port == 2022


def test_client_with_unreadable_key_exits_nonzero(tmp_path):
    assert main(["-k", str(tmp_path / "missing")]) == 1


def test_server_with_unreadable_key_exits_nonzero(tmp_path):
    assert main(["--server", "-k", str(tmp_path / "missing")]) == 1


def test_client_against_closed_port_exits_nonzero(client_key_file):
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port = s.getsockname()[1]
    assert main(["-k", str(client_key_file), "-p", str(port)]) == 1


def test_client_round_trip(ssh_server, client_key_file, capsysbinary):
    host, port = ssh_server.address
    assert main(["-k", str(client_key_file), "-p", str(port), host]) == 0
    out = capsysbinary.readouterr().out
    assert b"Server processed: foo" in out
    assert b"Exitcode: None" in out


def test_server_ignores_user(monkeypatch):
    built = {}

    class FakeDispatcher:
        def __init__(self, host_keys, **kwargs):
            built["host_keys"] = host_keys
            built["kwargs"] = kwargs

        def serve(self, address):
            built["address"] = address
            raise KeyboardInterrupt

        def shutdown(self):
            built["shut_down"] = True

    monkeypatch.setattr(cli, "ServerDispatcher", FakeDispatcher)

    assert main(["--server", "--user", "alice", "-k", "host_key", "-p", "2022"]) == 0
    assert built["host_keys"] == ["host_key"]
    assert "alice" not in repr(built["kwargs"])
    assert built["address"] == ("127.0.0.1", 2022)
    assert built["shut_down"]
