#!/usr/bin/env python3
"""
Command line entry point.

    python -m ssh_harness --server -k host_key 0.0.0.0
    python -m ssh_harness -k id_ed25519 --user alice 127.0.0.1
"""
import argparse
import sys

from ssh_harness.core import get_logger
from ssh_harness.core.config import CONFIG, ClientConfig, ServerConfig
from ssh_harness.core.logger import configure
from ssh_harness.modules.ssh import ClientSession, ServerDispatcher, SessionError
from ssh_harness.modules.ssh.audit_logger import SSHAuditLogger

logger = get_logger("ssh_harness")

PAYLOAD = b"foo"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="ssh-harness", description="Single request/response SSH client and server")
    parser.add_argument("--server", action="store_true", help="Run as server instead of client")
    parser.add_argument("host", nargs="?", default="127.0.0.1", help="Address to bind or connect to")
    parser.add_argument("--port", "-p", type=int, default=2222)
    parser.add_argument("--user", default="username", help="Username for client (ignored with --server)")
    parser.add_argument("--key", "-k", required=True, help="Path to the decrypted key file")
    return parser


def run_server(args, audit: SSHAuditLogger):
    dispatcher = ServerDispatcher([args.key], config=ServerConfig(), audit=audit)
    logger.info(f"Starting server on {args.host}:{args.port}")
    try:
        dispatcher.serve((args.host, args.port))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        dispatcher.shutdown()


def run_client(args, audit: SSHAuditLogger):
    logger.info(f"Connecting to {args.host}:{args.port}")
    logger.info(f"Key path: {args.key}")

    session = ClientSession.connect(args.key, args.user, (args.host, args.port), config=ClientConfig(), audit=audit)
    try:
        outcome = session.send(PAYLOAD)
        print(f"\nExitcode: {outcome.exit_code}")
    finally:
        session.close()


def main(argv=None) -> int:
    configure(debug=CONFIG.debug)
    args = build_parser().parse_args(argv)
    audit = SSHAuditLogger(CONFIG.audit_log)

    try:
        if args.server:
            run_server(args, audit)
        else:
            run_client(args, audit)
    except SessionError as e:
        logger.error(f"{type(e).__name__}: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
