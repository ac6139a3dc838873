"""
SSH Audit Logger

Audit trail of who was let in and whom we trusted: server-side key decisions,
client-side host key decisions and outbound connection results. Every entry is
logged on ``ssh_harness.audit``; when a file is configured the same entry is
appended to it as one JSON line.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from paramiko.pkey import PKey

from .keys import key_fingerprint

logger = logging.getLogger(__name__)

AUTH_DECISION = "auth_decision"
HOST_KEY_DECISION = "host_key_decision"
CONNECTION = "connection"


class SSHAuditLogger:
    """
    Writes audit entries for authentication and trust decisions.
    """

    def __init__(self, audit_file: Optional[str] = None, log: Optional[logging.Logger] = None):
        """
        Args:
            audit_file: JSON-lines file to append entries to, if any
            log: Logger receiving every entry (defaults to ``ssh_harness.audit``)
        """
        self.audit_file = Path(audit_file) if audit_file else None
        if self.audit_file is not None:
            self.audit_file.parent.mkdir(parents=True, exist_ok=True)
        self.log = log or logging.getLogger("ssh_harness.audit")

    def log_auth_decision(self,
                          username: str,
                          key: PKey,
                          verdict: str,
                          peer: str = "",
                          decider: str = ""):
        """
        Record the server's verdict on a public key offered by a client.

        Args:
            username: User the client asked to log in as
            key: Offered public key
            verdict: "accept", "reject" or "partial"
            peer: Client address, when known
            decider: Name of the deciding class
        """
        self._write(AUTH_DECISION, {
            "peer": peer,
            "username": username,
            "key_type": key.get_name(),
            "fingerprint": key_fingerprint(key),
            "verdict": verdict,
            "decider": decider,
        })

    def log_host_key_decision(self, hostname: str, key: PKey, trusted: bool):
        """Record whether the client trusted a server's host key."""
        self._write(HOST_KEY_DECISION, {
            "hostname": hostname,
            "key_type": key.get_name(),
            "fingerprint": key_fingerprint(key),
            "decision": "accepted" if trusted else "rejected",
        })

    def log_connection(self,
                       host: str,
                       port: int,
                       username: str,
                       connected: bool,
                       error: str = "",
                       host_key: Optional[PKey] = None):
        """
        Record the result of an outbound connection attempt.

        Args:
            host: Server host
            port: Server port
            username: User the client authenticated as
            connected: True once negotiation and authentication succeeded
            error: Short failure description (no key material)
            host_key: Server host key, when negotiation got that far
        """
        self._write(CONNECTION, {
            "host": host,
            "port": port,
            "username": username,
            "outcome": "connected" if connected else "failed",
            "error": error[:500],
            "host_key_fingerprint": key_fingerprint(host_key) if host_key is not None else "",
        })

    def _write(self, kind: str, fields: Dict[str, Any]):
        stamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        line = json.dumps({"timestamp": stamp, "kind": kind, **fields}, separators=(',', ':'))
        self.log.info(line)

        if self.audit_file is None:
            return
        try:
            with self.audit_file.open('a', encoding='utf-8') as out:
                out.write(line + '\n')
        except OSError as e:
            logger.error(f"Cannot append to audit file {self.audit_file}: {e}")

    def get_recent_events(self, limit: int = 100, kind: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Read back the newest entries of the audit file, oldest first.

        Args:
            limit: Maximum number of entries
            kind: Only return entries of this kind (``AUTH_DECISION``, ...)

        Returns:
            Parsed entries; empty when no file is configured
        """
        if self.audit_file is None or not self.audit_file.exists():
            return []
        try:
            raw = self.audit_file.read_text(encoding='utf-8').splitlines()
        except OSError as e:
            logger.error(f"Cannot read audit file {self.audit_file}: {e}")
            return []

        entries = []
        for text in raw:
            if not text.strip():
                continue
            try:
                entry = json.loads(text)
            except json.JSONDecodeError:
                logger.warning(f"Skipping malformed audit line in {self.audit_file}")
                continue
            if kind is None or entry.get("kind") == kind:
                entries.append(entry)
        return entries[-limit:]
