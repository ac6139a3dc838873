"""
Server-side public key authentication decisions.

``AcceptAllKeys`` is the shipped default and accepts every key. It is a demo
policy, not a trust boundary: deployments that need real authentication plug
in ``AuthorizedKeysDecider`` or their own ``AuthDecider`` subclass. The
``evaluate(username, key) -> AuthVerdict`` contract is the same for all of them.
"""
import logging
from enum import Enum
from pathlib import Path
from typing import Iterable, Optional, Set, Tuple

import paramiko
from paramiko.pkey import PKey

from .audit_logger import SSHAuditLogger
from .errors import KeyLoadError

logger = logging.getLogger(__name__)


class AuthVerdict(Enum):
    ACCEPT = paramiko.AUTH_SUCCESSFUL
    REJECT = paramiko.AUTH_FAILED
    # valid outcome of the SSH auth protocol; no decider in this package returns it
    PARTIAL = paramiko.AUTH_PARTIALLY_SUCCESSFUL


class AuthDecider:
    """
    Decides whether a presented public key may log in as ``username``.

    Subclasses implement ``decide``; ``evaluate`` wraps it with the audit entry.
    Deciders must hold no state that changes the verdict between calls.
    """

    def __init__(self, audit: Optional[SSHAuditLogger] = None, peer: str = ""):
        self.audit = audit or SSHAuditLogger()
        self.peer = peer

    def decide(self, username: str, key: PKey) -> AuthVerdict:
        raise NotImplementedError

    def evaluate(self, username: str, key: PKey) -> AuthVerdict:
        verdict = self.decide(username, key)
        self.audit.log_auth_decision(
            username=username,
            key=key,
            verdict=verdict.name.lower(),
            peer=self.peer,
            decider=type(self).__name__,
        )
        return verdict


class AcceptAllKeys(AuthDecider):
    """Accept any public key for any user. Not for production use."""

    def decide(self, username, key):
        return AuthVerdict.ACCEPT


class RejectAllKeys(AuthDecider):
    """Reject every public key."""

    def decide(self, username, key):
        return AuthVerdict.REJECT


class AuthorizedKeysDecider(AuthDecider):
    """
    Accept only keys listed in an OpenSSH ``authorized_keys`` style allowlist.

    Keys are matched on algorithm name and base64 blob; options and comments in
    the file are ignored. The same allowlist applies to every username.
    """

    def __init__(self, allowed: Iterable[Tuple[str, str]], audit: Optional[SSHAuditLogger] = None, peer: str = ""):
        super().__init__(audit=audit, peer=peer)
        self.allowed: frozenset = frozenset(allowed)

    @classmethod
    def from_keys(cls, keys: Iterable[PKey], **kwargs) -> "AuthorizedKeysDecider":
        return cls(((key.get_name(), key.get_base64()) for key in keys), **kwargs)

    @classmethod
    def from_file(cls, path, **kwargs) -> "AuthorizedKeysDecider":
        try:
            text = Path(path).expanduser().read_text(encoding='utf-8')
        except OSError as e:
            raise KeyLoadError(f"Cannot read authorized keys file {path}: {e}") from e
        return cls(parse_authorized_keys(text), **kwargs)

    def decide(self, username, key):
        if (key.get_name(), key.get_base64()) in self.allowed:
            return AuthVerdict.ACCEPT
        return AuthVerdict.REJECT


def parse_authorized_keys(text: str) -> Set[Tuple[str, str]]:
    """Parse ``authorized_keys`` content into ``(key_type, base64)`` pairs."""
    entries = set()
    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        parts = line.split()
        # an options field may precede the key type
        for i, part in enumerate(parts[:-1]):
            if part.startswith(('ssh-', 'ecdsa-', 'sk-')):
                entries.add((part, parts[i + 1]))
                break
        else:
            logger.warning(f"Ignoring unparseable authorized_keys line {lineno}")
    return entries
