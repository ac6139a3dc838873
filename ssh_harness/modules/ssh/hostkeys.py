"""
SSH Host Key Trust Policies

Client-side decision on whether to trust the server's presented host key.
``AcceptAnyHostKey`` is the default and trusts every server, which is the same as
disabling host key verification. Use ``KnownHostsPolicy`` to pin servers.
"""

import os
import logging
from typing import Optional
import paramiko
from paramiko.hostkeys import HostKeys
from paramiko.pkey import PKey

from .audit_logger import SSHAuditLogger
from .errors import HostKeyVerificationError
from .keys import key_fingerprint

logger = logging.getLogger(__name__)

class TrustPolicy(paramiko.MissingHostKeyPolicy):
    """
    Base trust policy.

    Subclasses implement ``accepts``. The policy is also a paramiko
    ``MissingHostKeyPolicy`` so it can be handed to ``paramiko.SSHClient``.
    """

    def __init__(self, audit: Optional[SSHAuditLogger] = None):
        self.audit = audit or SSHAuditLogger()

    def accepts(self, hostname: str, key: PKey) -> bool:
        raise NotImplementedError

    def verify(self, hostname: str, key: PKey):
        """
        Check the server key, raising if it is not trusted.

        Raises:
            HostKeyVerificationError: if ``accepts`` returns False
        """
        key_type = key.get_name()
        fingerprint = key_fingerprint(key)
        trusted = self.accepts(hostname, key)
        self.audit.log_host_key_decision(hostname, key, trusted)
        if not trusted:
            raise HostKeyVerificationError(
                f"Host key verification failed for {hostname}. "
                f"Untrusted {key_type} key with fingerprint {fingerprint}"
            )

    def missing_host_key(self, client, hostname, key):
        self.verify(hostname, key)

class AcceptAnyHostKey(TrustPolicy):
    """Trust every server. Not for production use."""

    def accepts(self, hostname, key):
        logger.info(f"Accepting {key.get_name()} host key {key_fingerprint(key)} for {hostname} without verification")
        return True

class KnownHostsPolicy(TrustPolicy):
    """
    Trust only servers whose key is pinned in a known_hosts file.
    """

    def __init__(self,
                 known_hosts_path: Optional[str] = None,
                 audit: Optional[SSHAuditLogger] = None):
        """
        Initialize the policy.

        Args:
            known_hosts_path: Path to known_hosts file (default ``~/.ssh/known_hosts``)
            audit: Audit logger for host key decisions
        """
        super().__init__(audit=audit)
        self.known_hosts_path = os.path.expanduser(known_hosts_path or "~/.ssh/known_hosts")
        self.host_keys = HostKeys()
        if os.path.exists(self.known_hosts_path):
            self.host_keys.load(self.known_hosts_path)
            logger.debug(f"Loaded {len(self.host_keys)} host keys from {self.known_hosts_path}")
        else:
            logger.warning(f"Known hosts file {self.known_hosts_path} does not exist; every server will be rejected")

    def accepts(self, hostname, key):
        # hostname is "host" for port 22 and "[host]:port" otherwise, like OpenSSH
        known = self.host_keys.lookup(hostname)
        if not known:
            logger.error(f"No known host key for {hostname}")
            return False
        pinned = known.get(key.get_name())
        if pinned is None or pinned.asbytes() != key.asbytes():
            logger.error(f"Host key mismatch for {hostname}: got {key.get_name()} {key_fingerprint(key)}")
            return False
        return True
