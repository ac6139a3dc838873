"""
SSH Key Loading

Loads private identity keys from disk and computes key fingerprints.
"""
import os
import hashlib
import base64
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Union

import paramiko
from paramiko.pkey import PKey
from paramiko.ssh_exception import PasswordRequiredException, SSHException

from .errors import KeyLoadError

logger = logging.getLogger(__name__)

# DSA keys are gone from current paramiko and from OpenSSH defaults
_KEY_LOADERS = (paramiko.Ed25519Key, paramiko.ECDSAKey, paramiko.RSAKey)

KeySource = Union[str, "os.PathLike[str]", PKey]


def key_fingerprint(key: PKey) -> str:
    """Get SHA256 fingerprint of a public key, in OpenSSH notation."""
    digest = hashlib.sha256(key.asbytes()).digest()
    return "SHA256:" + base64.b64encode(digest).decode().rstrip('=')


def load_identity_key(path: Union[str, "os.PathLike[str]"], passphrase: Optional[str] = None) -> PKey:
    """
    Load a private key file.

    Args:
        path: Path to an OpenSSH or PEM private key
        passphrase: Passphrase for encrypted keys

    Returns:
        The loaded private key

    Raises:
        KeyLoadError: if the file is missing, unreadable, encrypted without a
            passphrase, or not a supported key type
    """
    key_path = Path(path).expanduser()
    if not key_path.is_file():
        raise KeyLoadError(f"Key file not found: {key_path}")

    errors = []
    for key_loader in _KEY_LOADERS:
        try:
            key = key_loader.from_private_key_file(str(key_path), password=passphrase)
        except PasswordRequiredException:
            raise KeyLoadError(f"Key file {key_path} is encrypted; a decrypted key is required") from None
        except OSError as e:
            raise KeyLoadError(f"Cannot read key file {key_path}: {e}") from e
        except (SSHException, ValueError) as e:
            errors.append(f"{key_loader.__name__}: {e}")
            continue
        logger.info(f"Loaded {key.get_name()} key {key_fingerprint(key)} from {key_path}")
        return key

    logger.debug(f"Key loaders tried for {key_path}: {'; '.join(errors)}")
    raise KeyLoadError(f"Failed to load private key {key_path} with any supported format")


def resolve_identity_key(source: KeySource, passphrase: Optional[str] = None) -> PKey:
    """Return ``source`` unchanged if it already is a key, otherwise load it from disk."""
    if isinstance(source, PKey):
        return source
    return load_identity_key(source, passphrase)


def load_host_keys(sources: Iterable[KeySource]) -> List[PKey]:
    """
    Load the server's host identity keys.

    Raises:
        KeyLoadError: if no usable private key results
    """
    keys = [resolve_identity_key(source) for source in sources or ()]
    if not keys:
        raise KeyLoadError("No host identity key supplied")
    for key in keys:
        if not key.can_sign():
            raise KeyLoadError(f"Host key {key_fingerprint(key)} has no private part")
    return keys
