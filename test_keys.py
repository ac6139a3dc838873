"""Identity and host key loading."""
import paramiko
import pytest

from ssh_harness.modules.ssh import KeyLoadError, load_identity_key
from ssh_harness.modules.ssh.keys import key_fingerprint, load_host_keys, resolve_identity_key


def test_load_rsa_key(client_key, client_key_file):
    key = load_identity_key(client_key_file)
    assert key.get_base64() == client_key.get_base64()
    assert key.can_sign()


def test_missing_key_file(tmp_path):
    with pytest.raises(KeyLoadError, match="not found"):
        load_identity_key(tmp_path / "missing")


def test_directory_is_not_a_key(tmp_path):
    with pytest.raises(KeyLoadError):
        load_identity_key(tmp_path)


def test_garbage_key_file(tmp_path):
    path = tmp_path / "junk"
    path.write_text("this is not a key\n")
    with pytest.raises(KeyLoadError, match="any supported format"):
        load_identity_key(path)


def test_encrypted_key_needs_passphrase(client_key, tmp_path):
    path = tmp_path / "id_rsa_enc"
    client_key.write_private_key_file(str(path), password="secret")
    with pytest.raises(KeyLoadError, match="encrypted"):
        load_identity_key(path)
    assert load_identity_key(path, passphrase="secret").get_base64() == client_key.get_base64()


def test_resolve_passes_loaded_keys_through(client_key):
    assert resolve_identity_key(client_key) is client_key


def test_host_keys_required():
    with pytest.raises(KeyLoadError, match="No host identity key"):
        load_host_keys([])


def test_host_key_needs_private_part(host_key):
    public_only = paramiko.RSAKey(data=host_key.asbytes())
    with pytest.raises(KeyLoadError, match="no private part"):
        load_host_keys([public_only])


def test_fingerprint_format(host_key):
    fp = key_fingerprint(host_key)
    assert fp.startswith("SHA256:")
    assert not fp.endswith("=")
    assert fp == key_fingerprint(paramiko.RSAKey(data=host_key.asbytes()))
