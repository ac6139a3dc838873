"""Client trust policies."""
import pytest

from ssh_harness.modules.ssh import AcceptAnyHostKey, HostKeyVerificationError, KnownHostsPolicy, NegotiationError


def test_accept_any(host_key, audit):
    policy = AcceptAnyHostKey(audit=audit)
    assert policy.accepts("example.com", host_key) is True
    policy.verify("example.com", host_key)
    assert audit.get_recent_events()[-1]["decision"] == "accepted"


def test_known_hosts_match_and_mismatch(host_key, client_key, tmp_path, audit):
    path = tmp_path / "known_hosts"
    path.write_text(
        f"[127.0.0.1]:2222 {host_key.get_name()} {host_key.get_base64()}\n"
        f"example.com {host_key.get_name()} {host_key.get_base64()}\n"
    )
    policy = KnownHostsPolicy(str(path), audit=audit)

    assert policy.accepts("[127.0.0.1]:2222", host_key)
    assert policy.accepts("example.com", host_key)
    assert not policy.accepts("[127.0.0.1]:2222", client_key)
    assert not policy.accepts("other.example.com", host_key)

    with pytest.raises(HostKeyVerificationError):
        policy.verify("[127.0.0.1]:2222", client_key)
    assert audit.get_recent_events()[-1]["decision"] == "rejected"


def test_missing_known_hosts_rejects_everything(host_key, tmp_path):
    policy = KnownHostsPolicy(str(tmp_path / "absent"))
    with pytest.raises(NegotiationError):
        policy.missing_host_key(None, "example.com", host_key)
