"""Tests for SSH key credential resolution."""

import logging

import paramiko
import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

from shadowsync import AuthError, Credential, resolve_credential
from shadowsync.credentials import (
    GIT_SSH_USERNAME,
    CredentialSSHVendor,
    _AcceptAnyHostKey,
)


class TestResolveCredential:
    def test_plain_key(self, keys):
        cred = resolve_credential(keys.plain)
        assert isinstance(cred, Credential)
        assert cred.pkey.get_fingerprint() == keys.key.get_fingerprint()
        assert cred.skip_host_verification is False

    def test_username_is_always_git(self, keys):
        cred = resolve_credential(keys.plain)
        assert cred.username == GIT_SSH_USERNAME == "git"

    def test_empty_passphrase_means_unencrypted(self, keys):
        cred = resolve_credential(keys.plain, "")
        assert cred.pkey.get_fingerprint() == keys.key.get_fingerprint()

    def test_encrypted_key_with_passphrase(self, keys):
        cred = resolve_credential(keys.encrypted, keys.passphrase)
        assert cred.pkey.get_fingerprint() == keys.key.get_fingerprint()

    def test_wrong_passphrase(self, keys):
        with pytest.raises(AuthError):
            resolve_credential(keys.encrypted, "not the passphrase")

    def test_passphrase_ignored_for_unencrypted_key(self, keys):
        cred = resolve_credential(keys.plain, "some passphrase")
        assert cred.pkey.get_fingerprint() == keys.key.get_fingerprint()

    def test_encrypted_key_without_passphrase(self, keys):
        with pytest.raises(AuthError):
            resolve_credential(keys.encrypted, "")

    def test_unrelated_type_error_propagates(self, keys, monkeypatch):
        def broken(path, passphrase=None):
            raise TypeError("from_path() got an unexpected keyword argument")
        monkeypatch.setattr(paramiko.PKey, "from_path", broken)
        with pytest.raises(TypeError, match="unexpected keyword"):
            resolve_credential(keys.plain, keys.passphrase)

    def test_missing_file(self, tmp_path):
        with pytest.raises(AuthError, match="Key file not found"):
            resolve_credential(str(tmp_path / "nope"))

    def test_not_a_key(self, tmp_path):
        junk = tmp_path / "junk.pem"
        junk.write_text("this is not a private key\n")
        with pytest.raises(AuthError):
            resolve_credential(str(junk))

    def test_directory_instead_of_file(self, tmp_path):
        with pytest.raises(AuthError):
            resolve_credential(str(tmp_path))

    def test_openssh_ed25519_key(self, tmp_path):
        key = ed25519.Ed25519PrivateKey.generate()
        p = tmp_path / "id_ed25519"
        p.write_bytes(key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.OpenSSH,
            serialization.NoEncryption(),
        ))
        cred = resolve_credential(str(p))
        assert cred.pkey.get_name() == "ssh-ed25519"

    def test_skip_host_verification_flag(self, keys):
        cred = resolve_credential(keys.plain, skip_host_verification=True)
        assert cred.skip_host_verification is True

    def test_repr_hides_key_material(self, keys):
        assert "pkey" not in repr(resolve_credential(keys.plain))


class TestSSHVendor:
    def test_vendor_bound_to_credential(self, keys):
        cred = resolve_credential(keys.plain)
        vendor = cred.ssh_vendor()
        assert isinstance(vendor, CredentialSSHVendor)
        assert vendor.credential is cred

    def test_accept_any_host_key_logs_warning(self, keys, caplog):
        with caplog.at_level(logging.WARNING, logger="shadowsync"):
            _AcceptAnyHostKey().missing_host_key(None, "git.example.com", keys.key)
        assert "git.example.com" in caplog.text
        assert "unverified" in caplog.text

    def test_client_closed_when_connect_fails(self, keys, monkeypatch):
        clients = []

        class FakeClient:
            closed = False

            def __init__(self):
                clients.append(self)

            def load_system_host_keys(self):
                pass

            def set_missing_host_key_policy(self, policy):
                self.policy = policy

            def connect(self, **kwargs):
                raise paramiko.SSHException("Server 'git.example.com' not found in known_hosts")

            def close(self):
                self.closed = True

        monkeypatch.setattr(paramiko, "SSHClient", FakeClient)
        vendor = resolve_credential(keys.plain).ssh_vendor()
        with pytest.raises(paramiko.SSHException, match="known_hosts"):
            vendor.run_command("git.example.com", "git-upload-pack 'org/app.git'")
        assert len(clients) == 1
        assert clients[0].closed
        assert isinstance(clients[0].policy, paramiko.RejectPolicy)
