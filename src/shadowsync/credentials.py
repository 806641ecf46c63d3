"""SSH key credentials and the dulwich SSH vendor that applies them."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import paramiko
from paramiko.pkey import UnknownKeyType

from .exceptions import AuthError

logger = logging.getLogger(__name__)

# Git hosts identify the account by key; the SSH user is always "git".
GIT_SSH_USERNAME = "git"


@dataclass(frozen=True)
class Credential:
    """A decrypted private key plus the host-verification policy to use with it."""
    key_file: str
    pkey: paramiko.PKey = field(repr=False, compare=False)
    skip_host_verification: bool = False
    username: str = GIT_SSH_USERNAME

    def ssh_vendor(self) -> CredentialSSHVendor:
        return CredentialSSHVendor(self)


def _load_pkey(key_file: str, secret: bytes | None) -> paramiko.PKey:
    try:
        return paramiko.PKey.from_path(key_file, secret)
    except FileNotFoundError as exc:
        raise AuthError(f"Key file not found: {key_file}") from exc
    except OSError as exc:
        raise AuthError(f"Cannot read key file {key_file}: {exc}") from exc
    except (ValueError, UnknownKeyType, paramiko.SSHException) as exc:
        raise AuthError(f"Cannot load private key {key_file}: {exc}") from exc


def resolve_credential(
    key_file: str,
    passphrase: str | None = None,
    skip_host_verification: bool = False,
) -> Credential:
    """Load the private key in *key_file*, decrypting it with *passphrase*.

    An empty passphrase means the key is not encrypted, and a passphrase
    given for an unencrypted key is ignored.  Raises :class:`AuthError` if
    the file is missing or unreadable, is not a supported private key, or
    cannot be decrypted.
    """
    secret = passphrase.encode() if passphrase else None
    try:
        pkey = _load_pkey(key_file, secret)
    except TypeError as exc:
        # raised by cryptography when the passphrase and the key disagree
        message = str(exc)
        if secret is not None and "not encrypted" in message:
            pkey = _load_pkey(key_file, None)
        elif "encrypted" in message:
            raise AuthError(f"Passphrase mismatch for {key_file}: {exc}") from exc
        else:
            raise
    return Credential(
        key_file=key_file,
        pkey=pkey,
        skip_host_verification=skip_host_verification,
    )


# ---------------------------------------------------------------------------
# dulwich SSH vendor
# ---------------------------------------------------------------------------

class _AcceptAnyHostKey(paramiko.MissingHostKeyPolicy):
    def missing_host_key(self, client, hostname, key):
        logger.warning(
            "Accepting unverified %s host key %s for %s",
            key.get_name(), key.get_fingerprint().hex(), hostname,
        )


class _ChannelWrapper:
    """File-like view of a paramiko channel, as dulwich's protocol expects."""

    def __init__(self, client: paramiko.SSHClient, channel: paramiko.Channel):
        self.client = client
        self.channel = channel
        self.channel.setblocking(True)

    @property
    def stderr(self):
        return self.channel.makefile_stderr("rb")

    def can_read(self) -> bool:
        return self.channel.recv_ready()

    def write(self, data: bytes) -> None:
        self.channel.sendall(data)

    def read(self, n: int | None = None) -> bytes:
        data = self.channel.recv(n)
        if not data:
            return b""
        if n and len(data) < n:
            return data + self.read(n - len(data))
        return data

    def close(self) -> None:
        self.channel.close()
        self.client.close()


class CredentialSSHVendor:
    """dulwich SSH vendor that connects with one :class:`Credential`.

    The username dulwich parsed from the URL is ignored in favour of the
    credential's.
    """

    def __init__(self, credential: Credential):
        self.credential = credential

    def run_command(
        self,
        host,
        command,
        username=None,
        port=None,
        password=None,
        key_filename=None,
        protocol_version=None,
        **kwargs,
    ) -> _ChannelWrapper:
        client = paramiko.SSHClient()
        if self.credential.skip_host_verification:
            client.set_missing_host_key_policy(_AcceptAnyHostKey())
        else:
            client.load_system_host_keys()
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
        logger.debug("ssh %s@%s:%s", self.credential.username, host, port or 22)
        try:
            client.connect(
                hostname=host,
                port=port or 22,
                username=self.credential.username,
                pkey=self.credential.pkey,
                look_for_keys=False,
                allow_agent=False,
            )
            channel = client.get_transport().open_session()
            if protocol_version == 2:
                channel.set_environment_variable(name="GIT_PROTOCOL", value="version=2")
            channel.exec_command(command)
        except BaseException:
            client.close()
            raise
        return _ChannelWrapper(client, channel)
