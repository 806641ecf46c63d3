"""Version-control provider: the git operations shadowsync needs, on dulwich.

Repositories, remotes, and ref-level mirroring (force + prune) for fetch
and push.  Everything above this module deals in ``str`` ref names and
hex SHAs; dulwich's bytes stay in here.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Callable, Iterable
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import paramiko
from dulwich.client import SSHGitClient
from dulwich.client import get_transport_and_path as _get_transport_and_path
from dulwich.errors import GitProtocolError, NotGitRepository
from dulwich.protocol import ZERO_SHA as _ZERO_SHA
from dulwich.repo import Repo as _DRepo

from .exceptions import (
    AuthError,
    CancelledError,
    NotInitializedError,
    RepositoryStateError,
    ShadowIOError,
    ShadowSyncError,
    TransportError,
)

if TYPE_CHECKING:
    from .credentials import Credential

DEFAULT_REMOTE = "origin"
MIRROR_REFSPEC = "+refs/*:refs/*"


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RefSpec:
    """A git refspec such as ``+refs/heads/*:refs/remotes/origin/*``.

    At most one ``*`` per side; it matches any non-empty run of characters.
    """
    src: str
    dst: str
    force: bool = False

    @classmethod
    def parse(cls, spec: str) -> RefSpec:
        force = spec.startswith("+")
        body = spec[1:] if force else spec
        src, sep, dst = body.partition(":")
        if not sep or not src or not dst:
            raise ValueError(f"Invalid refspec {spec!r}: expected 'src:dst'")
        if any(ch.isspace() for ch in body):
            raise ValueError(f"Invalid refspec {spec!r}: contains whitespace")
        if src.count("*") > 1 or src.count("*") != dst.count("*"):
            raise ValueError(f"Invalid refspec {spec!r}: unbalanced '*'")
        return cls(src, dst, force)

    def __str__(self) -> str:
        return f"{'+' if self.force else ''}{self.src}:{self.dst}"

    def map(self, ref: str) -> str | None:
        """Return the name *ref* maps to, or ``None`` if it doesn't match."""
        return _glob_map(self.src, self.dst, ref)

    def covers(self, ref: str) -> bool:
        """``True`` if *ref* lies in the destination namespace of this spec."""
        return _glob_map(self.dst, self.dst, ref) is not None


def _glob_map(pattern: str, target: str, ref: str) -> str | None:
    if "*" not in pattern:
        return target if ref == pattern else None
    prefix, _, suffix = pattern.partition("*")
    if len(ref) <= len(prefix) + len(suffix):
        return None
    if not ref.startswith(prefix) or not ref.endswith(suffix):
        return None
    return target.replace("*", ref[len(prefix):len(ref) - len(suffix)], 1)


@dataclass
class RefChange:
    """A single ref change in a :class:`MirrorDiff`.

    Attributes:
        ref: Full ref name (e.g. ``"refs/heads/main"``).
        old_target: Previous 40-char hex SHA, or ``None`` for creates.
        new_target: New 40-char hex SHA, or ``None`` for deletes.
    """
    ref: str
    old_target: str | None = None
    new_target: str | None = None


@dataclass
class MirrorDiff:
    """Ref changes made (or found unnecessary) by a :func:`fetch` or :func:`push`.

    An empty diff is the "already up to date" outcome.
    """
    add: list[RefChange] = field(default_factory=list)
    update: list[RefChange] = field(default_factory=list)
    delete: list[RefChange] = field(default_factory=list)

    @property
    def in_sync(self) -> bool:
        """``True`` if there are no changes."""
        return not self.add and not self.update and not self.delete

    @property
    def total(self) -> int:
        """Total number of ref changes."""
        return len(self.add) + len(self.update) + len(self.delete)


class CancelToken:
    """Thread-safe cancellation flag for in-flight fetches and pushes."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def check(self) -> None:
        """Raise :class:`CancelledError` if :meth:`cancel` has been called."""
        if self._event.is_set():
            raise CancelledError("Operation cancelled")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------

class ShadowRepository:
    """A bare repository opened through the provider."""

    def __init__(self, drepo: _DRepo):
        self._drepo = drepo
        self.fetched: MirrorDiff | None = None

    def __repr__(self) -> str:
        return f"ShadowRepository({self.path!r})"

    def __enter__(self) -> ShadowRepository:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    @property
    def path(self) -> str:
        return self._drepo.path

    @property
    def bare(self) -> bool:
        return self._drepo.bare

    def refs(self) -> dict[str, str]:
        """Return ``{ref: sha}`` for every mirrorable ref (no ``HEAD``)."""
        return {
            ref.decode(): sha.decode()
            for ref, sha in _mirrorable(self._drepo.get_refs()).items()
        }

    def remotes(self) -> dict[str, str]:
        """Return ``{remote_name: url}`` from the repository config."""
        cfg = self._drepo.get_config()
        result = {}
        for section in cfg.sections():
            if len(section) == 2 and section[0] == b"remote":
                try:
                    url = cfg.get(section, b"url").decode()
                except KeyError:
                    url = ""
                result[section[1].decode()] = url
        return result

    def close(self) -> None:
        self._drepo.close()


def open_repository(path: str | os.PathLike) -> ShadowRepository:
    """Open an existing repository at *path*.

    Raises :class:`NotInitializedError` when *path* holds no repository and
    :class:`RepositoryStateError` for any other failure.
    """
    path = os.fspath(path)
    try:
        drepo = _DRepo(path)
    except NotGitRepository as exc:
        raise NotInitializedError(f"No repository at {path}") from exc
    except (OSError, ValueError) as exc:
        raise RepositoryStateError(f"Cannot open repository at {path}: {exc}") from exc
    return ShadowRepository(drepo)


def init_repository(path: str | os.PathLike) -> ShadowRepository:
    """Create a bare repository at *path* (the directory may already exist)."""
    path = os.fspath(path)
    try:
        drepo = _DRepo.init_bare(path, mkdir=not os.path.exists(path))
    except OSError as exc:
        raise ShadowIOError(f"Cannot initialize repository at {path}: {exc}") from exc
    return ShadowRepository(drepo)


# ---------------------------------------------------------------------------
# Remotes
# ---------------------------------------------------------------------------

def _remote_section(name: str) -> tuple[bytes, bytes]:
    return (b"remote", name.encode())


def create_remote(
    repo: ShadowRepository,
    name: str,
    url: str,
    fetch_refspecs: Iterable[str] = (MIRROR_REFSPEC,),
) -> None:
    """Add remote *name* pointing at *url*."""
    if name in repo.remotes():
        raise RepositoryStateError(f"Remote {name!r} already exists in {repo.path}")
    specs = [str(RefSpec.parse(s)) for s in fetch_refspecs]
    cfg = repo._drepo.get_config()
    section = _remote_section(name)
    cfg.set(section, b"url", url.encode())
    # one fetch refspec per remote is all shadowsync ever writes
    for spec in specs[:1]:
        cfg.set(section, b"fetch", spec.encode())
    _write_config(repo, cfg)


def set_remote_url(repo: ShadowRepository, name: str, url: str) -> None:
    """Replace the URL of remote *name* with *url*."""
    if name not in repo.remotes():
        raise RepositoryStateError(f"Remote {name!r} not found in {repo.path}")
    cfg = repo._drepo.get_config()
    cfg.set(_remote_section(name), b"url", url.encode())
    _write_config(repo, cfg)


def _write_config(repo: ShadowRepository, cfg) -> None:
    try:
        cfg.write_to_path()
    except OSError as exc:
        raise ShadowIOError(f"Cannot write config of {repo.path}: {exc}") from exc


def _remote_config(repo: ShadowRepository, name: str) -> tuple[str, list[RefSpec]]:
    cfg = repo._drepo.get_config()
    section = _remote_section(name)
    try:
        url = cfg.get(section, b"url").decode()
    except KeyError:
        raise RepositoryStateError(f"Remote {name!r} not found in {repo.path}") from None
    try:
        specs = [RefSpec.parse(cfg.get(section, b"fetch").decode())]
    except KeyError:
        specs = [RefSpec.parse(MIRROR_REFSPEC)]
    return url, specs


# ---------------------------------------------------------------------------
# Transport helpers
# ---------------------------------------------------------------------------

def _mirrorable(refs: dict[bytes, bytes]) -> dict[bytes, bytes]:
    return {
        ref: sha
        for ref, sha in refs.items()
        if ref != b"HEAD" and not ref.endswith(b"^{}")
    }


def _text(value) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


def _map_ref(specs: list[RefSpec], ref: str) -> str | None:
    for spec in specs:
        mapped = spec.map(ref)
        if mapped is not None:
            return mapped
    return None


def _require_forced(specs: list[RefSpec]) -> None:
    for spec in specs:
        if not spec.force:
            raise ValueError(f"Only forced refspecs are supported: {spec}")


def _diff_refs(src: dict[str, str], dest: dict[str, str]) -> MirrorDiff:
    """Changes that make *dest* equal to *src*."""
    diff = MirrorDiff()
    for ref, sha in sorted(src.items()):
        if ref not in dest:
            diff.add.append(RefChange(ref=ref, new_target=sha))
        elif dest[ref] != sha:
            diff.update.append(RefChange(ref=ref, old_target=dest[ref], new_target=sha))
    for ref in sorted(dest):
        if ref not in src:
            diff.delete.append(RefChange(ref=ref, old_target=dest[ref]))
    return diff


def _check(cancel: CancelToken | None) -> None:
    if cancel is not None:
        cancel.check()


def _progress_hook(cancel: CancelToken | None, progress: Callable | None):
    def _on_progress(msg):
        _check(cancel)
        if progress is not None:
            progress(msg)
    return _on_progress


def _client_for(url: str, credential: Credential | None):
    try:
        client, path = _get_transport_and_path(url)
    except ValueError as exc:
        raise TransportError(f"Unsupported repository URL {url!r}: {exc}") from exc
    if isinstance(client, SSHGitClient):
        if credential is None:
            raise AuthError(f"No credential given for SSH URL {url!r}")
        client.ssh_vendor = credential.ssh_vendor()
    return client, path


@contextmanager
def _transport_errors(action: str, url: str):
    try:
        yield
    except ShadowSyncError:
        raise
    except paramiko.AuthenticationException as exc:
        raise AuthError(f"{action} {url}: authentication rejected: {exc}") from exc
    except (GitProtocolError, NotGitRepository, paramiko.SSHException, OSError) as exc:
        raise TransportError(f"{action} {url} failed: {exc}") from exc


# ---------------------------------------------------------------------------
# Fetch / push
# ---------------------------------------------------------------------------

def fetch(
    repo: ShadowRepository,
    remote_name: str = DEFAULT_REMOTE,
    credential: Credential | None = None,
    *,
    cancel: CancelToken | None = None,
    progress: Callable | None = None,
) -> MirrorDiff:
    """Fetch every ref the remote's refspec covers, mirroring it locally.

    Remote refs are force-written; local refs in the refspec's destination
    namespace that the remote no longer has are deleted.  Returns the ref
    changes; an empty diff means the repository was already up to date.
    """
    url, specs = _remote_config(repo, remote_name)
    _require_forced(specs)
    _check(cancel)
    drepo = repo._drepo
    client, path = _client_for(url, credential)

    def determine_wants(refs, depth=None, **kwargs):
        _check(cancel)
        wants = {}
        for ref, sha in _mirrorable(refs).items():
            if _map_ref(specs, ref.decode()) is not None and sha not in drepo.object_store:
                wants[sha] = None
        return list(wants)

    with _transport_errors("fetch from", url):
        result = client.fetch(
            path, drepo,
            determine_wants=determine_wants,
            progress=_progress_hook(cancel, progress),
        )

    remote_refs = {}
    for ref, sha in _mirrorable(result.refs).items():
        mapped = _map_ref(specs, ref.decode())
        if mapped is not None:
            remote_refs[mapped] = sha.decode()
    local_refs = {
        ref: sha
        for ref, sha in repo.refs().items()
        if any(spec.covers(ref) for spec in specs)
    }
    diff = _diff_refs(remote_refs, local_refs)

    for change in diff.add + diff.update:
        drepo.refs[change.ref.encode()] = change.new_target.encode()
    for change in diff.delete:
        drepo.refs.remove_if_equals(change.ref.encode(), change.old_target.encode())
    return diff


def push(
    repo: ShadowRepository,
    remote_name: str = DEFAULT_REMOTE,
    credential: Credential | None = None,
    refspecs: Iterable[str | RefSpec] = (MIRROR_REFSPEC,),
    *,
    cancel: CancelToken | None = None,
    progress: Callable | None = None,
) -> MirrorDiff:
    """Push local refs to the remote, making it an exact mirror.

    Diverged remote refs are overwritten and remote refs in the destination
    namespace with no local counterpart are deleted.  Returns the ref
    changes; an empty diff means the remote was already up to date.
    """
    url, _ = _remote_config(repo, remote_name)
    specs = [s if isinstance(s, RefSpec) else RefSpec.parse(s) for s in refspecs]
    _require_forced(specs)
    _check(cancel)
    drepo = repo._drepo
    client, path = _client_for(url, credential)

    local_refs = {}
    for ref, sha in repo.refs().items():
        mapped = _map_ref(specs, ref)
        if mapped is not None:
            local_refs[mapped] = sha
    diffs: list[MirrorDiff] = []

    def update_refs(remote_refs):
        _check(cancel)
        remote = {
            ref.decode(): sha.decode()
            for ref, sha in _mirrorable(remote_refs).items()
            if any(spec.covers(ref.decode()) for spec in specs)
        }
        diffs.append(_diff_refs(local_refs, remote))
        new_refs = {ref.encode(): sha.encode() for ref, sha in local_refs.items()}
        for ref in remote:
            if ref not in local_refs:
                new_refs[ref.encode()] = _ZERO_SHA
        return new_refs

    def gen_pack(have, want, *, ofs_delta=False, progress=None):
        return drepo.object_store.generate_pack_data(
            have, want, ofs_delta=ofs_delta, progress=progress,
        )

    with _transport_errors("push to", url):
        result = client.send_pack(
            path, update_refs, gen_pack,
            progress=_progress_hook(cancel, progress),
        )

    ref_status = getattr(result, "ref_status", None) or {}
    failed = {
        _text(ref): _text(status)
        for ref, status in ref_status.items()
        if status is not None
    }
    if failed:
        details = ", ".join(f"{ref} ({status})" for ref, status in sorted(failed.items()))
        raise TransportError(f"push to {url} rejected: {details}")
    return diffs[-1] if diffs else MirrorDiff()
