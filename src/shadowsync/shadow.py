"""Shadow repositories: where they live and keeping them current.

A shadow is a bare local mirror of one source URL.  Its directory name is
the SHA-256 of that URL, so every sync pair naming the same source shares
one shadow, and the initialize-or-update decision below is all it takes to
bring it up to date.
"""

from __future__ import annotations

import hashlib
import logging
import os
from collections.abc import Callable
from typing import TYPE_CHECKING

from . import _provider
from ._provider import DEFAULT_REMOTE, MIRROR_REFSPEC, CancelToken, ShadowRepository
from .exceptions import NotInitializedError, RepositoryStateError, ShadowIOError

if TYPE_CHECKING:
    from .credentials import Credential

logger = logging.getLogger(__name__)

SHADOW_DIR_MODE = 0o700


def shadow_name(source_url: str) -> str:
    """Hex SHA-256 of the exact *source_url* string."""
    return hashlib.sha256(source_url.encode("utf-8")).hexdigest()


def derive_shadow_path(source_url: str, base_path: str | os.PathLike) -> str:
    """Return the shadow directory for *source_url* under *base_path*, creating it.

    Raises :class:`ShadowIOError` if the directory cannot be created or is
    not writable.
    """
    base = os.path.expanduser(os.fspath(base_path))
    path = os.path.join(base, shadow_name(source_url))
    try:
        os.makedirs(path, mode=SHADOW_DIR_MODE, exist_ok=True)
    except OSError as exc:
        raise ShadowIOError(f"Cannot create shadow directory {path}: {exc}") from exc
    if not os.access(path, os.W_OK | os.X_OK):
        raise ShadowIOError(f"Shadow directory is not writable: {path}")
    return path


def ensure_up_to_date(
    path: str,
    source_url: str,
    credential: Credential | None,
    *,
    cancel: CancelToken | None = None,
    progress: Callable | None = None,
) -> ShadowRepository:
    """Bring the shadow at *path* level with *source_url* and return it open.

    Initializes a bare repository with a single mirroring remote when none
    exists yet; otherwise points the existing remote back at *source_url*
    and fetches incrementally.  The fetch result is left on
    ``repo.fetched``; an empty diff means the shadow was already current.
    """
    try:
        repo = _provider.open_repository(path)
        created = False
    except NotInitializedError:
        logger.info("Initializing shadow %s for %s", path, source_url)
        repo = _provider.init_repository(path)
        created = True

    try:
        if created:
            _provider.create_remote(repo, DEFAULT_REMOTE, source_url, [MIRROR_REFSPEC])
        else:
            logger.info("Updating shadow %s from %s", path, source_url)
            _rebind_remote(repo, source_url)
        repo.fetched = _provider.fetch(
            repo, DEFAULT_REMOTE, credential, cancel=cancel, progress=progress,
        )
    except Exception:
        repo.close()
        raise

    if repo.fetched.in_sync:
        logger.info("Shadow %s already up to date", path)
    else:
        logger.info("Shadow %s: %d ref(s) changed", path, repo.fetched.total)
    return repo


def _rebind_remote(repo: ShadowRepository, source_url: str) -> None:
    """Point the shadow's single remote at *source_url*.

    The last push left it aimed at a destination.  A shadow whose
    initialization stopped before the remote was written gets one now.
    """
    if not repo.bare:
        raise RepositoryStateError(f"Shadow {repo.path} is not a bare repository")
    remotes = repo.remotes()
    if not remotes:
        _provider.create_remote(repo, DEFAULT_REMOTE, source_url, [MIRROR_REFSPEC])
    elif list(remotes) != [DEFAULT_REMOTE]:
        raise RepositoryStateError(
            f"Shadow {repo.path} has unexpected remotes: {', '.join(sorted(remotes))}"
        )
    else:
        _provider.set_remote_url(repo, DEFAULT_REMOTE, source_url)
