"""Sync orchestration: source -> shadow -> destination, one pair at a time.

For each pair the shadow of the source is brought up to date, its single
remote is rewired to the destination, and every ref is force-pushed.
Nothing is rolled back: a failed push leaves the shadow updated, and the
next run retries the destination.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field

from . import _provider
from ._lock import shadow_lock
from ._provider import DEFAULT_REMOTE, MIRROR_REFSPEC, CancelToken, MirrorDiff
from .config import Configuration, RepositoryAccess, SyncPair
from .credentials import Credential, resolve_credential
from .exceptions import CancelledError, ConfigError, ShadowSyncError
from .shadow import derive_shadow_path, ensure_up_to_date

logger = logging.getLogger(__name__)


@dataclass
class SyncResult:
    """Outcome of one sync pair."""
    pair: SyncPair
    shadow_path: str | None = None
    fetched: MirrorDiff | None = None
    pushed: MirrorDiff | None = None
    error: ShadowSyncError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class SyncReport:
    results: list[SyncResult] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(r.ok for r in self.results)

    @property
    def failed(self) -> list[SyncResult]:
        return [r for r in self.results if not r.ok]


def _lookup(configuration: Configuration, name: str, role: str, pair: SyncPair) -> RepositoryAccess:
    repo = configuration.find_repository(name)
    if repo is None:
        raise ConfigError(f"Unknown {role} repository {name!r} in sync pair {pair}")
    return repo


def _credential_for(repo: RepositoryAccess) -> Credential:
    if repo.skip_host_verification:
        logger.warning("Host key verification is disabled for repository %r", repo.name)
    return resolve_credential(repo.key_file, repo.passphrase, repo.skip_host_verification)


def sync_pair(
    configuration: Configuration,
    pair: SyncPair,
    *,
    cancel: CancelToken | None = None,
    progress: Callable | None = None,
) -> SyncResult:
    """Mirror every ref of *pair*'s source repository onto its destination.

    Raises the first :class:`ShadowSyncError` encountered, tagged with the
    pair and the stage it happened in.
    """
    result = SyncResult(pair)
    stage = "resolve"
    try:
        source = _lookup(configuration, pair.source_name, "source", pair)
        destination = _lookup(configuration, pair.destination_name, "destination", pair)

        stage = "shadow-path"
        result.shadow_path = derive_shadow_path(source.url, configuration.shadow_base_path)

        with shadow_lock(result.shadow_path):
            stage = "source-credentials"
            source_credential = _credential_for(source)

            stage = "shadow-update"
            with ensure_up_to_date(
                result.shadow_path, source.url, source_credential,
                cancel=cancel, progress=progress,
            ) as shadow:
                result.fetched = shadow.fetched

                stage = "destination-credentials"
                destination_credential = _credential_for(destination)

                stage = "rewire"
                _provider.set_remote_url(shadow, DEFAULT_REMOTE, destination.url)

                stage = "push"
                logger.info("Pushing %s to %s", result.shadow_path, destination.url)
                result.pushed = _provider.push(
                    shadow, DEFAULT_REMOTE, destination_credential, [MIRROR_REFSPEC],
                    cancel=cancel, progress=progress,
                )
    except ShadowSyncError as exc:
        exc.pair = str(pair)
        exc.stage = stage
        logger.error("Sync %s failed during %s: %s", pair, stage, exc)
        raise

    if result.pushed.in_sync:
        logger.info("Sync %s: destination already up to date", pair)
    else:
        logger.info("Sync %s: %d ref(s) changed on destination", pair, result.pushed.total)
    return result


def sync_all(
    configuration: Configuration,
    pairs: Iterable[SyncPair] | None = None,
    *,
    keep_going: bool = False,
    cancel: CancelToken | None = None,
    progress: Callable | None = None,
) -> SyncReport:
    """Run sync pairs in order (all configured pairs unless *pairs* is given).

    By default the first failure is re-raised and the remaining pairs are
    skipped.  With *keep_going* failures are recorded in the report and the
    queue continues; cancellation always stops the run.
    """
    queue = deque(configuration.sync_pairs if pairs is None else pairs)
    report = SyncReport()
    while queue:
        pair = queue.popleft()
        try:
            report.results.append(
                sync_pair(configuration, pair, cancel=cancel, progress=progress)
            )
        except ShadowSyncError as exc:
            report.results.append(SyncResult(pair, error=exc))
            if not keep_going or isinstance(exc, CancelledError):
                raise
    return report
