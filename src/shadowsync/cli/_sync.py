"""sync, check, and shadows commands."""

from __future__ import annotations

import os
import signal
from contextlib import contextmanager

import click

from .._provider import CancelToken
from ..credentials import resolve_credential
from ..exceptions import AuthError, ShadowSyncError
from ..shadow import shadow_name
from ..sync import sync_all
from ._helpers import (
    main,
    _error_message,
    _format_diff,
    _load_config,
    _progress_cb,
    _status,
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _select_pairs(config, specs):
    """Pick configured pairs matching ``SOURCE:DEST`` specs, in config order."""
    if not specs:
        return list(config.sync_pairs)
    wanted = []
    for spec in specs:
        source, sep, destination = spec.partition(":")
        if not sep or not source or not destination:
            raise click.BadParameter(f"expected SOURCE:DEST, got {spec!r}", param_hint="--pair")
        wanted.append((source, destination))
    selected = [
        pair for pair in config.sync_pairs
        if (pair.source_name, pair.destination_name) in wanted
    ]
    configured = {(p.source_name, p.destination_name) for p in config.sync_pairs}
    for source, destination in wanted:
        if (source, destination) not in configured:
            raise click.ClickException(f"No configured sync pair {source} -> {destination}")
    return selected


@contextmanager
def _cancel_on_sigterm(token: CancelToken):
    """Cancel *token* on SIGTERM for the duration of the block."""
    def _handler(signum, frame):
        token.cancel()
    installed = True
    try:
        previous = signal.signal(signal.SIGTERM, _handler)
    except ValueError:
        # not the main thread
        installed = False
    try:
        yield
    finally:
        if installed:
            signal.signal(signal.SIGTERM, previous)


# ---------------------------------------------------------------------------
# sync
# ---------------------------------------------------------------------------

@main.command("sync")
@click.option("--pair", "pair_specs", multiple=True, metavar="SOURCE:DEST",
              help="Only run this pair (repeatable).")
@click.option("--keep-going", "-k", is_flag=True, default=False,
              help="Continue with the remaining pairs after a failure.")
@click.pass_context
def sync_cmd(ctx, pair_specs, keep_going):
    """Mirror every configured source onto its destination.

    Pairs run in configuration order.  The first failure stops the run
    unless --keep-going is given; either way any failure exits non-zero.
    """
    config = _load_config(ctx)
    pairs = _select_pairs(config, pair_specs)
    token = CancelToken()
    try:
        with _cancel_on_sigterm(token):
            report = sync_all(
                config, pairs,
                keep_going=keep_going, cancel=token, progress=_progress_cb(ctx),
            )
    except ShadowSyncError as exc:
        raise click.ClickException(_error_message(exc))

    for result in report.results:
        if result.ok:
            click.echo(
                f"{result.pair}: fetch {_format_diff(result.fetched)}; "
                f"push {_format_diff(result.pushed)}"
            )
        else:
            click.echo(f"Error: {_error_message(result.error)}", err=True)
    if not report.ok:
        ctx.exit(1)
    _status(ctx, f"{len(report.results)} pair(s) synced")


# ---------------------------------------------------------------------------
# check
# ---------------------------------------------------------------------------

@main.command("check")
@click.pass_context
def check_cmd(ctx):
    """Validate the configuration without touching any repository.

    Reports sync pairs naming unknown repositories and key files that
    cannot be loaded.
    """
    config = _load_config(ctx)
    problems = 0
    for pair, name in config.unresolved_names():
        click.echo(f"Error: sync pair {pair}: unknown repository {name!r}", err=True)
        problems += 1
    for repo in config.repositories:
        try:
            resolve_credential(repo.key_file, repo.passphrase, repo.skip_host_verification)
        except AuthError as exc:
            click.echo(f"Error: repository {repo.name!r}: {exc}", err=True)
            problems += 1
        else:
            if repo.skip_host_verification:
                click.echo(f"Warning: repository {repo.name!r} skips host key verification", err=True)
    if problems:
        raise click.ClickException(f"{problems} problem(s) found")
    click.echo(
        f"OK: {len(config.repositories)} repositories, {len(config.sync_pairs)} sync pair(s)"
    )


# ---------------------------------------------------------------------------
# shadows
# ---------------------------------------------------------------------------

@main.command("shadows")
@click.pass_context
def shadows_cmd(ctx):
    """List the shadow clone of each source repository."""
    config = _load_config(ctx)
    seen = set()
    for pair in config.sync_pairs:
        source = config.find_repository(pair.source_name)
        if source is None or source.url in seen:
            continue
        seen.add(source.url)
        path = os.path.join(config.shadow_base_path, shadow_name(source.url))
        state = "present" if os.path.isdir(os.path.join(path, "objects")) else "absent"
        click.echo(f"{source.name}\t{state}\t{path}\t{source.url}")
