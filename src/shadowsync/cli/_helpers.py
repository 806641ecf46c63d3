"""Shared helpers, option decorators, and the main CLI group."""

from __future__ import annotations

import click

from .._logging import setup_logging
from ..config import Configuration, load_configuration
from ..exceptions import ConfigError, ShadowSyncError


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _status(ctx, msg):
    """Emit a status message to stderr when verbose mode (-v) is on."""
    if ctx.obj.get("verbose"):
        click.echo(msg, err=True)


def _error_message(exc: ShadowSyncError) -> str:
    """Prefix *exc* with the pair and stage it failed in, when known."""
    if exc.pair and exc.stage:
        return f"{exc.pair} ({exc.stage}): {exc}"
    return str(exc)


def _load_config(ctx) -> Configuration:
    """Load the configuration named by --config, as a ClickException on failure."""
    try:
        return load_configuration(ctx.obj["config_path"])
    except ConfigError as exc:
        raise click.ClickException(str(exc))


def _progress_cb(ctx):
    """Return a transport progress callback at -vv, else None."""
    if ctx.obj.get("verbose", 0) < 2:
        return None
    def _on_progress(msg):
        text = msg.decode(errors="replace") if isinstance(msg, bytes) else msg
        text = text.replace("\r", "\r\033[K")
        click.echo(text, nl=False, err=True)
    return _on_progress


def _format_diff(diff) -> str:
    if diff is None:
        return "-"
    if diff.in_sync:
        return "up to date"
    parts = []
    for label, changes in (("created", diff.add), ("updated", diff.update), ("deleted", diff.delete)):
        if changes:
            parts.append(f"{len(changes)} {label}")
    return ", ".join(parts)


# ---------------------------------------------------------------------------
# Main group
# ---------------------------------------------------------------------------

@click.group()
@click.option("--config", "-c", "config_path", type=click.Path(dir_okay=False),
              default="config.json", show_default=True, envvar="SHADOWSYNC_CONFIG",
              help="Sync configuration file (or set SHADOWSYNC_CONFIG).")
@click.option("-v", "--verbose", count=True,
              help="More output on stderr (-v progress, -vv debug and transport).")
@click.pass_context
def main(ctx, config_path, verbose):
    """shadowsync: mirror git repositories through local shadow clones.

    Each sync pair fetches the source into a bare shadow clone under the
    configured base path, then force-pushes every ref of the shadow to the
    destination.  Shadows are kept between runs, so later syncs only
    transfer what changed.

    \b
    Commands:
      sync      Run the configured sync pairs
      check     Validate the configuration and key files
      shadows   Show where each source's shadow clone lives
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["verbose"] = verbose
    setup_logging(verbose)
