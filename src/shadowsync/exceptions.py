"""Exceptions for shadowsync."""

from __future__ import annotations


class ShadowSyncError(Exception):
    """Base class for every error raised by shadowsync.

    The orchestrator fills in *pair* (``"source -> destination"``) and
    *stage* before re-raising, so the CLI can say where a run stopped.
    """

    pair: str | None = None
    stage: str | None = None


class ConfigError(ShadowSyncError):
    """Missing or malformed configuration, or an unresolved repository name."""


class AuthError(ShadowSyncError):
    """A key file could not be read or decrypted, or the server refused it."""


class RepositoryStateError(ShadowSyncError):
    """A shadow repository exists but cannot be used."""


class NotInitializedError(RepositoryStateError):
    """No repository exists at the shadow path yet.

    Not a failure: the shadow manager treats it as the trigger to initialize.
    """


class TransportError(ShadowSyncError):
    """A fetch or push failed for a reason other than being up to date."""


class ShadowIOError(ShadowSyncError):
    """The shadow directory could not be created or written."""


class CancelledError(ShadowSyncError):
    """A fetch or push was aborted through its :class:`~shadowsync.CancelToken`."""
