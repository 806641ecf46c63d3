from ._provider import CancelToken, MirrorDiff, RefChange, RefSpec, ShadowRepository
from .config import Configuration, RepositoryAccess, SyncPair, load_configuration
from .credentials import Credential, resolve_credential
from .exceptions import (
    AuthError,
    CancelledError,
    ConfigError,
    NotInitializedError,
    RepositoryStateError,
    ShadowIOError,
    ShadowSyncError,
    TransportError,
)
from .shadow import derive_shadow_path, ensure_up_to_date
from .sync import SyncReport, SyncResult, sync_all, sync_pair

__all__ = [
    "CancelToken", "MirrorDiff", "RefChange", "RefSpec", "ShadowRepository",
    "Configuration", "RepositoryAccess", "SyncPair", "load_configuration",
    "Credential", "resolve_credential",
    "AuthError", "CancelledError", "ConfigError", "NotInitializedError",
    "RepositoryStateError", "ShadowIOError", "ShadowSyncError", "TransportError",
    "derive_shadow_path", "ensure_up_to_date",
    "SyncReport", "SyncResult", "sync_all", "sync_pair",
]
