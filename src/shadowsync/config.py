"""Sync configuration: repositories, sync pairs, and where shadows live.

The file is JSON::

    {
      "shadows_location_base_path": "/var/lib/shadowsync",
      "repositories": [
        {"repo_name": "upstream", "repo_url": "git@github.com:org/app.git",
         "repo_pem_file_name": "~/.ssh/upstream", "repo_pem_file_password": "",
         "repo_skip_host_key_validation": false}
      ],
      "sync_options": [
        {"source_name": "upstream", "destination_name": "backup"}
      ]
    }

Pair names are not checked against the repositories here; the
orchestrator does that when it reaches the pair.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path

from .exceptions import ConfigError

_MISSING = object()


@dataclass(frozen=True)
class RepositoryAccess:
    """How to reach one named repository."""
    name: str
    url: str
    key_file: str
    passphrase: str = field(default="", repr=False)
    skip_host_verification: bool = False


@dataclass(frozen=True)
class SyncPair:
    source_name: str
    destination_name: str

    def __str__(self) -> str:
        return f"{self.source_name} -> {self.destination_name}"


@dataclass(frozen=True)
class Configuration:
    shadow_base_path: str
    repositories: tuple[RepositoryAccess, ...] = ()
    sync_pairs: tuple[SyncPair, ...] = ()

    def find_repository(self, name: str) -> RepositoryAccess | None:
        """Return the repository called *name*, or ``None``."""
        for repo in self.repositories:
            if repo.name == name:
                return repo
        return None

    def unresolved_names(self) -> list[tuple[SyncPair, str]]:
        """``(pair, name)`` for every pair reference with no repository."""
        missing = []
        for pair in self.sync_pairs:
            for name in (pair.source_name, pair.destination_name):
                if self.find_repository(name) is None:
                    missing.append((pair, name))
        return missing

    @classmethod
    def from_dict(cls, data: dict) -> Configuration:
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a JSON object")
        base = _field(data, "shadows_location_base_path", str, "configuration")
        if not base:
            raise ConfigError("shadows_location_base_path must not be empty")

        repositories = []
        seen = set()
        for i, entry in enumerate(_field(data, "repositories", list, "configuration")):
            where = f"repositories[{i}]"
            if not isinstance(entry, dict):
                raise ConfigError(f"{where} must be an object")
            repo = RepositoryAccess(
                name=_required_text(entry, "repo_name", where),
                url=_required_text(entry, "repo_url", where),
                key_file=os.path.expanduser(_required_text(entry, "repo_pem_file_name", where)),
                passphrase=_field(entry, "repo_pem_file_password", str, where, default=""),
                skip_host_verification=_field(entry, "repo_skip_host_key_validation", bool, where),
            )
            if repo.name in seen:
                raise ConfigError(f"Duplicate repository name {repo.name!r} in {where}")
            seen.add(repo.name)
            repositories.append(repo)

        pairs = []
        for i, entry in enumerate(_field(data, "sync_options", list, "configuration")):
            where = f"sync_options[{i}]"
            if not isinstance(entry, dict):
                raise ConfigError(f"{where} must be an object")
            pairs.append(SyncPair(
                source_name=_required_text(entry, "source_name", where),
                destination_name=_required_text(entry, "destination_name", where),
            ))

        return cls(
            shadow_base_path=os.path.expanduser(base),
            repositories=tuple(repositories),
            sync_pairs=tuple(pairs),
        )


def _field(obj: dict, key: str, kind: type, where: str, default=_MISSING):
    value = obj.get(key, default)
    if value is _MISSING:
        raise ConfigError(f"{where}: missing required field {key!r}")
    if value is None and default is not _MISSING:
        return default
    if not isinstance(value, kind):
        raise ConfigError(
            f"{where}: field {key!r} must be {kind.__name__}, got {type(value).__name__}"
        )
    return value


def _required_text(obj: dict, key: str, where: str) -> str:
    value = _field(obj, key, str, where)
    if not value:
        raise ConfigError(f"{where}: field {key!r} must not be empty")
    return value


def load_configuration(path: str | Path) -> Configuration:
    """Read and validate the JSON configuration at *path*."""
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise ConfigError(f"Configuration file not found: {path}") from None
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigError(f"Cannot read configuration file {path}: {exc}") from exc
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Malformed JSON in {path}: {exc}") from exc
    return Configuration.from_dict(data)
