"""Shared fixtures for shadowsync tests.

Source and destination repositories are real bare repos on disk, reached
through plain filesystem paths, so every transport runs locally.
"""

import json
from types import SimpleNamespace

import paramiko
import pytest
from click.testing import CliRunner
from dulwich.objects import Blob, Commit, Tag, Tree
from dulwich.repo import Repo as DulwichRepo

from shadowsync import CancelToken

KEY_PASSPHRASE = "correct horse"


# ---------------------------------------------------------------------------
# Repository helpers
# ---------------------------------------------------------------------------

def make_commit(repo_path, ref, files, message="commit", parent=None):
    """Commit *files* ({name: bytes}) onto *ref* in a bare repo; return the hex SHA."""
    repo = DulwichRepo(repo_path)
    try:
        tree = Tree()
        for name, data in sorted(files.items()):
            blob = Blob.from_string(data)
            repo.object_store.add_object(blob)
            tree.add(name.encode(), 0o100644, blob.id)
        repo.object_store.add_object(tree)

        commit = Commit()
        commit.tree = tree.id
        if parent is None and ref.encode() in repo.refs:
            parent = repo.refs[ref.encode()].decode()
        commit.parents = [parent.encode()] if parent else []
        commit.author = commit.committer = b"Test <test@example.com>"
        commit.author_time = commit.commit_time = 1700000000
        commit.author_timezone = commit.commit_timezone = 0
        commit.encoding = b"UTF-8"
        commit.message = message.encode() + b"\n"
        repo.object_store.add_object(commit)
        repo.refs[ref.encode()] = commit.id
        return commit.id.decode()
    finally:
        repo.close()


def make_tag(repo_path, name, target_sha, message="release"):
    """Create an annotated tag refs/tags/<name> at *target_sha*."""
    repo = DulwichRepo(repo_path)
    try:
        tag = Tag()
        tag.name = name.encode()
        tag.object = (Commit, target_sha.encode())
        tag.tagger = b"Test <test@example.com>"
        tag.tag_time = 1700000000
        tag.tag_timezone = 0
        tag.message = message.encode() + b"\n"
        repo.object_store.add_object(tag)
        repo.refs[f"refs/tags/{name}".encode()] = tag.id
        return tag.id.decode()
    finally:
        repo.close()


def get_refs(repo_path):
    """Return {ref_name_str: sha_hex_str} for a bare repo, excluding HEAD."""
    repo = DulwichRepo(str(repo_path))
    try:
        return {
            ref.decode(): sha.decode()
            for ref, sha in repo.get_refs().items()
            if ref != b"HEAD"
        }
    finally:
        repo.close()


def count_objects(repo_path):
    repo = DulwichRepo(str(repo_path))
    try:
        return sum(1 for _ in repo.object_store)
    finally:
        repo.close()


def init_bare(path):
    DulwichRepo.init_bare(str(path), mkdir=True).close()
    return str(path)


class CancelOnCheck(CancelToken):
    """Token that cancels itself on the *n*-th call to :meth:`check`."""

    def __init__(self, n=2):
        super().__init__()
        self.n = n
        self.checks = 0

    def check(self):
        self.checks += 1
        if self.checks >= self.n:
            self.cancel()
        super().check()


# ---------------------------------------------------------------------------
# Repository fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def source_repo(tmp_path):
    """Bare repo with branches main and feature-x."""
    p = init_bare(tmp_path / "source.git")
    main = make_commit(p, "refs/heads/main", {"README": b"hello\n"}, "initial")
    make_commit(p, "refs/heads/feature-x", {"README": b"hello\n", "x.txt": b"x\n"},
                "feature", parent=main)
    return p


@pytest.fixture
def dest_repo(tmp_path):
    """Empty bare repo to push into."""
    return init_bare(tmp_path / "dest.git")


@pytest.fixture
def shadow_base(tmp_path):
    return str(tmp_path / "shadows")


# ---------------------------------------------------------------------------
# Keys
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def keys(tmp_path_factory):
    """An RSA key written twice: plain and encrypted with KEY_PASSPHRASE."""
    d = tmp_path_factory.mktemp("keys")
    key = paramiko.RSAKey.generate(2048)
    plain = d / "id_rsa"
    encrypted = d / "id_rsa_enc"
    key.write_private_key_file(str(plain))
    key.write_private_key_file(str(encrypted), password=KEY_PASSPHRASE)
    return SimpleNamespace(
        key=key,
        plain=str(plain),
        encrypted=str(encrypted),
        passphrase=KEY_PASSPHRASE,
    )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

def repo_entry(name, url, key_file, password="", skip=False):
    return {
        "repo_name": name,
        "repo_url": url,
        "repo_pem_file_name": key_file,
        "repo_pem_file_password": password,
        "repo_skip_host_key_validation": skip,
    }


def write_config(path, base, repositories, pairs):
    data = {
        "shadows_location_base_path": base,
        "repositories": repositories,
        "sync_options": [
            {"source_name": s, "destination_name": d} for s, d in pairs
        ],
    }
    path.write_text(json.dumps(data, indent=2))
    return str(path)


@pytest.fixture
def config_data(shadow_base, source_repo, dest_repo, keys):
    """Config dict: source (plain key) -> dest (encrypted key)."""
    return {
        "shadows_location_base_path": shadow_base,
        "repositories": [
            repo_entry("source", source_repo, keys.plain),
            repo_entry("dest", dest_repo, keys.encrypted, keys.passphrase),
        ],
        "sync_options": [{"source_name": "source", "destination_name": "dest"}],
    }


@pytest.fixture
def config_file(tmp_path, config_data):
    p = tmp_path / "config.json"
    p.write_text(json.dumps(config_data, indent=2))
    return str(p)


@pytest.fixture
def runner():
    return CliRunner()
