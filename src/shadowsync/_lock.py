"""Advisory shadow lock: one writer per shadow path across threads and processes."""

from __future__ import annotations

import os
import threading
from contextlib import contextmanager

from .exceptions import ShadowIOError

# Per-process threading locks, keyed by resolved shadow path
_thread_locks: dict[str, threading.Lock] = {}
_thread_locks_guard = threading.Lock()


def _get_thread_lock(shadow_path: str) -> threading.Lock:
    key = os.path.normcase(os.path.realpath(shadow_path))
    with _thread_locks_guard:
        if key not in _thread_locks:
            _thread_locks[key] = threading.Lock()
        return _thread_locks[key]


def lock_path(shadow_path: str) -> str:
    """Lock file for *shadow_path*: a sibling, so the bare repo stays clean."""
    return os.path.normpath(shadow_path) + ".lock"


def _open_lock_file(shadow_path: str) -> int:
    path = lock_path(shadow_path)
    try:
        fd = os.open(path, os.O_CREAT | os.O_RDWR | getattr(os, "O_CLOEXEC", 0), 0o600)
    except OSError as exc:
        raise ShadowIOError(f"Cannot open lock file {path}: {exc}") from exc
    os.set_inheritable(fd, False)
    return fd


try:
    import fcntl

    @contextmanager
    def shadow_lock(shadow_path: str):
        """Hold an exclusive lock on *shadow_path* for the ``with`` block."""
        tlock = _get_thread_lock(shadow_path)
        tlock.acquire()
        try:
            fd = _open_lock_file(shadow_path)
            try:
                fcntl.flock(fd, fcntl.LOCK_EX)
                yield
            finally:
                fcntl.flock(fd, fcntl.LOCK_UN)
                os.close(fd)
        finally:
            tlock.release()

except ImportError:
    import msvcrt

    @contextmanager
    def shadow_lock(shadow_path: str):
        """Hold an exclusive lock on *shadow_path* for the ``with`` block."""
        tlock = _get_thread_lock(shadow_path)
        tlock.acquire()
        try:
            fd = _open_lock_file(shadow_path)
            try:
                msvcrt.locking(fd, msvcrt.LK_LOCK, 1)
                yield
            finally:
                msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)
                os.close(fd)
        finally:
            tlock.release()
