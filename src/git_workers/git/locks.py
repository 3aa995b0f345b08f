"""Per-repository mutual exclusion for operations on the shared main worktree.

Dry-run probes, merges and resolutions all check branches out in the one main
worktree, so two of them running at once against the same repository corrupt
each other.  ``RepoLock`` serializes them across threads (re-entrant, so a merge
may re-run the probe while holding the lock) and across processes through an
``flock`` on a file inside the repository's git common dir.
"""

from __future__ import annotations

import fcntl
import logging
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import IO

from git_workers.errors import RepoLockTimeout

logger = logging.getLogger(__name__)

MAIN_WORKTREE_SCOPE = "main-worktree"
SPAWN_SCOPE = "spawn"

_POLL_INTERVAL_SECONDS = 0.05


class RepoLock:
    """Re-entrant lock backed by a thread lock plus an exclusive file lock."""

    def __init__(self, lock_path: Path, *, timeout_seconds: float) -> None:
        self.lock_path = lock_path
        self.timeout_seconds = timeout_seconds
        self._thread_lock = threading.RLock()
        self._depth = 0
        self._handle: IO[str] | None = None

    @contextmanager
    def hold(self) -> Iterator[None]:
        deadline = time.monotonic() + self.timeout_seconds
        if not self._thread_lock.acquire(timeout=self.timeout_seconds):
            raise RepoLockTimeout(str(self.lock_path), self.timeout_seconds)
        try:
            if self._depth == 0:
                self._handle = self._acquire_file_lock(deadline)
            self._depth += 1
            try:
                yield
            finally:
                self._depth -= 1
                if self._depth == 0:
                    self._release_file_lock()
        finally:
            self._thread_lock.release()

    def _acquire_file_lock(self, deadline: float) -> IO[str]:
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = self.lock_path.open("w", encoding="utf-8")
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            except BlockingIOError:
                if time.monotonic() >= deadline:
                    handle.close()
                    raise RepoLockTimeout(str(self.lock_path), self.timeout_seconds) from None
                time.sleep(_POLL_INTERVAL_SECONDS)
                continue
            logger.debug("Acquired repository lock %s", self.lock_path)
            return handle

    def _release_file_lock(self) -> None:
        handle = self._handle
        self._handle = None
        if handle is None:
            return
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        finally:
            handle.close()
        logger.debug("Released repository lock %s", self.lock_path)


class RepoLockRegistry:
    """Hands out one ``RepoLock`` per (git common dir, scope)."""

    def __init__(self, *, timeout_seconds: float = 60.0) -> None:
        self.timeout_seconds = timeout_seconds
        self._locks: dict[tuple[Path, str], RepoLock] = {}
        self._guard = threading.Lock()

    def lock_for(self, common_dir: Path, scope: str = MAIN_WORKTREE_SCOPE) -> RepoLock:
        key = (common_dir.resolve(), scope)
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = RepoLock(
                    key[0] / f"git-workers-{scope}.lock",
                    timeout_seconds=self.timeout_seconds,
                )
                self._locks[key] = lock
            return lock
