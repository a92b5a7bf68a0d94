"""Bounded cache of open pygit2 repositories keyed by canonical path.

Opening a repository is cheap but not free, and the RPC surface hits the same
handful of worktrees over and over. Entries idle for longer than the TTL are
dropped on the next access; when the cache is full the least recently used
entry goes first. Eviction always runs before insertion, so the size never
exceeds capacity.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import pygit2

from forks_backend.shared.errors import NotFoundError, RepoCacheLockError

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(seconds=30)
DEFAULT_CAPACITY = 16
DEFAULT_LOCK_TIMEOUT = timedelta(seconds=30)


def open_repository(path: Path | str) -> pygit2.Repository:
    """Open the repository at `path`, falling back to discovery from an ancestor."""
    try:
        return pygit2.Repository(str(path))
    except pygit2.GitError:
        discovered = pygit2.discover_repository(str(path))
        if discovered is None:
            raise NotFoundError(f"could not find repository at '{path}'") from None
        return pygit2.Repository(discovered)


@dataclass
class CachedRepository:
    canonical_path: Path
    repo: pygit2.Repository
    last_used: float


class RepoCache:
    def __init__(
        self,
        ttl: timedelta = DEFAULT_TTL,
        capacity: int = DEFAULT_CAPACITY,
        *,
        lock_timeout: timedelta = DEFAULT_LOCK_TIMEOUT,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._ttl = ttl.total_seconds()
        self._capacity = capacity
        self._lock_timeout = lock_timeout.total_seconds()
        self._clock = clock
        self._entries: dict[Path, CachedRepository] = {}
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def _acquire(self) -> None:
        if not self._lock.acquire(timeout=self._lock_timeout):
            raise RepoCacheLockError("repo cache lock poisoned")

    def _evict_stale(self, now: float) -> None:
        stale = [key for key, entry in self._entries.items() if now - entry.last_used >= self._ttl]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug("Evicted %d stale repositories", len(stale))

    def _evict_oldest(self) -> None:
        oldest = min(self._entries.values(), key=lambda entry: entry.last_used)
        del self._entries[oldest.canonical_path]
        logger.debug("Evicted least recently used repository %s", oldest.canonical_path)

    def _get_or_open_locked(self, path: Path | str) -> pygit2.Repository:
        canonical = Path(path).resolve(strict=True)
        now = self._clock()
        self._evict_stale(now)

        entry = self._entries.get(canonical)
        if entry is None:
            while len(self._entries) >= self._capacity:
                self._evict_oldest()
            entry = CachedRepository(canonical_path=canonical, repo=open_repository(canonical), last_used=now)
            self._entries[canonical] = entry
        entry.last_used = now
        return entry.repo

    def get_or_open(self, path: Path | str) -> pygit2.Repository:
        self._acquire()
        try:
            return self._get_or_open_locked(path)
        finally:
            self._lock.release()

    def with_repo[T](self, path: Path | str, fn: Callable[[pygit2.Repository], T]) -> T:
        """Run `fn` against the cached handle while holding the cache guard."""
        self._acquire()
        try:
            return fn(self._get_or_open_locked(path))
        finally:
            self._lock.release()

    def clear(self) -> None:
        self._acquire()
        try:
            self._entries.clear()
        finally:
            self._lock.release()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: object) -> bool:
        if not isinstance(path, (str, Path)):
            return False
        try:
            canonical = Path(path).resolve(strict=True)
        except OSError:
            return False
        return canonical in self._entries
