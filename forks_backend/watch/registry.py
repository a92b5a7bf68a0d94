"""Registry of active filesystem watches.

Each watch owns one WatchWorker and one watchdog observer. The observer
watches the worktree recursively and, when git metadata watching is on, the
git dir non-recursively (HEAD, index, packed-refs) plus its refs/ tree.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

from watchdog.observers import Observer
from watchdog.observers.api import BaseObserver
from watchdog.observers.polling import PollingObserver

from forks_backend.shared.configuration import Configuration
from forks_backend.shared.errors import ResourceError, WatchNotFoundError, WatchRegistrationError
from forks_backend.shared.protocol import WatchAddRequest, WatchAddResponse
from forks_backend.watch.emitter import Emitter
from forks_backend.watch.filters import (
    WatchFilter,
    canonicalize_absolute,
    clamp_debounce,
    git_watch_paths,
    resolve_git_dir,
)
from forks_backend.watch.worker import WatchWorker, WorkerConfig

logger = logging.getLogger(__name__)

# Bounds the wait for a worker's final flush on shutdown
WORKER_JOIN_TIMEOUT = timedelta(seconds=2)


def observed_paths(worktree_path: Path, git_dir: Path | None) -> list[tuple[Path, bool]]:
    """(path, recursive) pairs to schedule for one watch."""
    targets = [(worktree_path, True)]
    if git_dir is None:
        return targets
    git_paths = git_watch_paths(git_dir)
    # Metadata files are observed through their directory; the filter drops siblings
    if any(not recursive for _, recursive in git_paths):
        targets.append((git_dir, False))
    targets.extend((path, True) for path, recursive in git_paths if recursive)
    return targets


def _stop_observer(observer: BaseObserver) -> None:
    observer.stop()
    if observer.is_alive():
        observer.join()


@dataclass
class _Watch:
    worker: WatchWorker
    observer: BaseObserver

    def stop(self) -> None:
        _stop_observer(self.observer)
        self.worker.close()

    def join(self, timeout: timedelta = WORKER_JOIN_TIMEOUT) -> None:
        self.worker.join(timeout.total_seconds())
        if self.worker.is_alive():
            logger.warning("Watch %s worker did not finish within %s", self.worker.watch_id, timeout)


class WatchRegistry:
    def __init__(self, emitter: Emitter, config: Configuration):
        self._emitter = emitter
        self._config = config
        self._lock = threading.Lock()
        self._watches: dict[str, _Watch] = {}
        self._next_id = 1

    def __enter__(self) -> WatchRegistry:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.remove_all()
        return False

    def __len__(self) -> int:
        with self._lock:
            return len(self._watches)

    def watch_ids(self) -> list[str]:
        with self._lock:
            return list(self._watches)

    def _make_observer(self) -> BaseObserver:
        if self._config.watch_use_polling:
            return PollingObserver(timeout=self._config.watch_poll_interval.total_seconds())
        return Observer()

    def add_watch(self, request: WatchAddRequest) -> WatchAddResponse:
        worktree_path = canonicalize_absolute(request.path)
        if not worktree_path.is_dir():
            raise ResourceError("watch path must be a directory")
        repo_root = canonicalize_absolute(request.repo_root) if request.repo_root is not None else worktree_path

        debounce_ms = clamp_debounce(
            request.debounce_ms if request.debounce_ms is not None else self._config.watch_default_debounce_ms
        )
        watch_git = request.watch_git if request.watch_git is not None else True
        git_dir = resolve_git_dir(repo_root) if watch_git else None

        with self._lock:
            watch_id = str(self._next_id)
            self._next_id += 1

        worker = WatchWorker(
            WorkerConfig(
                watch_id=watch_id,
                worktree_path=worktree_path,
                repo_root=repo_root,
                attempt_id=request.attempt_id,
                debounce=timedelta(milliseconds=debounce_ms),
                filter=WatchFilter(worktree_path, git_dir, self._config.watch_ignored_dirs),
                max_pending_paths=self._config.watch_max_pending_paths,
            ),
            self._emitter,
        )
        worker.start()

        observer = self._make_observer()
        try:
            for path, recursive in observed_paths(worktree_path, git_dir):
                observer.schedule(worker, str(path), recursive=recursive)
            observer.start()
        except OSError as e:
            _stop_observer(observer)
            worker.close()
            raise WatchRegistrationError(f"failed to watch {worktree_path}: {e}") from e

        with self._lock:
            self._watches[watch_id] = _Watch(worker=worker, observer=observer)

        logger.info(
            "Watch %s started on %s (git dir: %s, debounce %dms)", watch_id, worktree_path, git_dir, debounce_ms
        )
        return WatchAddResponse(watch_id=watch_id)

    def remove_watch(self, watch_id: str) -> None:
        with self._lock:
            watch = self._watches.pop(watch_id, None)
        if watch is None:
            raise WatchNotFoundError("watch not found")
        watch.stop()
        watch.join()
        logger.info("Watch %s stopped", watch_id)

    def remove_all(self) -> None:
        with self._lock:
            watches = list(self._watches.items())
            self._watches.clear()
        for _, watch in watches:
            watch.stop()
        # Workers flush their pending batch on close; wait for it
        for watch_id, watch in watches:
            watch.join()
            logger.info("Watch %s stopped", watch_id)
