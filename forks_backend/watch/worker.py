"""Per-watch worker thread: filter, debounce and coalesce filesystem events.

The worker doubles as the watchdog event handler: observer threads push raw
events onto its queue and the worker thread is the only consumer. A burst of
events is accumulated until the debounce window passes with no new arrival,
then flushed to the emitter as a single WatchEvent.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path

import structlog
from watchdog.events import FileSystemEvent, FileSystemEventHandler

from forks_backend.shared.protocol import WATCH_EVENT_NAME, WatchEvent, WatchKind
from forks_backend.watch.emitter import Emitter
from forks_backend.watch.filters import WatchFilter, event_paths, kind_label

logger = structlog.get_logger(__name__)

MAX_PENDING_PATHS = 10_000

_CLOSE = object()


@dataclass(frozen=True)
class WorkerConfig:
    watch_id: str
    worktree_path: Path
    repo_root: Path
    attempt_id: str | None
    debounce: timedelta
    filter: WatchFilter
    max_pending_paths: int = MAX_PENDING_PATHS


def now_ms() -> int:
    return time.time_ns() // 1_000_000


class WatchWorker(FileSystemEventHandler):
    def __init__(self, config: WorkerConfig, emitter: Emitter):
        self.config = config
        self._emitter = emitter
        self._queue: queue.Queue[FileSystemEvent | object] = queue.Queue()
        self._pending_paths: set[str] = set()
        self._pending_kinds: set[WatchKind] = set()
        self._thread = threading.Thread(target=self._run, name=f"watch-{config.watch_id}", daemon=True)

    @property
    def watch_id(self) -> str:
        return self.config.watch_id

    def start(self) -> None:
        self._thread.start()

    def on_any_event(self, event: FileSystemEvent) -> None:
        self.submit(event)

    def submit(self, event: FileSystemEvent) -> None:
        self._queue.put(event)

    def close(self) -> None:
        """Ask the worker to flush what it holds and exit; does not wait."""
        self._queue.put(_CLOSE)

    def join(self, timeout: float | None = None) -> None:
        self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        window = self.config.debounce.total_seconds()
        while True:
            item = self._queue.get()
            if item is _CLOSE:
                return
            self._collect(item)
            while True:
                try:
                    item = self._queue.get(timeout=window)
                except queue.Empty:
                    self._flush()
                    break
                if item is _CLOSE:
                    self._flush()
                    return
                self._collect(item)

    def _collect(self, event: FileSystemEvent) -> None:
        kind = kind_label(event)
        if kind is None:
            return
        # Kinds are recorded even once the path set is full
        self._pending_kinds.add(kind)
        for formatted in self.config.filter.filter_paths(event_paths(event)):
            if len(self._pending_paths) >= self.config.max_pending_paths:
                break
            self._pending_paths.add(formatted)

    def _flush(self) -> None:
        if not self._pending_paths:
            self._pending_kinds.clear()
            return

        event = WatchEvent(
            watch_id=self.config.watch_id,
            repo_root=str(self.config.repo_root),
            worktree_path=str(self.config.worktree_path),
            attempt_id=self.config.attempt_id,
            paths=sorted(self._pending_paths),
            kinds=sorted(self._pending_kinds),
            timestamp_ms=now_ms(),
        )
        self._pending_paths.clear()
        self._pending_kinds.clear()

        logger.debug("watch_flush", watch_id=event.watch_id, paths=len(event.paths), kinds=list(event.kinds))
        try:
            self._emitter.emit(WATCH_EVENT_NAME, event)
        except Exception:
            logger.exception("watch_emit_failed", watch_id=event.watch_id)
