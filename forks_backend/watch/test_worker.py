import threading
import time
from datetime import timedelta
from pathlib import Path

import pytest
from watchdog.events import FileCreatedEvent, FileDeletedEvent, FileModifiedEvent, FileMovedEvent, FileOpenedEvent

from forks_backend.shared.config_file import DEFAULT_IGNORED_DIRS
from forks_backend.shared.protocol import WATCH_EVENT_NAME, WatchEvent, WatchKind
from forks_backend.testing.conftest import RecordingEmitter
from forks_backend.testing.utils import wait_until
from forks_backend.watch.filters import WatchFilter
from forks_backend.watch.worker import WatchWorker, WorkerConfig

pytestmark = pytest.mark.timeout(10)

WORKTREE = Path("/work/tree")
GIT_DIR = Path("/work/tree/.git")


def make_worker(
    emitter,
    *,
    debounce: timedelta = timedelta(milliseconds=50),
    max_pending_paths: int = 10_000,
    watch_id: str = "1",
) -> WatchWorker:
    config = WorkerConfig(
        watch_id=watch_id,
        worktree_path=WORKTREE,
        repo_root=WORKTREE,
        attempt_id="attempt-7",
        debounce=debounce,
        filter=WatchFilter(WORKTREE, GIT_DIR, frozenset(DEFAULT_IGNORED_DIRS)),
        max_pending_paths=max_pending_paths,
    )
    worker = WatchWorker(config, emitter)
    worker.start()
    return worker


def stop(worker: WatchWorker) -> None:
    worker.close()
    worker.join(timeout=5)
    assert not worker.is_alive()


def test_burst_coalesces_into_one_event(recording_emitter):
    worker = make_worker(recording_emitter)
    worker.submit(FileCreatedEvent(str(WORKTREE / "a.txt")))
    worker.submit(FileModifiedEvent(str(WORKTREE / "a.txt")))
    worker.submit(FileDeletedEvent(str(WORKTREE / "b.txt")))
    worker.submit(FileModifiedEvent(str(GIT_DIR / "HEAD")))
    worker.submit(FileModifiedEvent(str(WORKTREE / "node_modules/x.js")))

    assert wait_until(lambda: len(recording_emitter.events) == 1)
    time.sleep(0.2)
    stop(worker)

    [(name, event)] = recording_emitter.events
    assert name == WATCH_EVENT_NAME
    assert isinstance(event, WatchEvent)
    assert event.paths == [".git/HEAD", "a.txt", "b.txt"]
    assert set(event.kinds) == {WatchKind.CREATE, WatchKind.MODIFY, WatchKind.REMOVE}
    assert event.watch_id == "1"
    assert event.attempt_id == "attempt-7"
    assert event.worktree_path == str(WORKTREE)
    assert event.repo_root == str(WORKTREE)
    assert abs(event.timestamp_ms - time.time() * 1000) < 60_000


def test_separate_bursts_flush_separately(recording_emitter):
    worker = make_worker(recording_emitter)
    worker.submit(FileCreatedEvent(str(WORKTREE / "first.txt")))
    assert wait_until(lambda: len(recording_emitter.events) == 1)
    worker.submit(FileCreatedEvent(str(WORKTREE / "second.txt")))
    assert wait_until(lambda: len(recording_emitter.events) == 2)
    stop(worker)

    assert [event.paths for _, event in recording_emitter.events] == [["first.txt"], ["second.txt"]]


def test_filtered_burst_emits_nothing(recording_emitter):
    worker = make_worker(recording_emitter)
    worker.submit(FileOpenedEvent(str(WORKTREE / "a.txt")))
    worker.submit(FileModifiedEvent(str(WORKTREE / "dist/bundle.js")))
    worker.submit(FileModifiedEvent(str(GIT_DIR / "objects/ab/cd")))
    time.sleep(0.2)
    stop(worker)
    assert recording_emitter.events == []


def test_kinds_from_filtered_burst_do_not_leak(recording_emitter):
    worker = make_worker(recording_emitter)
    worker.submit(FileDeletedEvent(str(WORKTREE / "build/out.o")))
    time.sleep(0.2)
    worker.submit(FileCreatedEvent(str(WORKTREE / "a.txt")))
    assert wait_until(lambda: len(recording_emitter.events) == 1)
    stop(worker)

    [(_, event)] = recording_emitter.events
    assert event.kinds == [WatchKind.CREATE]


def test_pending_paths_capped_but_kinds_recorded(recording_emitter):
    worker = make_worker(recording_emitter, debounce=timedelta(seconds=30), max_pending_paths=3)
    for i in range(5):
        worker.submit(FileCreatedEvent(str(WORKTREE / f"f{i}.txt")))
    worker.submit(FileDeletedEvent(str(WORKTREE / "late.txt")))
    stop(worker)

    [(_, event)] = recording_emitter.events
    assert len(event.paths) == 3
    assert "late.txt" not in event.paths
    assert WatchKind.REMOVE in event.kinds


def test_close_flushes_pending_immediately(recording_emitter):
    worker = make_worker(recording_emitter, debounce=timedelta(seconds=30))
    worker.submit(FileModifiedEvent(str(WORKTREE / "a.txt")))
    stop(worker)
    assert [event.paths for _, event in recording_emitter.events] == [["a.txt"]]


def test_move_reports_both_paths_as_modify(recording_emitter):
    worker = make_worker(recording_emitter, debounce=timedelta(seconds=30))
    worker.submit(FileMovedEvent(str(WORKTREE / "old.txt"), str(WORKTREE / "new.txt")))
    stop(worker)

    [(_, event)] = recording_emitter.events
    assert event.paths == ["new.txt", "old.txt"]
    assert event.kinds == [WatchKind.MODIFY]


def test_emitter_failure_does_not_kill_worker():
    delivered: list[WatchEvent] = []
    calls = threading.Event()

    class FlakyEmitter:
        def emit(self, event_name, event):
            if not calls.is_set():
                calls.set()
                raise RuntimeError("sink unavailable")
            delivered.append(event)

    worker = make_worker(FlakyEmitter())
    worker.submit(FileCreatedEvent(str(WORKTREE / "lost.txt")))
    assert calls.wait(timeout=5)
    worker.submit(FileCreatedEvent(str(WORKTREE / "kept.txt")))
    assert wait_until(lambda: len(delivered) == 1)
    stop(worker)
    assert delivered[0].paths == ["kept.txt"]


def test_thread_named_after_watch():
    worker = make_worker(RecordingEmitter(), watch_id="42")
    try:
        assert any(t.name == "watch-42" for t in threading.enumerate())
    finally:
        stop(worker)


def test_wire_payload_is_camel_case(recording_emitter):
    worker = make_worker(recording_emitter, debounce=timedelta(seconds=30))
    worker.submit(FileCreatedEvent(str(WORKTREE / "a.txt")))
    stop(worker)

    [(_, event)] = recording_emitter.events
    assert set(event.to_wire()) == {
        "watchId",
        "repoRoot",
        "worktreePath",
        "attemptId",
        "paths",
        "kinds",
        "timestampMs",
    }
    assert event.to_wire()["kinds"] == ["create"]
