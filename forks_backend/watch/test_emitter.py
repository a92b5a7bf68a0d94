import io
import json

from forks_backend.shared.protocol import WATCH_EVENT_NAME, WatchEvent, WatchKind
from forks_backend.watch.emitter import JsonLinesEmitter


def test_json_lines_envelope():
    stream = io.StringIO()
    event = WatchEvent(
        watch_id="3",
        repo_root="/r",
        worktree_path="/r",
        attempt_id=None,
        paths=["a.txt"],
        kinds=[WatchKind.CREATE],
        timestamp_ms=1,
    )

    JsonLinesEmitter(stream).emit(WATCH_EVENT_NAME, event)
    JsonLinesEmitter(stream).emit(WATCH_EVENT_NAME, event)

    lines = stream.getvalue().splitlines()
    assert len(lines) == 2
    assert json.loads(lines[0]) == {
        "event": "fs/watch",
        "payload": {
            "watchId": "3",
            "repoRoot": "/r",
            "worktreePath": "/r",
            "attemptId": None,
            "paths": ["a.txt"],
            "kinds": ["create"],
            "timestampMs": 1,
        },
    }
