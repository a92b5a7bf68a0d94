"""Path and event-kind filtering for worktree watches."""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path

from watchdog.events import (
    EVENT_TYPE_CLOSED,
    EVENT_TYPE_CLOSED_NO_WRITE,
    EVENT_TYPE_CREATED,
    EVENT_TYPE_DELETED,
    EVENT_TYPE_MODIFIED,
    EVENT_TYPE_MOVED,
    EVENT_TYPE_OPENED,
    FileSystemEvent,
)

from forks_backend.shared.errors import ResourceError
from forks_backend.shared.protocol import WatchKind

DEFAULT_DEBOUNCE_MS = 150
MIN_DEBOUNCE_MS = 50
MAX_DEBOUNCE_MS = 2000

GIT_METADATA_FILES = frozenset({"HEAD", "index", "packed-refs"})
GIT_REFS_DIR = "refs"

ACCESS_EVENT_TYPES = frozenset({EVENT_TYPE_OPENED, EVENT_TYPE_CLOSED, EVENT_TYPE_CLOSED_NO_WRITE})

_KIND_BY_EVENT_TYPE = {
    EVENT_TYPE_CREATED: WatchKind.CREATE,
    EVENT_TYPE_MODIFIED: WatchKind.MODIFY,
    EVENT_TYPE_DELETED: WatchKind.REMOVE,
    EVENT_TYPE_MOVED: WatchKind.MODIFY,
}


def _to_path(src_path: bytes | str) -> Path:
    """Convert watchdog src_path to Path, handling bytes case."""
    if isinstance(src_path, bytes):
        return Path(os.fsdecode(src_path))
    return Path(src_path)


def clamp_debounce(value: int | None) -> int:
    if value is None:
        value = DEFAULT_DEBOUNCE_MS
    return max(MIN_DEBOUNCE_MS, min(value, MAX_DEBOUNCE_MS))


def canonicalize_absolute(path: str) -> Path:
    """Validate a caller-supplied path and resolve it strictly.

    Raises ResourceError for blank or relative input, and for resolution
    failures (carrying the OS error text).
    """
    if not path.strip():
        raise ResourceError("path is required")
    p = Path(path)
    if not p.is_absolute():
        raise ResourceError("path must be absolute")
    try:
        return p.resolve(strict=True)
    except OSError as e:
        raise ResourceError(str(e)) from e


def resolve_git_dir(repo_root: Path) -> Path | None:
    """Git dir for a worktree: `.git` itself, or the target of a `gitdir:` file."""
    git_path = repo_root / ".git"
    try:
        if git_path.is_dir():
            return git_path.resolve(strict=True)
        if not git_path.is_file():
            return None
        content = git_path.read_text(encoding="utf-8").strip()
        if not content.startswith("gitdir:"):
            return None
        target = Path(content.removeprefix("gitdir:").strip())
        if not target.is_absolute():
            target = repo_root / target
        return target.resolve(strict=True)
    except (OSError, UnicodeDecodeError):
        return None


def git_watch_paths(git_dir: Path) -> list[tuple[Path, bool]]:
    """Existing git metadata paths to observe, with their recursive flag."""
    candidates = [(git_dir / name, False) for name in ("HEAD", "index", "packed-refs")]
    candidates.append((git_dir / GIT_REFS_DIR, True))
    return [(path, recursive) for path, recursive in candidates if path.exists()]


def kind_label(event: FileSystemEvent) -> WatchKind | None:
    """WatchKind for an event, or None for events that are never reported.

    Access events are dropped, as are directory mtime bumps: watchdog reports
    a parent-directory modification alongside every child create/delete.
    """
    if event.event_type in ACCESS_EVENT_TYPES:
        return None
    if event.is_directory and event.event_type == EVENT_TYPE_MODIFIED:
        return None
    return _KIND_BY_EVENT_TYPE.get(event.event_type, WatchKind.OTHER)


def event_paths(event: FileSystemEvent) -> Iterator[Path]:
    yield _to_path(event.src_path)
    if event.dest_path:
        yield _to_path(event.dest_path)


@dataclass(frozen=True)
class WatchFilter:
    worktree_path: Path
    git_dir: Path | None
    ignored_dirs: frozenset[str]

    def _is_allowed_git_path(self, relative: Path) -> bool:
        if str(relative) in GIT_METADATA_FILES:
            return True
        return bool(relative.parts) and relative.parts[0] == GIT_REFS_DIR

    def should_emit_path(self, path: Path) -> bool:
        if self.git_dir is not None and path.is_relative_to(self.git_dir):
            return self._is_allowed_git_path(path.relative_to(self.git_dir))
        # Components above the worktree never count
        parts = path.relative_to(self.worktree_path).parts if path.is_relative_to(self.worktree_path) else path.parts
        return not any(part in self.ignored_dirs for part in parts)

    def format_event_path(self, path: Path) -> str:
        if path.is_relative_to(self.worktree_path):
            return str(path.relative_to(self.worktree_path))
        if self.git_dir is not None and path.is_relative_to(self.git_dir):
            return str(Path(".git") / path.relative_to(self.git_dir))
        return str(path)

    def filter_paths(self, paths: Iterable[Path]) -> Iterator[str]:
        for path in paths:
            if self.should_emit_path(path):
                yield self.format_event_path(path)
