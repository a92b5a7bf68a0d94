"""Shared fixtures for forks_backend tests.

Subpackage conftest.py files pull these in with a star import.
"""

from __future__ import annotations

import threading
from datetime import timedelta
from pathlib import Path

import pygit2
import pytest
from pydantic import BaseModel

from forks_backend.git.git_manager import GitManager
from forks_backend.git.repo_cache import RepoCache
from forks_backend.shared.configuration import Configuration
from forks_backend.testing.repo_factory import GitRepoFactory


class FakeClock:
    """Monotonic clock stand-in advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta.total_seconds()


class RecordingEmitter:
    """Emitter that keeps every (event_name, event) pair for assertions."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[tuple[str, BaseModel]] = []

    def emit(self, event_name: str, event: BaseModel) -> None:
        with self._lock:
            self._events.append((event_name, event))

    @property
    def events(self) -> list[tuple[str, BaseModel]]:
        with self._lock:
            return list(self._events)


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Resolved temporary directory (macOS /var -> /private/var)."""
    return tmp_path.resolve()


@pytest.fixture
def repo_factory(temp_dir: Path) -> GitRepoFactory:
    return GitRepoFactory(temp_dir)


@pytest.fixture
def git_repo(repo_factory: GitRepoFactory) -> Path:
    """Repository on `main` with one commit and a `feature` branch at the same commit."""
    return repo_factory.create_repo(branches=["feature"])


@pytest.fixture
def pygit2_repo(git_repo: Path) -> pygit2.Repository:
    return pygit2.Repository(str(git_repo))


@pytest.fixture
def test_config(temp_dir: Path) -> Configuration:
    forks_dir = temp_dir / "forks"
    forks_dir.mkdir()
    return Configuration(forks_dir=forks_dir, socket_override=temp_dir / "rpc.sock")


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def git_manager() -> GitManager:
    return GitManager(cache=RepoCache())


@pytest.fixture
def recording_emitter() -> RecordingEmitter:
    return RecordingEmitter()
