"""Git operations exposed to the RPC socket and the desktop host.

Read-only queries go through the shared RepoCache. Mutating operations always
open a fresh handle so they never fight a long-lived cached reference, and
every ref they receive is validated before pygit2 is touched.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from pathlib import Path

import pygit2
from pygit2.enums import FileStatus, ResetMode

from forks_backend.git.refs import validate_git_ref
from forks_backend.git.repo_cache import RepoCache, open_repository
from forks_backend.shared.configuration import Configuration
from forks_backend.shared.errors import ErrorContext, GitOperationError, NotFoundError, StateConflictError
from forks_backend.shared.protocol import StatusEntry, StatusKind, WorktreeInfo

logger = logging.getLogger(__name__)

ORIGIN_REMOTE_PREFIX = "refs/remotes/origin/"

# Checked top to bottom; the first matching bit decides the kind.
STATUS_PRIORITY: list[tuple[FileStatus, StatusKind]] = [
    (FileStatus.CONFLICTED, StatusKind.CONFLICTED),
    (FileStatus.INDEX_DELETED | FileStatus.WT_DELETED, StatusKind.DELETED),
    (FileStatus.INDEX_NEW, StatusKind.ADDED),
    (FileStatus.WT_NEW, StatusKind.UNTRACKED),
    (FileStatus.INDEX_RENAMED | FileStatus.WT_RENAMED, StatusKind.RENAMED),
    (FileStatus.INDEX_TYPECHANGE | FileStatus.WT_TYPECHANGE, StatusKind.TYPECHANGE),
    (FileStatus.INDEX_MODIFIED | FileStatus.WT_MODIFIED, StatusKind.MODIFIED),
]


def status_to_kind(flags: int) -> StatusKind | None:
    for mask, kind in STATUS_PRIORITY:
        if flags & mask:
            return kind
    return None


def _library_message(error: Exception) -> str:
    if isinstance(error, KeyError) and error.args:
        return str(error.args[0])
    return str(error)


def translate_git_errors[T](func: Callable[..., T]) -> Callable[..., T]:
    """Re-raise pygit2 failures as ForksError subclasses carrying the library message."""

    @wraps(func)
    def wrapper(*args, **kwargs) -> T:
        try:
            return func(*args, **kwargs)
        except KeyError as e:
            raise NotFoundError(_library_message(e)) from e
        except (pygit2.GitError, ValueError) as e:
            raise GitOperationError(_library_message(e)) from e

    return wrapper


def _resolve_to_commit(repo: pygit2.Repository, revspec: str) -> pygit2.Commit:
    """Resolve any revspec to a Commit, peeling tags if needed."""
    return repo.revparse_single(revspec).peel(pygit2.Commit)


def _head_commit(repo: pygit2.Repository) -> pygit2.Commit:
    return repo.head.peel(pygit2.Commit)


def branch_from_head(repo: pygit2.Repository) -> str | None:
    """Short branch name HEAD points at; None when detached or unborn."""
    try:
        shorthand = repo.head.shorthand
    except pygit2.GitError:
        return None
    if not shorthand or shorthand == "HEAD":
        return None
    return shorthand


def _head_oid_string(repo: pygit2.Repository) -> str:
    try:
        return str(repo.head.target)
    except pygit2.GitError:
        return ""


def _workdir(repo: pygit2.Repository) -> Path | None:
    return Path(repo.workdir) if repo.workdir else None


def common_dir(repo: pygit2.Repository) -> Path:
    """Shared git dir; linked worktrees point at it through a `commondir` file."""
    git_dir = Path(repo.path)
    pointer = git_dir / "commondir"
    if pointer.is_file():
        target = Path(pointer.read_text(encoding="utf-8").strip())
        return target if target.is_absolute() else (git_dir / target).resolve()
    return git_dir


def _is_locked(repo: pygit2.Repository, worktree_name: str) -> bool:
    return (common_dir(repo) / "worktrees" / worktree_name / "locked").exists()


def worktree_name_from_path(path: Path, fallback: str) -> str:
    return path.name or fallback.replace("/", "-")


def worktree_info_for_path(path: Path, *, locked: bool, prunable: bool) -> WorktreeInfo:
    try:
        repo = pygit2.Repository(str(path))
    except pygit2.GitError:
        # Working directory is gone; git itself reports these as prunable.
        return WorktreeInfo(
            path=str(path), head="", branch=None, bare=False, detached=False, locked=locked, prunable=True
        )
    return WorktreeInfo(
        path=str(path),
        head=_head_oid_string(repo),
        branch=branch_from_head(repo),
        bare=repo.is_bare,
        detached=repo.head_is_detached,
        locked=locked,
        prunable=prunable,
    )


@dataclass
class GitManager:
    cache: RepoCache
    default_branch_fallback: str = "main"

    @classmethod
    def from_config(cls, config: Configuration) -> GitManager:
        cache = RepoCache(ttl=config.repo_cache_ttl, capacity=config.repo_cache_capacity)
        return cls(cache=cache, default_branch_fallback=config.default_branch_fallback)

    # Queries
    def is_repo(self, path: str) -> bool:
        try:
            return pygit2.discover_repository(path) is not None
        except (pygit2.GitError, OSError):
            return False

    @translate_git_errors
    def repo_root(self, path: str) -> str:
        discovered = pygit2.discover_repository(path)
        if discovered is None:
            raise NotFoundError(f"could not find repository at '{path}'")
        workdir = _workdir(pygit2.Repository(discovered))
        if workdir is None:
            raise GitOperationError("repository has no working directory")
        return str(workdir)

    @translate_git_errors
    def default_branch(self, repo_path: str) -> str:
        def _default(repo: pygit2.Repository) -> str:
            reference = repo.references.get("refs/remotes/origin/HEAD")
            if reference is not None and isinstance(reference.target, str):
                target = reference.target
                return target.removeprefix(ORIGIN_REMOTE_PREFIX)
            return branch_from_head(repo) or self.default_branch_fallback

        return self.cache.with_repo(repo_path, _default)

    @translate_git_errors
    def current_branch(self, path: str) -> str:
        return self.cache.with_repo(path, lambda repo: branch_from_head(repo) or "")

    @translate_git_errors
    def branch_exists(self, repo_path: str, branch: str) -> bool:
        validate_git_ref(branch)
        return self.cache.with_repo(repo_path, lambda repo: repo.references.get(f"refs/heads/{branch}") is not None)

    @translate_git_errors
    def current_commit(self, repo_path: str) -> str:
        def _commit(repo: pygit2.Repository) -> str:
            if repo.head_is_unborn:
                raise GitOperationError("HEAD is unborn")
            return str(repo.head.target)

        return self.cache.with_repo(repo_path, _commit)

    @translate_git_errors
    def status(self, repo_path: str) -> list[StatusEntry]:
        def _entries(repo: pygit2.Repository) -> list[StatusEntry]:
            entries = []
            for file_path, flags in repo.status(untracked_files="all", ignored=False).items():
                if not file_path:
                    continue
                kind = status_to_kind(flags)
                if kind is not None:
                    entries.append(StatusEntry(path=file_path, status=kind))
            return entries

        return self.cache.with_repo(repo_path, _entries)

    def changed_files(self, repo_path: str) -> list[str]:
        return [entry.path for entry in self.status(repo_path)]

    @translate_git_errors
    def list_worktrees(self, repo_path: str) -> list[WorktreeInfo]:
        """Primary working directory first, then every registered linked worktree."""
        repo = open_repository(repo_path)
        worktrees = []

        workdir = _workdir(repo)
        if workdir is not None:
            worktrees.append(worktree_info_for_path(workdir, locked=False, prunable=False))

        for name in repo.list_worktrees():
            worktree = repo.lookup_worktree(name)
            worktrees.append(
                worktree_info_for_path(
                    Path(worktree.path), locked=_is_locked(repo, name), prunable=worktree.is_prunable
                )
            )
        return worktrees

    # Mutations
    @translate_git_errors
    def create_branch(self, repo_path: str, branch: str, start_point: str | None = None) -> None:
        validate_git_ref(branch)
        if start_point is not None:
            validate_git_ref(start_point)
        with ErrorContext("create_branch", branch):
            repo = open_repository(repo_path)
            commit = _resolve_to_commit(repo, start_point) if start_point is not None else _head_commit(repo)
            repo.branches.local.create(branch, commit)
            logger.info("Created branch %s at %s in %s", branch, commit.id, repo_path)

    @translate_git_errors
    def delete_branch(self, repo_path: str, branch: str, force: bool = False) -> None:
        validate_git_ref(branch)
        with ErrorContext("delete_branch", branch):
            repo = open_repository(repo_path)
            ref_name = f"refs/heads/{branch}"
            reference = repo.references.get(ref_name)
            if reference is None:
                raise NotFoundError(f"reference '{ref_name}' not found")

            if not force:
                head = repo.head
                if head.name == reference.name:
                    raise StateConflictError("cannot delete checked out branch")
                branch_commit = reference.peel(pygit2.Commit)
                ahead, _behind = repo.ahead_behind(branch_commit.id, head.peel(pygit2.Commit).id)
                if ahead > 0:
                    raise StateConflictError("branch is not fully merged")

            reference.delete()
            logger.info("Deleted branch %s in %s (force=%s)", branch, repo_path, force)

    @translate_git_errors
    def reset_hard(self, repo_path: str, git_ref: str) -> None:
        validate_git_ref(git_ref)
        with ErrorContext("reset_hard", git_ref):
            repo = open_repository(repo_path)
            target = repo.revparse_single(git_ref)
            repo.reset(target.id, ResetMode.HARD)
            logger.info("Hard reset %s to %s", repo_path, git_ref)

    @translate_git_errors
    def create_worktree(self, repo_path: str, path: str, branch: str, create_branch: bool = False) -> None:
        validate_git_ref(branch)
        with ErrorContext("create_worktree", path):
            repo = open_repository(repo_path)
            if create_branch:
                repo.branches.local.create(branch, _head_commit(repo))

            reference = repo.lookup_reference(f"refs/heads/{branch}")
            worktree_path = Path(path)
            name = worktree_name_from_path(worktree_path, branch)
            repo.add_worktree(name, str(worktree_path), reference)
            logger.info("Created worktree %s at %s on %s", name, worktree_path, branch)

    def _find_linked_worktree(self, worktree_path: Path) -> tuple[pygit2.Repository, pygit2.Worktree]:
        main = pygit2.Repository(str(common_dir(open_repository(worktree_path))))
        for name in main.list_worktrees():
            worktree = main.lookup_worktree(name)
            if Path(worktree.path).resolve() == worktree_path:
                return main, worktree
        raise NotFoundError(f"no linked worktree registered at '{worktree_path}'")

    @translate_git_errors
    def remove_worktree(self, worktree_path: str, force: bool = False) -> None:
        path = Path(worktree_path).resolve(strict=True)
        with ErrorContext("remove_worktree", worktree_path):
            main, worktree = self._find_linked_worktree(path)

            # Ignored files count: removing the directory would delete them
            if not force and pygit2.Repository(str(path)).status(untracked_files="all", ignored=True):
                raise StateConflictError("worktree has uncommitted changes")

            # Forcing unlocks first, as `git worktree unlock` would; a failed prune relocks
            lock_file = common_dir(main) / "worktrees" / worktree.name / "locked"
            lock_reason = lock_file.read_bytes() if force and lock_file.exists() else None
            if lock_reason is not None:
                lock_file.unlink()
            try:
                worktree.prune(True)
            except pygit2.GitError:
                if lock_reason is not None:
                    lock_file.write_bytes(lock_reason)
                raise

            if path.exists():
                shutil.rmtree(path)
            logger.info("Removed worktree %s (force=%s)", path, force)
