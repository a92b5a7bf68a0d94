from __future__ import annotations

import asyncio

from forks_backend.git.git_manager import GitManager
from forks_backend.server.rpc import rpc
from forks_backend.shared.protocol import (
    BranchExistsParams,
    CreateBranchParams,
    CreateWorktreeParams,
    DeleteBranchParams,
    PathParams,
    RemoveWorktreeParams,
    RepoPathParams,
    ResetHardParams,
    StatusEntry,
    WorktreeInfo,
)

# pygit2 calls block; every handler hops to a worker thread so the accept loop stays free.


@rpc.method("git_is_repo", params=PathParams)
async def git_is_repo(params: PathParams, git: GitManager) -> bool:
    return await asyncio.to_thread(git.is_repo, params.path)


@rpc.method("git_repo_root", params=PathParams)
async def git_repo_root(params: PathParams, git: GitManager) -> str:
    return await asyncio.to_thread(git.repo_root, params.path)


@rpc.method("git_default_branch", params=RepoPathParams)
async def git_default_branch(params: RepoPathParams, git: GitManager) -> str:
    return await asyncio.to_thread(git.default_branch, params.repo_path)


@rpc.method("git_current_branch", params=PathParams)
async def git_current_branch(params: PathParams, git: GitManager) -> str:
    return await asyncio.to_thread(git.current_branch, params.path)


@rpc.method("git_branch_exists", params=BranchExistsParams)
async def git_branch_exists(params: BranchExistsParams, git: GitManager) -> bool:
    return await asyncio.to_thread(git.branch_exists, params.repo_path, params.branch)


@rpc.method("git_create_branch", params=CreateBranchParams)
async def git_create_branch(params: CreateBranchParams, git: GitManager) -> None:
    await asyncio.to_thread(git.create_branch, params.repo_path, params.branch, params.start_point)


@rpc.method("git_list_worktrees", params=RepoPathParams)
async def git_list_worktrees(params: RepoPathParams, git: GitManager) -> list[WorktreeInfo]:
    return await asyncio.to_thread(git.list_worktrees, params.repo_path)


@rpc.method("git_create_worktree", params=CreateWorktreeParams)
async def git_create_worktree(params: CreateWorktreeParams, git: GitManager) -> None:
    await asyncio.to_thread(
        git.create_worktree, params.repo_path, params.path, params.branch, bool(params.create_branch)
    )


@rpc.method("git_remove_worktree", params=RemoveWorktreeParams)
async def git_remove_worktree(params: RemoveWorktreeParams, git: GitManager) -> None:
    await asyncio.to_thread(git.remove_worktree, params.worktree_path, bool(params.force))


@rpc.method("git_delete_branch", params=DeleteBranchParams)
async def git_delete_branch(params: DeleteBranchParams, git: GitManager) -> None:
    await asyncio.to_thread(git.delete_branch, params.repo_path, params.branch, bool(params.force))


@rpc.method("git_current_commit", params=RepoPathParams)
async def git_current_commit(params: RepoPathParams, git: GitManager) -> str:
    return await asyncio.to_thread(git.current_commit, params.repo_path)


@rpc.method("git_reset_hard", params=ResetHardParams)
async def git_reset_hard(params: ResetHardParams, git: GitManager) -> None:
    await asyncio.to_thread(git.reset_hard, params.repo_path, params.git_ref)


@rpc.method("git_status", params=RepoPathParams)
async def git_status(params: RepoPathParams, git: GitManager) -> list[StatusEntry]:
    return await asyncio.to_thread(git.status, params.repo_path)


@rpc.method("git_changed_files", params=RepoPathParams)
async def git_changed_files(params: RepoPathParams, git: GitManager) -> list[str]:
    return await asyncio.to_thread(git.changed_files, params.repo_path)
