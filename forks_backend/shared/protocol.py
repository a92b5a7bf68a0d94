"""Line-delimited JSON protocol for the git RPC socket and watch events.

One connection carries exactly one request line and one response line:

    -> {"id": "1", "method": "git_is_repo", "params": {"path": "/repo"}}
    <- {"id": "1", "ok": true, "result": true, "error": null}

Parameter and payload field names are camelCase on the wire.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, ValidationError
from pydantic.alias_generators import to_camel

UNKNOWN_REQUEST_ID = "unknown"
UNKNOWN_METHOD = "unknown_method"
INVALID_PARAMS = "invalid_params"

WATCH_EVENT_NAME = "fs/watch"

DEFAULT_DIFF_CONTEXT = 3
MAX_DIFF_CONTEXT = 200


class RpcRequest(BaseModel):
    """A single request; unknown top-level keys are ignored."""

    id: str = Field(..., description="Opaque request id echoed in the response")
    method: str = Field(..., description="Method name to call")
    params: Any = Field(..., description="Method parameters (shape depends on method)")


def describe_validation_error(error: ValidationError) -> str:
    """One-line summary of a pydantic error, suitable for the response `error` field."""
    parts = []
    for detail in error.errors(include_url=False):
        loc = ".".join(str(p) for p in detail["loc"])
        parts.append(f"{loc}: {detail['msg']}" if loc else detail["msg"])
    return "; ".join(parts)


def parse_request(line: str) -> RpcRequest:
    """Parse one request line; raises pydantic.ValidationError on malformed input."""
    return RpcRequest.model_validate_json(line)


class RpcResponse(BaseModel):
    model_config = {"extra": "forbid"}

    id: str
    ok: bool
    result: Any = None
    error: str | None = None

    @classmethod
    def success(cls, request_id: str, result: Any) -> RpcResponse:
        return cls(id=request_id, ok=True, result=result)

    @classmethod
    def failure(cls, request_id: str, error: str) -> RpcResponse:
        return cls(id=request_id, ok=False, error=error)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Method parameter schemas
class PathParams(CamelModel):
    path: str


class RepoPathParams(CamelModel):
    repo_path: str


class BranchExistsParams(CamelModel):
    repo_path: str
    branch: str


class CreateBranchParams(CamelModel):
    repo_path: str
    branch: str
    start_point: str | None = None


class CreateWorktreeParams(CamelModel):
    repo_path: str
    path: str
    branch: str
    create_branch: bool | None = None


class RemoveWorktreeParams(CamelModel):
    worktree_path: str
    force: bool | None = None


class DeleteBranchParams(CamelModel):
    repo_path: str
    branch: str
    force: bool | None = None


class ResetHardParams(CamelModel):
    repo_path: str
    git_ref: str


class DiffParams(CamelModel):
    original: str
    modified: str
    context_lines: NonNegativeInt | None = None

    def clamped_context(self) -> int:
        if self.context_lines is None:
            return DEFAULT_DIFF_CONTEXT
        return min(self.context_lines, MAX_DIFF_CONTEXT)


# Method result schemas
class StatusKind(StrEnum):
    CONFLICTED = "conflicted"
    DELETED = "deleted"
    ADDED = "added"
    UNTRACKED = "untracked"
    RENAMED = "renamed"
    TYPECHANGE = "typechange"
    MODIFIED = "modified"


class StatusEntry(BaseModel):
    model_config = {"frozen": True}

    path: str
    status: StatusKind


class WorktreeInfo(BaseModel):
    model_config = {"frozen": True}

    path: str
    head: str = Field(..., description="HEAD commit id, empty when unborn")
    branch: str | None = Field(default=None, description="None = detached HEAD")
    bare: bool
    detached: bool
    locked: bool
    prunable: bool


# Filesystem watch surface
class WatchKind(StrEnum):
    CREATE = "create"
    MODIFY = "modify"
    REMOVE = "remove"
    ANY = "any"
    OTHER = "other"


class WatchAddRequest(CamelModel):
    path: str
    repo_root: str | None = None
    attempt_id: str | None = None
    debounce_ms: NonNegativeInt | None = None
    watch_git: bool | None = None


class WatchAddResponse(CamelModel):
    watch_id: str


class WatchEvent(CamelModel):
    """Coalesced change notification emitted once per debounce window."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    watch_id: str
    repo_root: str
    worktree_path: str
    attempt_id: str | None = None
    paths: list[str]
    kinds: list[WatchKind]
    timestamp_ms: int

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)
