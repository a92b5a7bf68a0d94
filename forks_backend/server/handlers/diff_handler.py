from __future__ import annotations

import asyncio

from forks_backend.server.diff import unified_diff
from forks_backend.server.rpc import rpc
from forks_backend.shared.protocol import DiffParams


@rpc.method("diff_unified", params=DiffParams)
async def diff_unified(params: DiffParams) -> str:
    return await asyncio.to_thread(unified_diff, params.original, params.modified, params.clamped_context())
