"""Client for the git RPC socket (one connection per call)."""

from __future__ import annotations

import asyncio
import os
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from forks_backend.shared.configuration import SOCKET_ENV_VAR, Configuration
from forks_backend.shared.errors import ForksError, ProtocolError
from forks_backend.shared.protocol import RpcRequest, RpcResponse

DEFAULT_TIMEOUT = timedelta(seconds=30)


class RpcCallError(ForksError):
    """The server answered with ok=false; the message is its error string."""

    def __init__(self, method: str, message: str):
        super().__init__(message)
        self.method = method


def resolve_socket_path(config: Configuration | None = None) -> Path:
    """FORKS_GIT_RPC_SOCKET wins over the configured location."""
    env = os.environ.get(SOCKET_ENV_VAR)
    if env:
        return Path(env)
    if config is None:
        raise ProtocolError(f"{SOCKET_ENV_VAR} is not set and no configuration was given")
    return config.rpc_socket_path


class RpcClient:
    def __init__(self, socket_path: Path, timeout: timedelta = DEFAULT_TIMEOUT):
        self.socket_path = socket_path
        self.timeout = timeout

    async def call_raw(self, method: str, params: Any) -> RpcResponse:
        request = RpcRequest(id=str(uuid.uuid4()), method=method, params=params)
        async with asyncio.timeout(self.timeout.total_seconds()):
            reader, writer = await asyncio.open_unix_connection(str(self.socket_path))
            try:
                writer.write(request.model_dump_json().encode() + b"\n")
                await writer.drain()
                line = await reader.readline()
            finally:
                writer.close()
                await writer.wait_closed()

        if not line.strip():
            raise ProtocolError("Empty RPC response")
        try:
            response = RpcResponse.model_validate_json(line)
        except ValidationError as e:
            raise ProtocolError(f"Malformed RPC response: {e}") from e
        if response.id != request.id:
            raise ProtocolError("RPC response id mismatch")
        return response

    async def call(self, method: str, params: Any) -> Any:
        response = await self.call_raw(method, params)
        if not response.ok:
            raise RpcCallError(method, response.error or "unknown error")
        return response.result
