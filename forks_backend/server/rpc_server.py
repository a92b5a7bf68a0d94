"""Git RPC server: one request per Unix-socket connection.

A connection carries a single newline-terminated JSON request and receives a
single JSON response line before the server closes it. There is no framing
beyond the newline and no multiplexing; callers open a fresh connection per
call. Connections are served concurrently with no upper bound, which is only
acceptable because the socket is local and owner-only.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from pathlib import Path

from pydantic import ValidationError

from forks_backend.git.git_manager import GitManager
from forks_backend.shared.configuration import Configuration
from forks_backend.shared.errors import SocketBindError
from forks_backend.shared.protocol import UNKNOWN_REQUEST_ID, RpcResponse, describe_validation_error, parse_request

# Force import of handlers to register RPC methods
from .handlers import (
    diff_handler,  # noqa: F401
    git_handler,  # noqa: F401
)
from .rpc import RpcRegistry, ServiceDependencies, rpc

logger = logging.getLogger(__name__)

SOCKET_MODE = 0o600
# diff_unified carries whole file contents on one line
MAX_REQUEST_LINE_BYTES = 64 * 1024 * 1024


class GitRpcServer:
    def __init__(self, socket_path: Path, deps: ServiceDependencies, registry: RpcRegistry = rpc):
        self.socket_path = socket_path
        self.deps = deps
        self.registry = registry
        self.server: asyncio.Server | None = None

    @classmethod
    def from_config(cls, config: Configuration, git_manager: GitManager | None = None) -> GitRpcServer:
        deps = ServiceDependencies(config=config, git_manager=git_manager or GitManager.from_config(config))
        return cls(config.rpc_socket_path, deps)

    async def start(self) -> Path:
        """Bind the socket (owner-only); any failure aborts startup with SocketBindError."""
        self.server = await self._listen()
        return self.socket_path

    async def _listen(self) -> asyncio.Server:
        server = await self._bind()
        logger.info("Git RPC listening on %s (methods: %s)", self.socket_path, sorted(self.registry.list_methods()))
        return server

    async def _bind(self) -> asyncio.Server:
        server: asyncio.Server | None = None
        try:
            self.socket_path.parent.mkdir(parents=True, exist_ok=True)
            if self.socket_path.exists() or self.socket_path.is_symlink():
                self.socket_path.unlink()
            server = await asyncio.start_unix_server(
                self.handle_connection, path=str(self.socket_path), limit=MAX_REQUEST_LINE_BYTES
            )
            os.chmod(self.socket_path, SOCKET_MODE)
        except OSError as e:
            if server is not None:
                server.close()
            raise SocketBindError(f"failed to bind git RPC socket at {self.socket_path}: {e}") from e
        return server

    async def serve_forever(self) -> None:
        server = self.server
        if server is None:
            server = self.server = await self._listen()
        async with server:
            await server.serve_forever()

    async def stop(self) -> None:
        if self.server is not None:
            self.server.close()
            await self.server.wait_closed()
            self.server = None
        with contextlib.suppress(FileNotFoundError):
            self.socket_path.unlink()
        logger.info("Git RPC stopped")

    async def _read_request_line(self, reader: asyncio.StreamReader) -> str | None:
        """First non-blank line, or None on EOF / read failure."""
        while True:
            try:
                data = await reader.readline()
            except (OSError, ValueError) as e:
                logger.warning("Git RPC read failed: %s", e)
                return None
            if not data:
                return None
            try:
                line = data.decode("utf-8")
            except UnicodeDecodeError as e:
                logger.warning("Git RPC read failed: %s", e)
                return None
            if line.strip():
                return line

    async def handle_connection(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        try:
            line = await self._read_request_line(reader)
            if line is None:
                return

            try:
                request = parse_request(line)
            except ValidationError as e:
                response = RpcResponse.failure(UNKNOWN_REQUEST_ID, describe_validation_error(e))
            else:
                logger.debug("Git RPC request %s: %s", request.id, request.method)
                response = await self.registry.dispatch(request, self.deps)

            await self._send_response(writer, response)
        except OSError as e:
            logger.warning("Git RPC write failed: %s", e)
        finally:
            writer.close()
            with contextlib.suppress(OSError):
                await writer.wait_closed()

    async def _send_response(self, writer: asyncio.StreamWriter, response: RpcResponse) -> None:
        writer.write(response.model_dump_json().encode())
        writer.write(b"\n")
        await writer.drain()
