import asyncio
import json
from datetime import timedelta

import pytest

from forks_backend.client.rpc_client import RpcCallError, RpcClient, resolve_socket_path
from forks_backend.server.rpc_server import GitRpcServer
from forks_backend.shared.configuration import SOCKET_ENV_VAR
from forks_backend.shared.errors import ProtocolError


@pytest.fixture
async def live_socket(test_config, git_manager):
    srv = GitRpcServer.from_config(test_config, git_manager=git_manager)
    yield await srv.start()
    await srv.stop()


async def _fake_server(socket_path, respond):
    """Unix server that answers each request line with respond(request_dict) (bytes)."""

    async def _handle(reader, writer):
        line = await reader.readline()
        writer.write(respond(json.loads(line)))
        await writer.drain()
        writer.close()

    return await asyncio.start_unix_server(_handle, path=str(socket_path))


async def test_call_returns_result(live_socket, git_repo):
    client = RpcClient(live_socket)
    assert await client.call("git_is_repo", {"path": str(git_repo)}) is True
    assert await client.call("git_current_branch", {"path": str(git_repo)}) == "main"


async def test_call_raises_on_error_response(live_socket, git_repo):
    client = RpcClient(live_socket)
    with pytest.raises(RpcCallError, match="cannot delete checked out branch") as exc_info:
        await client.call("git_delete_branch", {"repoPath": str(git_repo), "branch": "main"})
    assert exc_info.value.method == "git_delete_branch"


async def test_call_raw_exposes_envelope(live_socket):
    response = await RpcClient(live_socket).call_raw("nope", {})
    assert not response.ok
    assert response.error == "unknown_method"


async def test_id_mismatch(temp_dir):
    socket_path = temp_dir / "fake.sock"
    server = await _fake_server(socket_path, lambda req: b'{"id": "other", "ok": true, "result": 1}\n')
    async with server:
        with pytest.raises(ProtocolError, match="id mismatch"):
            await RpcClient(socket_path).call("x", {})


async def test_empty_response(temp_dir):
    socket_path = temp_dir / "fake.sock"
    server = await _fake_server(socket_path, lambda req: b"")
    async with server:
        with pytest.raises(ProtocolError, match="Empty RPC response"):
            await RpcClient(socket_path).call("x", {})


async def test_timeout(temp_dir):
    socket_path = temp_dir / "slow.sock"

    async def _never_answer(reader, writer):
        # Returns once the client gives up and closes
        await reader.read()
        writer.close()

    server = await asyncio.start_unix_server(_never_answer, path=str(socket_path))
    async with server:
        with pytest.raises(TimeoutError):
            await RpcClient(socket_path, timeout=timedelta(milliseconds=100)).call("x", {})


def test_socket_env_var_wins(monkeypatch, test_config, temp_dir):
    monkeypatch.setenv(SOCKET_ENV_VAR, str(temp_dir / "env.sock"))
    assert resolve_socket_path(test_config) == temp_dir / "env.sock"


def test_socket_falls_back_to_config(monkeypatch, test_config):
    monkeypatch.delenv(SOCKET_ENV_VAR, raising=False)
    assert resolve_socket_path(test_config) == test_config.rpc_socket_path
