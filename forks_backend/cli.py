"""forks-backend CLI: run the git RPC server, call it, or stream watch events."""

from __future__ import annotations

import asyncio
import logging
import signal
import sys
import threading
from pathlib import Path

import click
import pydantic_core
import typer
from pydantic import ValidationError

from forks_backend.client.rpc_client import RpcCallError, RpcClient, resolve_socket_path
from forks_backend.server.rpc_server import GitRpcServer
from forks_backend.shared.configuration import Configuration, load_config
from forks_backend.shared.errors import ConfigError, ForksError
from forks_backend.shared.logging import make_logging_callback
from forks_backend.shared.protocol import WatchAddRequest
from forks_backend.watch.emitter import JsonLinesEmitter
from forks_backend.watch.registry import WatchRegistry

logger = logging.getLogger(__name__)

# Typer Option defaults must not be created in function signatures (ruff B008)
PARAMS_OPT = typer.Option("{}", "--params", help="JSON-encoded method parameters")
SOCKET_OPT = typer.Option(None, "--socket", help="Socket path (default: $FORKS_GIT_RPC_SOCKET or configured path)")
REPO_ROOT_OPT = typer.Option(None, "--repo-root", help="Repository root whose git dir is watched")
ATTEMPT_ID_OPT = typer.Option(None, "--attempt-id", help="Opaque id copied into every event")
DEBOUNCE_OPT = typer.Option(None, "--debounce-ms", help="Debounce window (clamped to 50..2000)")
WATCH_GIT_OPT = typer.Option(True, "--git/--no-git", help="Also watch HEAD, index, packed-refs and refs/")

app = typer.Typer(help="Local backend for git worktree management.", no_args_is_help=True)

app.callback()(make_logging_callback())


def _load_config_or_exit() -> Configuration:
    try:
        return load_config()
    except ConfigError as e:
        click.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2) from None


async def _serve(config: Configuration) -> None:
    """Serve until cancelled; SIGTERM cancels too, so the socket is always removed."""
    server = GitRpcServer.from_config(config)
    await server.start()
    loop = asyncio.get_running_loop()
    serving = asyncio.current_task()
    if serving is not None:
        loop.add_signal_handler(signal.SIGTERM, serving.cancel)
    try:
        await server.serve_forever()
    finally:
        loop.remove_signal_handler(signal.SIGTERM)
        await server.stop()


@app.command("serve")
def serve() -> None:
    """Serve git RPC requests on the configured Unix socket until interrupted."""
    config = _load_config_or_exit()
    try:
        asyncio.run(_serve(config))
    except ForksError as e:
        click.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from None
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Git RPC server shut down")


@app.command("call")
def call(method: str, params: str = PARAMS_OPT, socket: Path | None = SOCKET_OPT) -> None:
    """Send one request and print the result as JSON."""
    try:
        params_obj = pydantic_core.from_json(params)
    except ValueError as e:
        click.echo(f"Error: --params is not valid JSON: {e}", err=True)
        raise typer.Exit(code=2) from None

    config = _load_config_or_exit()
    client = RpcClient(socket or resolve_socket_path(config), timeout=config.rpc_timeout)
    try:
        result = asyncio.run(client.call(method, params_obj))
    except RpcCallError as e:
        click.echo(f"{method} failed: {e}", err=True)
        raise typer.Exit(code=1) from None
    except (ForksError, OSError, TimeoutError) as e:
        click.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from None

    click.echo(pydantic_core.to_json(result, indent=2).decode())


@app.command("watch")
def watch(
    path: str,
    repo_root: str | None = REPO_ROOT_OPT,
    attempt_id: str | None = ATTEMPT_ID_OPT,
    debounce_ms: int | None = DEBOUNCE_OPT,
    watch_git: bool = WATCH_GIT_OPT,
) -> None:
    """Watch a worktree and print coalesced `fs/watch` events as JSON lines."""
    config = _load_config_or_exit()
    try:
        request = WatchAddRequest(
            path=path, repo_root=repo_root, attempt_id=attempt_id, debounce_ms=debounce_ms, watch_git=watch_git
        )
    except ValidationError as e:
        click.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=2) from None

    with WatchRegistry(JsonLinesEmitter(sys.stdout), config) as registry:
        try:
            response = registry.add_watch(request)
        except ForksError as e:
            click.echo(f"Error: {e}", err=True)
            raise typer.Exit(code=1) from None
        click.echo(f"Watching {path} (watch {response.watch_id}); Ctrl-C to stop", err=True)
        try:
            threading.Event().wait()
        except KeyboardInterrupt:
            pass


def main() -> None:
    app()


if __name__ == "__main__":
    main()
