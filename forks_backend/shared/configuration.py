"""Immutable configuration after resolution.

This module contains the frozen Configuration dataclass that represents
resolved configuration with all paths and durations computed upfront.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from hashlib import md5
from pathlib import Path

import yaml
from pydantic import ValidationError

from forks_backend.shared.config_file import DEFAULT_IGNORED_DIRS, ConfigFile
from forks_backend.shared.errors import ConfigError

MAX_SOCK_PATH_LEN = 100
GIT_RPC_SOCKET_NAME = "git-rpc.sock"
SOCKET_ENV_VAR = "FORKS_GIT_RPC_SOCKET"
DEFAULT_FORKS_DIR = Path("~/.local/share/forks")


@dataclass(frozen=True)
class Configuration:
    """Immutable configuration after resolution."""

    forks_dir: Path
    socket_override: Path | None = None
    rpc_timeout: timedelta = timedelta(seconds=30)
    repo_cache_ttl: timedelta = timedelta(seconds=30)
    repo_cache_capacity: int = 16
    default_branch_fallback: str = "main"
    watch_default_debounce_ms: int = 150
    watch_use_polling: bool = False
    watch_poll_interval: timedelta = timedelta(seconds=2)
    watch_max_pending_paths: int = 10_000
    watch_ignored_dirs: frozenset[str] = field(default_factory=lambda: frozenset(DEFAULT_IGNORED_DIRS))

    @property
    def rpc_socket_path(self) -> Path:
        """Path to the git RPC UNIX socket with a length-safe fallback.

        Uses the real (resolved) path for the length check; the kernel limit
        applies to the real path. Too-long paths fall back to a stable short
        path under /tmp derived from FORKS_DIR.
        """
        if self.socket_override is not None:
            return self.socket_override
        real_dir = self.forks_dir.resolve() / "forksd"
        p = real_dir / GIT_RPC_SOCKET_NAME
        if len(str(p)) <= MAX_SOCK_PATH_LEN:
            return p
        h = md5(str(real_dir).encode()).hexdigest()[:12]
        return Path("/tmp") / f"forks_git_rpc_{h}.sock"

    @property
    def config_file_path(self) -> Path:
        return self.forks_dir / "config.yaml"

    @classmethod
    def from_config_file(cls, forks_dir: Path, config_file: ConfigFile) -> Configuration:
        socket_override = None
        if config_file.rpc_socket_path:
            socket_override = Path(config_file.rpc_socket_path).expanduser()
            if not socket_override.is_absolute():
                socket_override = forks_dir / socket_override

        return cls(
            forks_dir=forks_dir,
            socket_override=socket_override,
            rpc_timeout=timedelta(seconds=config_file.rpc_timeout),
            repo_cache_ttl=timedelta(seconds=config_file.repo_cache_ttl),
            repo_cache_capacity=config_file.repo_cache_capacity,
            default_branch_fallback=config_file.default_branch_fallback,
            watch_default_debounce_ms=config_file.watch_default_debounce_ms,
            watch_use_polling=config_file.watch_use_polling,
            watch_poll_interval=timedelta(seconds=config_file.watch_poll_interval),
            watch_max_pending_paths=config_file.watch_max_pending_paths,
            watch_ignored_dirs=frozenset(config_file.watch_ignored_dirs),
        )

    @classmethod
    def resolve(cls, forks_dir: Path) -> Configuration:
        """Resolve configuration from FORKS_DIR; a missing config.yaml means defaults."""
        config_path = forks_dir / "config.yaml"
        if not config_path.exists():
            return cls.from_config_file(forks_dir, ConfigFile())

        try:
            raw = yaml.safe_load(config_path.read_text())
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot read config file {config_path}: {e}") from e

        try:
            config_file = ConfigFile.model_validate(raw or {})
        except ValidationError as e:
            raise ConfigError(f"Configuration validation errors in {config_path}:\n{e}") from e
        return cls.from_config_file(forks_dir, config_file)


def resolve_forks_dir() -> Path:
    forks_dir_env = os.getenv("FORKS_DIR")
    base = Path(forks_dir_env) if forks_dir_env else DEFAULT_FORKS_DIR
    return base.expanduser().resolve()


def load_config() -> Configuration:
    """Load configuration from the FORKS_DIR environment variable (or its default)."""
    return Configuration.resolve(resolve_forks_dir())
