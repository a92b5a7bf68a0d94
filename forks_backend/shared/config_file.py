"""Pure serializable configuration data model.

DO NOT ADD LOGIC - THIS IS PURE DATA

This model mirrors the YAML file at $FORKS_DIR/config.yaml. Runtime
configuration with resolved paths and durations lives in configuration.py.
"""

from pydantic import BaseModel, Field

DEFAULT_IGNORED_DIRS = [
    ".git",
    "node_modules",
    "dist",
    "build",
    "target",
    ".turbo",
    ".context",
    ".tauri",
    ".next",
    "out",
    "coverage",
    ".cache",
]


class ConfigFile(BaseModel):
    """Pure serializable configuration data model.

    Every field has a default so a missing or empty config file is valid.
    """

    model_config = {"extra": "forbid"}

    # Socket placement (relative to FORKS_DIR unless absolute)
    rpc_socket_path: str | None = None
    rpc_timeout: float = 30.0  # seconds a client waits for a response

    # Repository cache
    repo_cache_ttl: float = 30.0  # seconds an idle handle stays cached
    repo_cache_capacity: int = Field(default=16, ge=1)
    default_branch_fallback: str = "main"

    # Filesystem watches
    watch_default_debounce_ms: int = 150
    watch_use_polling: bool = False
    watch_poll_interval: float = 2.0
    watch_max_pending_paths: int = Field(default=10_000, ge=1)
    watch_ignored_dirs: list[str] = Field(default_factory=lambda: list(DEFAULT_IGNORED_DIRS))
