"""Pytest configuration for forks_backend/shared tests."""

import pytest

# Import fixtures from testing modules (replaces deprecated pytest_plugins)
from forks_backend.testing.conftest import *  # noqa: F403


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest-asyncio auto mode."""
    config.option.asyncio_mode = "auto"
