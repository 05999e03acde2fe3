"""Shared fixtures and configuration for tests."""

import os
from pathlib import Path
from typing import Generator
from unittest.mock import MagicMock, patch

import pytest

from bitcoind_regtest.config import BitcoindConfig, LifecycleConfig

VALID_HASH = "sha256:" + "a" * 64
OTHER_HASH = "sha256:" + "b" * 64


@pytest.fixture
def mock_docker_client() -> Generator[MagicMock, None, None]:
    """Docker client returned by docker.from_env(), answering like an empty daemon."""
    with patch("docker.from_env") as mock_from_env:
        client = MagicMock()
        client.ping.return_value = True
        client.api.containers.return_value = []
        client.api.create_host_config.return_value = {"AutoRemove": True}
        client.api.create_container.return_value = {"Id": "0123456789abcdef0123"}
        client.api.start.return_value = None
        client.api.pull.return_value = iter([
            {"status": "Pulling from bitcoin/bitcoin", "id": "29.1"},
            {"status": "Downloading", "progress": "[=====>   ]", "id": "layer"},
            {"status": "Status: Downloaded newer image for bitcoin/bitcoin:29.1"},
        ])
        client.api.inspect_image.return_value = {"RepoDigests": []}
        mock_from_env.return_value = client
        yield client


@pytest.fixture
def fast_lifecycle() -> LifecycleConfig:
    """Lifecycle timings that never sleep."""
    return LifecycleConfig(startup_delay=0, stop_poll_attempts=3, stop_poll_interval=0)


@pytest.fixture
def bitcoind_config() -> BitcoindConfig:
    """Default node configuration."""
    return BitcoindConfig()


@pytest.fixture
def pinned_config() -> BitcoindConfig:
    """Node configuration with a pinned digest."""
    return BitcoindConfig(hash=VALID_HASH)


@pytest.fixture
def temp_working_directory(tmp_path: Path) -> Generator[Path, None, None]:
    """Change to a temporary directory for the test."""
    original_cwd = Path.cwd()
    try:
        os.chdir(tmp_path)
        yield tmp_path
    finally:
        os.chdir(original_cwd)


@pytest.fixture(autouse=True)
def reset_config() -> Generator[None, None, None]:
    """Reset the global config manager between tests to ensure clean state."""
    from bitcoind_regtest import config as config_module  # isort: skip

    original_config_manager = config_module.config_manager
    config_module.config_manager = config_module.ConfigManager()

    yield

    config_module.config_manager = original_config_manager


@pytest.fixture(autouse=True)
def reset_cleanup_handlers() -> Generator[None, None, None]:
    """Keep exit-time cleanup handlers from leaking between tests."""
    from bitcoind_regtest import thread_utils  # isort: skip

    saved = list(thread_utils._cleanup_handlers)
    thread_utils._cleanup_handlers.clear()

    yield

    thread_utils._cleanup_handlers.clear()
    thread_utils._cleanup_handlers.extend(saved)
