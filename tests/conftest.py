"""
Pytest configuration and fixtures for currency converter tests.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import httpx
import pytest

from fxc.config import Settings, clear_settings_cache
from fxc.storage import FallbackStore, FlatStore, SQLiteStore

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def mock_env_vars() -> Generator[dict[str, str], None, None]:
    """Provide mock environment variables for testing."""
    env_vars = {
        "PROVIDER": "frankfurter",
        "PROVIDER_API_KEY": "",  # Override any .env value
        "DEFAULT_CURRENCY": "USD",
        "DEFAULT_TARGET_CURRENCY": "EUR",
        "HTTP_TIMEOUT_SECONDS": "5",
        "HTTP_RETRY_ATTEMPTS": "1",
        "ASSET_ORIGIN": "https://app.test",
        "BUILD_VERSION": "2025.01.15.1030",
        "CACHE_DIR": ".test_cache",
        "LOG_LEVEL": "DEBUG",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        # Clear any cached settings
        clear_settings_cache()
        yield env_vars


@pytest.fixture
def mock_settings(mock_env_vars: dict[str, str], temp_dir: Path) -> Generator[Settings, None, None]:
    """Provide a Settings instance with mock configuration.

    Uses temp_dir for the cache directory.
    """
    with patch.dict(os.environ, {"CACHE_DIR": str(temp_dir / "cache")}):
        clear_settings_cache()
        from fxc.config import get_settings

        settings = get_settings()
        settings.ensure_directories()
        yield settings
        clear_settings_cache()


@pytest.fixture
async def store(temp_dir: Path) -> FallbackStore:
    """Create an initialized fallback store."""
    fallback = FallbackStore(
        structured=SQLiteStore(temp_dir / "store.db"),
        flat=FlatStore(temp_dir / "store.json"),
    )
    await fallback.init()
    yield fallback
    await fallback.close()


@pytest.fixture
def make_client() -> Callable[[Handler], httpx.AsyncClient]:
    """Build httpx clients answering through a MockTransport handler."""

    def factory(handler: Handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return factory


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
