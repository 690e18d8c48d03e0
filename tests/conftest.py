"""Pytest configuration and shared fixtures."""

from typing import TYPE_CHECKING

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from src.data.cache.store import PersistentCache
from src.helpers.config import AggregatorSettings


if TYPE_CHECKING:
    from collections.abc import AsyncGenerator
    from pathlib import Path


ENV_VARS = (
    "BASE_RPC_URL",
    "ETH_RPC_URL",
    "DATA_SOURCE_URL",
    "BACKUP_DATA_SOURCE_URL",
    "CACHE_DATABASE_URL",
    "HISTORY_DAYS",
    "POSTGRE_HOST",
    "LOG_LEVEL",
    "LOG_COLOR",
)


@pytest.fixture
def isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear every variable that changes configuration defaults."""
    for key in ENV_VARS:
        monkeypatch.delenv(key, raising=False)


@pytest_asyncio.fixture
async def cache(tmp_path: "Path") -> "AsyncGenerator[PersistentCache]":
    """Persistent cache on a throwaway SQLite file.

    Yields:
        PersistentCache: Initialized cache, disposed after the test
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/cache.db")
    store = PersistentCache(engine)
    await store.initialize()
    try:
        yield store
    finally:
        await engine.dispose()


@pytest.fixture
def settings(isolated_env: None, tmp_path: "Path") -> AggregatorSettings:
    """Settings pointing at test endpoints and a temporary cache."""
    return AggregatorSettings(
        rpc_url="https://base.example/rpc",
        data_source_url="https://primary.example/",
        backup_data_source_url="https://backup.example/",
        cache_database_url=f"sqlite+aiosqlite:///{tmp_path}/settings.db",
        history_days=3,
    )
