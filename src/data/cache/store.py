"""Persistent cache for sampled series and scanner state.

Two tables back the cache:

- ``series_cache`` maps (key, block) to a hex value without ``0x``, where the
  key is ``descriptor_rangeLabel_contractPrefix``.
- ``kv_cache`` maps a fixed key to a JSON document.

Every write runs in one transaction and upserts, so a write stores the union
of previously cached and new observations. Reads never fail on bad data: a
corrupt entry is logged and treated as absent.
"""

from __future__ import annotations

import json

from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select

from src.data.cache.db import KeyValueCacheDB, SeriesCacheDB
from src.data.constants import contract_prefix
from src.helpers.db import (
    create_tables,
    get_engine,
    get_session_factory,
    upsert_rows,
)
from src.helpers.errors import CacheCorruptError, ProtocolDecodeError
from src.helpers.logging import get_logger
from src.helpers.parsers import parse_hex_int


if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine


logger = get_logger(__name__)

UPSERT_CHUNK_SIZE = 500
"""Rows per INSERT statement (keeps SQLite under its variable limit)"""


def cache_key(descriptor: str, range_label: str | int, contract_address: str) -> str:
    """Build the cache key of a series.

    Args:
        descriptor: Series name, e.g. "miningTargets2"
        range_label: Range granularity, the sample count for charts
        contract_address: Contract whose 7-char prefix scopes the key

    Returns:
        "descriptor_rangeLabel_contractPrefix"

    Example:
        >>> cache_key("eraValues2", 90, "0xd44Ee7dAdbF50214cA7009a29D9F88BCcD0E9Ff4")
        'eraValues2_90_0xd44Ee'
    """
    return f"{descriptor}_{range_label}_{contract_prefix(contract_address)}"


def decode_cached_value(key: str, block: int, value: str) -> int:
    """Parse a cached hex value.

    Raises:
        CacheCorruptError: If the value is empty or not hex
    """
    try:
        if not value:
            msg = "empty value"
            raise ValueError(msg)
        return parse_hex_int(value)
    except (ValueError, ProtocolDecodeError) as e:
        msg = f"Corrupt cache value for {key} at block {block}: {value!r}"
        raise CacheCorruptError(msg) from e


class PersistentCache:
    """Async cache over SQLAlchemy, SQLite by default."""

    def __init__(self, engine: AsyncEngine) -> None:
        """Initialize the cache.

        Args:
            engine: Async engine the cache tables live in
        """
        self.engine = engine
        self.session_factory = get_session_factory(engine)
        self._initialized = False

    @classmethod
    def from_url(cls, database_url: str | None = None) -> PersistentCache:
        """Build a cache on the shared engine for ``database_url``."""
        return cls(get_engine(database_url))

    async def initialize(self) -> None:
        """Create the cache tables once."""
        if not self._initialized:
            await create_tables(self.engine)
            self._initialized = True

    async def read_series(
        self,
        key: str,
        start_block: int | None = None,
        end_block: int | None = None,
    ) -> dict[int, int]:
        """Read decoded values of a series, optionally limited to a block range.

        Args:
            key: Series cache key
            start_block: Inclusive lower bound
            end_block: Inclusive upper bound

        Returns:
            Mapping block -> value; corrupt rows are skipped
        """
        await self.initialize()
        stmt = select(SeriesCacheDB.block, SeriesCacheDB.value).where(
            SeriesCacheDB.key == key
        )
        if start_block is not None:
            stmt = stmt.where(SeriesCacheDB.block >= start_block)
        if end_block is not None:
            stmt = stmt.where(SeriesCacheDB.block <= end_block)

        async with self.session_factory() as session:
            rows = (await session.execute(stmt.order_by(SeriesCacheDB.block))).all()

        values: dict[int, int] = {}
        for block, raw in rows:
            try:
                values[block] = decode_cached_value(key, block, raw)
            except CacheCorruptError as e:
                logger.warning("%s, ignoring", e)
        return values

    async def write_series(self, key: str, values: dict[int, int]) -> int:
        """Merge values into a cached series.

        Args:
            key: Series cache key
            values: Mapping block -> decoded value (non-negative)

        Returns:
            Number of rows written
        """
        if not values:
            return 0
        await self.initialize()

        rows = [
            {"key": key, "block": block, "value": f"{value:x}"}
            for block, value in sorted(values.items())
        ]
        async with self.session_factory() as session, session.begin():
            for i in range(0, len(rows), UPSERT_CHUNK_SIZE):
                await upsert_rows(session, SeriesCacheDB, rows[i : i + UPSERT_CHUNK_SIZE])

        logger.debug("Saved %d blocks to %s", len(rows), key)
        return len(rows)

    async def read_json(self, key: str) -> Any | None:
        """Read a JSON document, None if absent or corrupt."""
        await self.initialize()
        async with self.session_factory() as session:
            raw = await session.scalar(
                select(KeyValueCacheDB.value).where(KeyValueCacheDB.key == key)
            )
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Corrupt cache entry %s, treating as empty", key)
            return None

    async def write_json(self, key: str, value: Any) -> None:
        """Store a JSON document under ``key``."""
        await self.write_many({key: value})

    async def write_many(self, entries: dict[str, Any]) -> None:
        """Store several JSON documents in one transaction."""
        if not entries:
            return
        await self.initialize()
        rows = [{"key": k, "value": json.dumps(v)} for k, v in entries.items()]
        async with self.session_factory() as session, session.begin():
            await upsert_rows(session, KeyValueCacheDB, rows)

    async def read_int(self, key: str) -> int | None:
        """Read an integer document, None if absent or not an integer."""
        value = await self.read_json(key)
        if isinstance(value, bool) or not isinstance(value, int | str):
            return None
        try:
            return int(value)
        except ValueError:
            logger.warning("Cache entry %s is not an integer: %r", key, value)
            return None

    async def write_int(self, key: str, value: int) -> None:
        """Store an integer document."""
        await self.write_json(key, value)

    async def delete(self, key: str) -> None:
        """Remove a document and any series stored under ``key``."""
        await self.initialize()
        async with self.session_factory() as session, session.begin():
            await session.execute(delete(KeyValueCacheDB).where(KeyValueCacheDB.key == key))
            await session.execute(delete(SeriesCacheDB).where(SeriesCacheDB.key == key))


__all__ = [
    "PersistentCache",
    "cache_key",
    "decode_cached_value",
]
