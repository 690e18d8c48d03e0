"""Database connection helpers."""

from __future__ import annotations

import os

from typing import TYPE_CHECKING, Any

from sqlalchemy import inspect
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from dotenv import load_dotenv

from src.helpers.config import get_cache_database_url


if TYPE_CHECKING:
    from collections.abc import Sequence


# Load environment variables from .env file
load_dotenv()

Base = declarative_base()

_engines: dict[str, AsyncEngine] = {}


def get_database_url(database_url: str | None = None) -> str:
    """Get the cache database URL.

    An explicit URL wins. Otherwise a PostgreSQL URL is built when
    POSTGRE_HOST is set, and CACHE_DATABASE_URL (default: a local SQLite
    file) is used when it is not.

    Args:
        database_url: Optional URL to use directly

    Returns:
        str: SQLAlchemy async database URL

    Raises:
        ValueError: If POSTGRE_HOST is set but the other POSTGRE_* variables are not
    """
    if database_url:
        return database_url

    postgre_host = os.getenv("POSTGRE_HOST")
    if not postgre_host:
        return get_cache_database_url()

    postgre_port = os.getenv("POSTGRE_PORT", "5432")

    postgre_user = os.getenv("POSTGRE_USER")
    if not postgre_user:
        msg = "POSTGRE_USER is not set"
        raise ValueError(msg)

    postgre_password = os.getenv("POSTGRE_PASSWORD")
    if not postgre_password:
        msg = "POSTGRE_PASSWORD is not set"
        raise ValueError(msg)

    postgre_db = os.getenv("POSTGRE_DB")
    if not postgre_db:
        msg = "POSTGRE_DB is not set"
        raise ValueError(msg)

    # Use psycopg (version 3) as the async PostgreSQL driver
    return (
        "postgresql+psycopg://"
        f"{postgre_user}:{postgre_password}"
        f"@{postgre_host}:{postgre_port}"
        f"/{postgre_db}"
    )


def get_engine(database_url: str | None = None) -> AsyncEngine:
    """Get (or lazily create) the async engine for a URL.

    Args:
        database_url: Optional URL, resolved through get_database_url

    Returns:
        Shared AsyncEngine for that URL
    """
    url = get_database_url(database_url)
    if url not in _engines:
        _engines[url] = create_async_engine(url, echo=False)
    return _engines[url]


def get_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Build a session factory bound to an engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    """Create every table registered on Base if it does not exist yet."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engines() -> None:
    """Dispose every engine created through get_engine."""
    for engine in _engines.values():
        await engine.dispose()
    _engines.clear()


async def upsert_rows[DBModelType](
    session: AsyncSession,
    db_model_class: type[DBModelType],
    rows: Sequence[dict[str, Any]],
) -> None:
    """Upsert rows using INSERT ... ON CONFLICT DO UPDATE.

    Works on PostgreSQL and SQLite, picking the dialect-specific insert
    construct from the session's bind. The caller owns the transaction.

    Args:
        session: Open async session
        db_model_class: The SQLAlchemy model class (e.g., SeriesCacheDB)
        rows: Column name to value mappings

    Examples:
        async with session.begin():
            await upsert_rows(session, KeyValueCacheDB, [{"key": "k", "value": "{}"}])

    Raises:
        ValueError: If the model cannot be inspected or the dialect is unsupported
    """
    if not rows:
        return

    mapper = inspect(db_model_class)
    if not mapper:
        msg = f"Cannot inspect {db_model_class}"
        raise ValueError(msg)
    pk_columns = [col.name for col in mapper.primary_key]

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = pg_insert(db_model_class).values(list(rows))
    elif dialect == "sqlite":
        stmt = sqlite_insert(db_model_class).values(list(rows))
    else:
        msg = f"Unsupported dialect for upsert: {dialect}"
        raise ValueError(msg)

    # Build the update dict (all columns except primary keys)
    update_dict = {
        col: stmt.excluded[col] for col in rows[0] if col not in pk_columns
    }

    stmt = stmt.on_conflict_do_update(index_elements=pk_columns, set_=update_dict)
    await session.execute(stmt)


__all__ = [
    "Base",
    "create_tables",
    "dispose_engines",
    "get_database_url",
    "get_engine",
    "get_session_factory",
    "upsert_rows",
]
