"""Database models for the persistent cache."""

from sqlalchemy import BigInteger, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.helpers.db import Base


class SeriesCacheDB(Base):
    """One decoded storage sample of a cached series."""

    __tablename__ = "series_cache"

    key: Mapped[str] = mapped_column(
        String(128), primary_key=True
    )  # Format: descriptor_rangeLabel_contractPrefix
    block: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    value: Mapped[str] = mapped_column(Text)  # Hex without 0x


class KeyValueCacheDB(Base):
    """A JSON document cached under a fixed key (mint dataset, tips, ...)."""

    __tablename__ = "kv_cache"

    key: Mapped[str] = mapped_column(String(128), primary_key=True)
    value: Mapped[str] = mapped_column(Text)


__all__ = [
    "KeyValueCacheDB",
    "SeriesCacheDB",
]
