"""Pydantic models for the published price history."""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

from src.helpers.parsers import parse_unix_timestamp


UNAVAILABLE_LABEL = "Unable to fetch data - all sources failed"
"""Label of the empty history returned when both sources fail"""


class PriceSnapshot(BaseModel):
    """Raw price snapshot document: three parallel arrays."""

    prices: list[float] = Field(default_factory=list)
    timestamps: list[int] = Field(default_factory=list)
    blocks: list[int] = Field(default_factory=list)
    last_updated: int | None = None


class PricePoint(BaseModel):
    """One price observation."""

    block: int | None
    timestamp: datetime
    price: float


class PriceHistory(BaseModel):
    """Price history with a human readable freshness label."""

    prices: list[float] = Field(default_factory=list)
    timestamps: list[int] = Field(default_factory=list)
    blocks: list[int] = Field(default_factory=list)
    last_updated: datetime | None = None
    last_updated_label: str = UNAVAILABLE_LABEL
    from_backup: bool = False

    @model_validator(mode="after")
    def _check_lengths(self) -> "PriceHistory":
        if len(self.prices) != len(self.timestamps):
            msg = (
                f"prices ({len(self.prices)}) and timestamps "
                f"({len(self.timestamps)}) differ in length"
            )
            raise ValueError(msg)
        return self

    @property
    def available(self) -> bool:
        """Whether any price was loaded."""
        return bool(self.prices)

    def points(self) -> list[PricePoint]:
        """Observations in file order; block is None when the file has no block column."""
        blocks: list[int | None] = list(self.blocks)
        if len(blocks) != len(self.prices):
            blocks = [None] * len(self.prices)
        return [
            PricePoint(block=block, timestamp=parse_unix_timestamp(ts), price=price)
            for block, ts, price in zip(blocks, self.timestamps, self.prices, strict=True)
        ]


__all__ = [
    "UNAVAILABLE_LABEL",
    "PriceHistory",
    "PricePoint",
    "PriceSnapshot",
]
