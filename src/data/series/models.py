"""Pydantic models for sampled storage series."""

from pydantic import BaseModel, Field


class StorageSample(BaseModel):
    """A decoded storage value observed at one block."""

    block: int = Field(..., ge=0)
    value: int = Field(..., ge=0)
    tag: str = ""


class Series(BaseModel):
    """Samples of one (contract, slot, descriptor), sorted by block."""

    descriptor: str
    contract_address: str
    slot: str
    samples: list[StorageSample] = Field(default_factory=list)

    @property
    def blocks(self) -> list[int]:
        """Block numbers in series order."""
        return [s.block for s in self.samples]

    @property
    def values(self) -> list[int]:
        """Decoded values in series order."""
        return [s.value for s in self.samples]

    def as_pairs(self) -> list[tuple[int, int]]:
        """(block, value) pairs in series order."""
        return [(s.block, s.value) for s in self.samples]

    def __len__(self) -> int:
        return len(self.samples)


__all__ = [
    "Series",
    "StorageSample",
]
