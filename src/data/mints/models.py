"""Pydantic models for mint events and the mint dataset."""

from __future__ import annotations

from enum import StrEnum

from typing import Any

from pydantic import BaseModel, Field, field_validator

from src.data.constants import MINING_START_BLOCK
from src.helpers.parsers import strip_0x


MARKER_REWARD = -1
"""Sentinel rewardAmount of a challenge marker"""


def normalize_challenge(challenge: str | None) -> str | None:
    """Lower-case a challenge hash and drop any 0x prefix.

    Example:
        >>> normalize_challenge("0xABCD")
        'abcd'
    """
    if challenge is None:
        return None
    return strip_0x(str(challenge)).lower()


class MintRecord(BaseModel):
    """One row of the mint dataset: a mint event or a challenge marker.

    Serialized as ``[block, txHash, minerAddr, rewardAmount, epochCount]``,
    the row layout of the published snapshots.
    """

    block: int = Field(..., ge=0)
    tx_hash: str
    miner: str
    reward: float
    epoch_count: int = Field(..., ge=0)

    @field_validator("miner")
    @classmethod
    def _lower_miner(cls, value: str) -> str:
        return value.lower()

    @property
    def is_marker(self) -> bool:
        """Whether this row is a challenge marker."""
        return self.reward == MARKER_REWARD

    @classmethod
    def from_row(cls, row: list[Any] | tuple[Any, ...]) -> MintRecord:
        """Parse a snapshot/cache row.

        Raises:
            ValueError: If the row does not have five fields
        """
        if len(row) != 5:
            msg = f"Mint row must have 5 fields, got {len(row)}: {row!r}"
            raise ValueError(msg)
        block, tx_hash, miner, reward, epoch_count = row
        return cls(
            block=int(block),
            tx_hash=str(tx_hash),
            miner=str(miner),
            reward=float(reward),
            epoch_count=int(epoch_count or 0),
        )

    def to_row(self) -> list[Any]:
        """Serialize to the snapshot row layout."""
        reward: float | int = MARKER_REWARD if self.is_marker else self.reward
        return [self.block, self.tx_hash, self.miner, reward, self.epoch_count]

    def as_marker(self) -> MintRecord:
        """A challenge marker carrying this row's block, hash and epoch count."""
        return self.model_copy(update={"reward": float(MARKER_REWARD)})


def dedupe_records(records: list[MintRecord]) -> list[MintRecord]:
    """Remove repeated tx hashes, keeping the first (newest) occurrence.

    Challenge markers are always kept.
    """
    seen: set[str] = set()
    result: list[MintRecord] = []
    for record in records:
        if record.is_marker:
            result.append(record)
            continue
        if record.tx_hash in seen:
            continue
        seen.add(record.tx_hash)
        result.append(record)
    return result


def epochs_mined_per_record(records: list[MintRecord]) -> list[int]:
    """Epochs mined by each row of a newest-first dataset.

    A row mined ``epoch_count`` minus the count of the next older row; the
    oldest row mined its full count. Negative deltas (counter resets) are
    clamped to 1.
    """
    epochs: list[int] = []
    for index, record in enumerate(records):
        if index + 1 < len(records):
            mined = record.epoch_count - records[index + 1].epoch_count
        else:
            mined = record.epoch_count
        epochs.append(1 if mined < 0 else mined)
    return epochs


class MintDataset(BaseModel):
    """Mint events and challenge markers, newest first."""

    records: list[MintRecord] = Field(default_factory=list)
    latest_block: int = 0
    previous_challenge: str | None = None

    @field_validator("previous_challenge", mode="before")
    @classmethod
    def _normalize_challenge(cls, value: Any) -> str | None:
        return normalize_challenge(value) if value else None

    @classmethod
    def from_rows(
        cls,
        rows: list[list[Any]],
        latest_block: int = 0,
        previous_challenge: str | None = None,
    ) -> MintDataset:
        """Build a dataset from snapshot/cache rows."""
        return cls(
            records=[MintRecord.from_row(row) for row in rows],
            latest_block=latest_block,
            previous_challenge=previous_challenge,
        )

    def to_rows(self) -> list[list[Any]]:
        """Serialize records to snapshot rows."""
        return [record.to_row() for record in self.records]

    @property
    def events(self) -> list[MintRecord]:
        """Records that are real mint events (markers excluded)."""
        return [r for r in self.records if not r.is_marker]

    @property
    def newest_epoch_count(self) -> int | None:
        """Epoch count of the newest row, None when empty."""
        return self.records[0].epoch_count if self.records else None

    def dedupe(self) -> MintDataset:
        """Copy with duplicate tx hashes removed (markers kept)."""
        return self.model_copy(update={"records": dedupe_records(self.records)})

    def __len__(self) -> int:
        return len(self.records)


class MinerCounters(BaseModel):
    """Per-address running totals for one window (recent or all-time)."""

    epochs: dict[str, int] = Field(default_factory=dict)
    txs: dict[str, int] = Field(default_factory=dict)
    tokens: dict[str, float] = Field(default_factory=dict)

    def record(self, miner: str, epochs_mined: int, reward: float) -> None:
        """Add one mint to the totals of ``miner``."""
        self.epochs[miner] = self.epochs.get(miner, 0) + epochs_mined
        self.txs[miner] = self.txs.get(miner, 0) + 1
        self.tokens[miner] = self.tokens.get(miner, 0.0) + reward

    @property
    def total_epochs(self) -> int:
        """Sum of epochs over every miner."""
        return sum(self.epochs.values())

    @property
    def total_txs(self) -> int:
        """Sum of transactions over every miner."""
        return sum(self.txs.values())

    @property
    def total_tokens(self) -> float:
        """Sum of rewards over every miner."""
        return sum(self.tokens.values())


class MinerTotals(BaseModel):
    """All-time and since-difficulty-start counters, updated per mint."""

    last_diff_start_block: int = 0
    all_time: MinerCounters = Field(default_factory=MinerCounters)
    recent: MinerCounters = Field(default_factory=MinerCounters)

    def record(self, record: MintRecord, epochs_mined: int) -> None:
        """Count a mint event; markers and pre-launch mints are ignored."""
        if record.is_marker or record.block <= MINING_START_BLOCK:
            return
        self.all_time.record(record.miner, epochs_mined, record.reward)
        if record.block > self.last_diff_start_block:
            self.recent.record(record.miner, epochs_mined, record.reward)


class MintSnapshot(BaseModel):
    """Published mint dataset snapshot."""

    mined_blocks: list[list[Any]] = Field(default_factory=list)
    latest_block_number: int = 0
    previous_challenge: str | None = None

    def to_dataset(self) -> MintDataset:
        """Convert to a MintDataset."""
        return MintDataset.from_rows(
            self.mined_blocks, self.latest_block_number, self.previous_challenge
        )


class ScanState(StrEnum):
    """Stages of a mint scan."""

    INIT = "init"
    LOAD_CACHE = "load_cache"
    FETCH_REFERENCE_SNAPSHOT = "fetch_reference_snapshot"
    PICK_NEWER_SOURCE = "pick_newer_source"
    SCAN = "scan"
    MERGE = "merge"
    PERSIST = "persist"
    DONE = "done"


class MintScanResult(BaseModel):
    """Outcome of one scan."""

    dataset: MintDataset
    head_block: int
    source: str = Field(..., description="'cache' or 'snapshot'")
    windows_scanned: int = 0
    skipped_windows: list[tuple[int, int]] = Field(default_factory=list)
    new_events: int = 0
    totals: MinerTotals = Field(
        default_factory=MinerTotals,
        description="Counters of the events found by this scan only",
    )


__all__ = [
    "MARKER_REWARD",
    "MintDataset",
    "MintRecord",
    "MintScanResult",
    "MintSnapshot",
    "MinerCounters",
    "MinerTotals",
    "ScanState",
    "dedupe_records",
    "epochs_mined_per_record",
    "normalize_challenge",
]
