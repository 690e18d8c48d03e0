"""Tests for mint dataset models."""

import pytest
from pydantic import ValidationError

from src.data.constants import MINING_START_BLOCK
from src.data.mints.models import (
    MintDataset,
    MintRecord,
    MintSnapshot,
    MinerTotals,
    dedupe_records,
    epochs_mined_per_record,
    normalize_challenge,
)


def _record(block: int, tx: str, miner: str = "0xAA", reward: float = 50.0, epoch: int = 1) -> MintRecord:
    return MintRecord(block=block, tx_hash=tx, miner=miner, reward=reward, epoch_count=epoch)


class TestMintRecord:
    """Tests for MintRecord model."""

    def test_row_round_trip(self) -> None:
        """Test the snapshot row layout."""
        row = [37_700_000, "0xabc", "0xMiner", 25.5, 1_234]

        record = MintRecord.from_row(row)

        assert record.miner == "0xminer"
        assert record.to_row() == [37_700_000, "0xabc", "0xminer", 25.5, 1_234]

    def test_marker(self) -> None:
        """Test that a marker keeps block, hash and epoch count."""
        marker = _record(10, "0x1", epoch=5).as_marker()

        assert marker.is_marker
        assert marker.to_row() == [10, "0x1", "0xaa", -1, 5]

    def test_row_length_checked(self) -> None:
        """Test that malformed rows raise ValueError."""
        with pytest.raises(ValueError, match="must have 5 fields"):
            MintRecord.from_row([1, "0x1", "0xaa", 1.0])

    def test_negative_block_rejected(self) -> None:
        """Test field validation."""
        with pytest.raises(ValidationError):
            _record(-1, "0x1")

    def test_missing_epoch_count_is_zero(self) -> None:
        """Test that a null epoch count in old snapshots becomes zero."""
        assert MintRecord.from_row([1, "0x1", "0xaa", 1.0, None]).epoch_count == 0


class TestDedupe:
    """Tests for duplicate removal."""

    def test_first_occurrence_kept(self) -> None:
        """Test that the newest row of a repeated hash survives."""
        records = [_record(3, "0x1", epoch=3), _record(2, "0x1", epoch=2), _record(1, "0x2")]

        result = dedupe_records(records)

        assert [(r.block, r.tx_hash) for r in result] == [(3, "0x1"), (1, "0x2")]

    def test_markers_share_hash(self) -> None:
        """Test that a marker may share the hash of its triggering event."""
        event = _record(3, "0x1")
        records = [event.as_marker(), event]

        assert dedupe_records(records) == records

    def test_hashes_unique_after_dedupe(self) -> None:
        """Test that non-marker hashes are unique."""
        records = [_record(i, f"0x{i % 3}") for i in range(10, 0, -1)]

        hashes = [r.tx_hash for r in dedupe_records(records) if not r.is_marker]
        assert len(hashes) == len(set(hashes))


class TestEpochsMined:
    """Tests for per-row epoch deltas."""

    def test_deltas_newest_first(self) -> None:
        """Test the delta to the next older row and the full count of the oldest."""
        records = [_record(3, "c", epoch=10), _record(2, "b", epoch=7), _record(1, "a", epoch=4)]

        assert epochs_mined_per_record(records) == [3, 3, 4]

    def test_reset_clamped(self) -> None:
        """Test that a counter reset counts as one epoch."""
        records = [_record(2, "b", epoch=1), _record(1, "a", epoch=100)]

        assert epochs_mined_per_record(records) == [1, 100]


class TestMinerTotals:
    """Tests for MinerTotals model."""

    def test_windows(self) -> None:
        """Test all-time and recent windows with the mining start cut-off."""
        totals = MinerTotals(last_diff_start_block=MINING_START_BLOCK + 100)

        totals.record(_record(MINING_START_BLOCK, "0", miner="0xa"), 5)
        totals.record(_record(MINING_START_BLOCK + 50, "1", miner="0xa"), 2)
        totals.record(_record(MINING_START_BLOCK + 150, "2", miner="0xb"), 3)
        totals.record(_record(MINING_START_BLOCK + 160, "3", miner="0xb").as_marker(), 9)

        assert totals.all_time.epochs == {"0xa": 2, "0xb": 3}
        assert totals.recent.epochs == {"0xb": 3}
        assert totals.all_time.total_txs == 2
        assert totals.all_time.total_tokens == 100.0


class TestDataset:
    """Tests for MintDataset and MintSnapshot."""

    def test_snapshot_to_dataset(self) -> None:
        """Test conversion and challenge normalization."""
        snapshot = MintSnapshot.model_validate(
            {
                "mined_blocks": [[2, "0x2", "0xa", 50, 2], [1, "0x1", "0xa", 50, 1]],
                "latest_block_number": 5,
                "previous_challenge": "0xABCD",
            }
        )

        dataset = snapshot.to_dataset()

        assert len(dataset) == 2
        assert dataset.latest_block == 5
        assert dataset.previous_challenge == "abcd"
        assert dataset.newest_epoch_count == 2

    def test_events_exclude_markers(self) -> None:
        """Test the events view."""
        event = _record(1, "0x1")
        dataset = MintDataset(records=[event.as_marker(), event])

        assert dataset.events == [event]

    def test_empty(self) -> None:
        """Test an empty dataset."""
        assert MintDataset().newest_epoch_count is None
        assert normalize_challenge(None) is None
