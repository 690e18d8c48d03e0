"""Tests for the storage-slot sampler."""

from datetime import UTC, datetime
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from src.data.cache.store import PersistentCache, cache_key
from src.data.constants import ETH_BLOCK_START, POW_CONTRACT_ADDRESS, SLOT_MINING_TARGET
from src.data.series.sampler import (
    StorageSlotSampler,
    blocks_since_utc_midnight,
    drop_cached_blocks,
    fetch_series,
    plan_sample_blocks,
)
from src.helpers.errors import ProtocolDecodeError
from src.helpers.rpc import RPCClient


if TYPE_CHECKING:
    from pytest_httpx import HTTPXMock


RPC_URL = "https://base.example/rpc"
MIDNIGHT = datetime(2025, 9, 1, tzinfo=UTC)
B = ETH_BLOCK_START + 1_000


def _word(value: int) -> str:
    return "0x" + f"{value:064x}"


def _midnight() -> datetime:
    return MIDNIGHT


@pytest.fixture
def rpc() -> RPCClient:
    """RPC client with a fixed, jitter-free backoff."""
    return RPCClient(RPC_URL, max_retries=5, base_delay=2.0, jitter=0)


class TestPlanning:
    """Tests for sample planning helpers."""

    def test_blocks_since_midnight(self) -> None:
        """Test the block offset from UTC midnight."""
        assert blocks_since_utc_midnight(MIDNIGHT) == 0
        assert blocks_since_utc_midnight(datetime(2025, 9, 1, 1, 0, tzinfo=UTC)) == 1_800

    def test_plan_at_midnight(self) -> None:
        """Test evenly spaced blocks counting down from the end."""
        assert plan_sample_blocks(1_000, 2_000, 4, now=MIDNIGHT) == [2_000, 1_750, 1_500, 1_250]

    def test_plan_aligned_to_midnight(self) -> None:
        """Test that the end moves back by the blocks since midnight."""
        now = datetime(2025, 9, 1, 0, 1, tzinfo=UTC)

        assert plan_sample_blocks(1_000, 2_000, 2, now=now) == [1_970, 1_470]

    def test_same_plan_all_day(self) -> None:
        """Test that two runs on the same day at the same head agree."""
        morning = plan_sample_blocks(0, 100_000, 5, now=datetime(2025, 9, 1, 6, tzinfo=UTC))
        again = plan_sample_blocks(0, 100_000, 5, now=datetime(2025, 9, 1, 6, tzinfo=UTC))

        assert morning == again

    @pytest.mark.parametrize("points", [0, -3])
    def test_plan_requires_points(self, points: int) -> None:
        """Test that a non-positive sample count is rejected."""
        with pytest.raises(ValueError, match="num_points must be positive"):
            plan_sample_blocks(0, 10, points, now=MIDNIGHT)

    def test_drop_cached_blocks(self) -> None:
        """Test that planned blocks near a cached block are dropped."""
        assert drop_cached_blocks([100, 500, 1_000], [150, 1_100], tolerance=100) == [500]

    def test_drop_cached_blocks_empty_cache(self) -> None:
        """Test that nothing is dropped without cached blocks."""
        assert drop_cached_blocks([1, 2], [], tolerance=100) == [1, 2]


class TestCacheReuse:
    """Tests for cache reconciliation."""

    @pytest.mark.asyncio
    async def test_cache_hit_only(
        self, rpc: RPCClient, cache: PersistentCache, httpx_mock: "HTTPXMock"
    ) -> None:
        """Test that a fully cached range issues no RPC calls."""
        key = cache_key("miningTargets2", 1, POW_CONTRACT_ADDRESS)
        await cache.write_series(key, {B: 1, B + 1_000: 2})

        with patch("src.data.series.sampler.sleep", new_callable=AsyncMock):
            async with httpx.AsyncClient() as client:
                series = await fetch_series(
                    rpc,
                    client,
                    cache,
                    "miningTargets2",
                    POW_CONTRACT_ADDRESS,
                    SLOT_MINING_TARGET,
                    B,
                    B + 1_000,
                    samples=1,
                    tolerance=100,
                    clock=_midnight,
                )

        assert series.as_pairs() == [(B, 1), (B + 1_000, 2)]
        assert httpx_mock.get_requests() == []

    @pytest.mark.asyncio
    async def test_fetches_only_missing(
        self, rpc: RPCClient, cache: PersistentCache, httpx_mock: "HTTPXMock"
    ) -> None:
        """Test that only uncached planned blocks are requested and then persisted."""
        key = cache_key("eraValues2", 2, POW_CONTRACT_ADDRESS)
        await cache.write_series(key, {B + 1_000: 7})
        httpx_mock.add_response(url=RPC_URL, json={"jsonrpc": "2.0", "id": 1, "result": _word(5)})

        with patch("src.data.series.sampler.sleep", new_callable=AsyncMock):
            async with httpx.AsyncClient() as client:
                series = await fetch_series(
                    rpc,
                    client,
                    cache,
                    "eraValues2",
                    POW_CONTRACT_ADDRESS,
                    7,
                    B,
                    B + 1_000,
                    samples=2,
                    clock=_midnight,
                )

        assert series.as_pairs() == [(B + 500, 5), (B + 1_000, 7)]
        assert len(httpx_mock.get_requests()) == 1
        assert await cache.read_series(key) == {B + 500: 5, B + 1_000: 7}


class TestBatchFetch:
    """Tests for batched storage reads."""

    @pytest.mark.asyncio
    async def test_rate_limited_call_adds_one_sample(
        self, rpc: RPCClient, cache: PersistentCache, httpx_mock: "HTTPXMock"
    ) -> None:
        """Test two rate-limit answers then success: one sample, backoff of base + 2*base."""
        limited = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "limit"}}
        httpx_mock.add_response(url=RPC_URL, json=limited)
        httpx_mock.add_response(url=RPC_URL, json=limited)
        httpx_mock.add_response(url=RPC_URL, json={"jsonrpc": "2.0", "id": 1, "result": _word(9)})

        async with httpx.AsyncClient() as client:
            sampler = StorageSlotSampler(
                rpc, client, cache, POW_CONTRACT_ADDRESS, 4, "miningTargets2"
            )
            with (
                patch("src.helpers.http.sleep", new_callable=AsyncMock) as backoff_sleep,
                patch("src.data.series.sampler.sleep", new_callable=AsyncMock),
            ):
                before = len(sampler.states)
                await sampler.batch_get_storage_at([B])

        assert len(sampler.states) == before + 1
        assert sampler.states[0].value == 9
        delays = [c.args[0] for c in backoff_sleep.await_args_list]
        assert sum(delays) >= 2.0 + 2.0 * 2

    @pytest.mark.asyncio
    async def test_blocks_below_floor_skipped(
        self, rpc: RPCClient, cache: PersistentCache, httpx_mock: "HTTPXMock"
    ) -> None:
        """Test that no call is made for blocks under the genesis floor."""
        async with httpx.AsyncClient() as client:
            sampler = StorageSlotSampler(
                rpc, client, cache, POW_CONTRACT_ADDRESS, 4, "miningTargets2"
            )
            assert await sampler.batch_get_storage_at([ETH_BLOCK_START - 1]) == []

        assert httpx_mock.get_requests() == []

    @pytest.mark.asyncio
    async def test_bad_value_retried_then_dropped(self, cache: PersistentCache) -> None:
        """Test that a block whose value never decodes is dropped."""
        rpc = AsyncMock(spec=RPCClient)
        rpc.get_storage_at.return_value = "0x"

        async with httpx.AsyncClient() as client:
            sampler = StorageSlotSampler(
                rpc, client, cache, POW_CONTRACT_ADDRESS, 4, "miningTargets2",
                max_value_retries=2,
            )
            with patch("src.data.series.sampler.sleep", new_callable=AsyncMock):
                await sampler.batch_get_storage_at([B, B + 10])

        assert sampler.states == []
        assert sampler.dropped_blocks == [B, B + 10]
        assert sampler.all_values_loaded()
        # One batch attempt plus two retries per block
        assert rpc.get_storage_at.await_count == 6

    @pytest.mark.asyncio
    async def test_serial_retry_recovers(self, cache: PersistentCache) -> None:
        """Test that a failed block is recovered by the serial retry."""
        rpc = AsyncMock(spec=RPCClient)
        rpc.get_storage_at.side_effect = [_word(1), "0x", _word(2)]

        async with httpx.AsyncClient() as client:
            sampler = StorageSlotSampler(
                rpc, client, cache, POW_CONTRACT_ADDRESS, 4, "miningTargets2"
            )
            with patch("src.data.series.sampler.sleep", new_callable=AsyncMock):
                await sampler.batch_get_storage_at([B, B + 10])

        series = sampler.to_series()
        assert series.as_pairs() == [(B, 1), (B + 10, 2)]
        assert sampler.all_values_loaded()

    @pytest.mark.asyncio
    async def test_html_reply_retried_serially(
        self, rpc: RPCClient, cache: PersistentCache, httpx_mock: "HTTPXMock"
    ) -> None:
        """Test that a block whose reply is not JSON is retried and recovered."""
        httpx_mock.add_response(url=RPC_URL, text="<html>502 Bad Gateway</html>")
        httpx_mock.add_response(url=RPC_URL, json={"jsonrpc": "2.0", "id": 1, "result": _word(7)})

        async with httpx.AsyncClient() as client:
            sampler = StorageSlotSampler(
                rpc, client, cache, POW_CONTRACT_ADDRESS, 4, "miningTargets2"
            )
            with (
                patch("src.data.series.sampler.sleep", new_callable=AsyncMock),
                patch("src.helpers.http.sleep", new_callable=AsyncMock),
            ):
                await sampler.batch_get_storage_at([B])

        assert sampler.to_series().as_pairs() == [(B, 7)]
        assert sampler.dropped_blocks == []

    @pytest.mark.asyncio
    async def test_html_reply_dropped_after_retries(
        self, rpc: RPCClient, cache: PersistentCache, httpx_mock: "HTTPXMock"
    ) -> None:
        """Test that a block answered with HTML every time is dropped, not raised."""
        for _ in range(2):
            httpx_mock.add_response(url=RPC_URL, text="<html></html>")

        async with httpx.AsyncClient() as client:
            sampler = StorageSlotSampler(
                rpc, client, cache, POW_CONTRACT_ADDRESS, 4, "miningTargets2",
                max_value_retries=1,
            )
            with (
                patch("src.data.series.sampler.sleep", new_callable=AsyncMock),
                patch("src.helpers.http.sleep", new_callable=AsyncMock),
            ):
                await sampler.batch_get_storage_at([B])

        assert sampler.states == []
        assert sampler.dropped_blocks == [B]
        assert sampler.all_values_loaded()

    def test_batch_size_bounds(self, rpc: RPCClient, cache: PersistentCache) -> None:
        """Test that batches larger than 20 are rejected."""
        with pytest.raises(ValueError, match="batch_size must be between 1 and 20"):
            StorageSlotSampler(
                rpc, AsyncMock(), cache, POW_CONTRACT_ADDRESS, 4, "x", batch_size=21
            )


class TestSeriesInvariants:
    """Tests for ordering and idempotence of sampled series."""

    @pytest.mark.asyncio
    async def test_sorted_and_unique(self, cache: PersistentCache) -> None:
        """Test strict ascending blocks after sort, last value per block kept."""
        rpc = AsyncMock(spec=RPCClient)
        rpc.get_storage_at.side_effect = [_word(3), _word(1), _word(2), _word(4)]

        async with httpx.AsyncClient() as client:
            sampler = StorageSlotSampler(
                rpc, client, cache, POW_CONTRACT_ADDRESS, 4, "miningTargets2"
            )
            with patch("src.data.series.sampler.sleep", new_callable=AsyncMock):
                await sampler.batch_get_storage_at([B + 30, B + 10, B + 20, B + 10])

        blocks = sampler.to_series().blocks
        assert blocks == sorted(set(blocks))
        assert all(a < b for a, b in zip(blocks, blocks[1:], strict=False))

    @pytest.mark.asyncio
    async def test_same_block_same_value(
        self, rpc: RPCClient, cache: PersistentCache, httpx_mock: "HTTPXMock"
    ) -> None:
        """Test that sampling one block twice decodes the same value."""
        word = _word(2**200 + 17)
        httpx_mock.add_response(url=RPC_URL, json={"jsonrpc": "2.0", "id": 1, "result": word})
        httpx_mock.add_response(url=RPC_URL, json={"jsonrpc": "2.0", "id": 1, "result": word})

        async with httpx.AsyncClient() as client:
            first = StorageSlotSampler(rpc, client, cache, POW_CONTRACT_ADDRESS, 4, "a")
            second = StorageSlotSampler(rpc, client, cache, POW_CONTRACT_ADDRESS, 4, "b")
            with patch("src.data.series.sampler.sleep", new_callable=AsyncMock):
                await first.batch_get_storage_at([B])
                await second.batch_get_storage_at([B])

        assert first.states[0].value == second.states[0].value == 2**200 + 17

    @pytest.mark.asyncio
    async def test_undecodable_raises_protocol_error(self) -> None:
        """Test the decode error raised for an empty word."""
        from src.data.series.policies import decode_storage_word

        with pytest.raises(ProtocolDecodeError):
            decode_storage_word(4, "0x")
