"""Tests for the mint event scanner."""

import asyncio
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from eth_abi import encode

from src.data.cache.store import PersistentCache
from src.data.constants import (
    ETH_BLOCK_START_B0X,
    MINED_BLOCKS_SNAPSHOT,
    MINING_START_BLOCK,
    MINT_TOPIC,
)
from src.data.mints.scanner import (
    CHALLENGE_KEY,
    DATASET_KEY,
    LATEST_BLOCK_KEY,
    MintScanner,
    decode_mint_log,
    scan_mint_events,
)
from src.data.mints.models import ScanState
from src.helpers.config import AggregatorSettings
from src.helpers.errors import NetworkTransientError, ProtocolDecodeError, SnapshotUnavailableError
from src.helpers.rpc import RPCClient
from src.helpers.rpc_models import EthLog


if TYPE_CHECKING:
    from pytest_httpx import HTTPXMock


PRIMARY = f"https://primary.example/{MINED_BLOCKS_SNAPSHOT}"
BACKUP = f"https://backup.example/{MINED_BLOCKS_SNAPSHOT}"
B = MINING_START_BLOCK + 1_000
MINER = "0x" + "ab" * 20
H1 = bytes.fromhex("11" * 32)
H2 = bytes.fromhex("22" * 32)


def mint_log(block: int, tx: str, epoch: int, challenge: bytes, miner: str = MINER) -> EthLog:
    """Build a Mint log as returned by eth_getLogs."""
    data = encode(["uint256", "uint256", "bytes32"], [50 * 10**18, epoch, challenge])
    return EthLog(
        address="0xd44ee7dadbf50214ca7009a29d9f88bccd0e9ff4",
        block_number=block,
        transaction_hash=tx,
        topics=[MINT_TOPIC, "0x" + "0" * 24 + miner[2:]],
        data="0x" + data.hex(),
    )


@pytest.fixture
def rpc() -> AsyncMock:
    """RPC client mock whose get_logs answers from a list of logs by range."""
    mock = AsyncMock(spec=RPCClient)
    mock.logs = []

    async def get_logs(client: object, log_filter: object) -> list[EthLog]:
        return [
            log
            for log in mock.logs
            if log_filter.from_block <= log.block_number <= log_filter.to_block
        ]

    mock.get_logs.side_effect = get_logs
    return mock


def make_scanner(
    rpc: AsyncMock,
    client: httpx.AsyncClient,
    cache: PersistentCache,
    settings: AggregatorSettings,
    **kwargs: object,
) -> MintScanner:
    """Scanner starting just before B with no pauses between windows."""
    kwargs.setdefault("window_delay", 0)
    kwargs.setdefault("window_retry_base", 0)
    kwargs.setdefault("start_block", B - 50)
    return MintScanner(rpc, client, cache, settings, **kwargs)


class TestDecodeMintLog:
    """Tests for decode_mint_log function."""

    def test_fields(self) -> None:
        """Test miner, reward, epoch count and challenge extraction."""
        record, challenge = decode_mint_log(mint_log(B, "0x01", 42, H1))

        assert record.block == B
        assert record.miner == MINER
        assert record.reward == 50.0
        assert record.epoch_count == 42
        assert challenge == "11" * 32

    def test_missing_miner_topic(self) -> None:
        """Test that a log without the indexed miner is rejected."""
        log = mint_log(B, "0x01", 1, H1).model_copy(update={"topics": [MINT_TOPIC]})

        with pytest.raises(ProtocolDecodeError, match="no miner topic"):
            decode_mint_log(log)


class TestScan:
    """Tests for MintScanner.scan."""

    @pytest.mark.asyncio
    async def test_challenge_transition(
        self,
        rpc: AsyncMock,
        cache: PersistentCache,
        settings: AggregatorSettings,
        httpx_mock: "HTTPXMock",
    ) -> None:
        """Test that a new challenge inserts a marker before the triggering event."""
        httpx_mock.add_response(url=PRIMARY, status_code=500)
        httpx_mock.add_response(url=BACKUP, status_code=500)
        rpc.logs = [
            mint_log(B, "0xa", 1, H1),
            mint_log(B + 10, "0xb", 2, H1),
            mint_log(B + 20, "0xc", 3, H2),
        ]

        async with httpx.AsyncClient() as client:
            scanner = make_scanner(rpc, client, cache, settings, use_cache_without_snapshot=True)
            result = await scanner.scan(head_block=B + 30)

        rows = [(r.block, r.tx_hash, r.is_marker) for r in result.dataset.records]
        assert rows == [
            (B + 20, "0xc", True),
            (B + 20, "0xc", False),
            (B + 10, "0xb", False),
            (B, "0xa", False),
        ]
        assert result.dataset.previous_challenge == "22" * 32
        assert result.new_events == 3
        assert result.source == "cache"
        assert scanner.state is ScanState.DONE

    @pytest.mark.asyncio
    async def test_epoch_counts_non_decreasing(
        self,
        rpc: AsyncMock,
        cache: PersistentCache,
        settings: AggregatorSettings,
        httpx_mock: "HTTPXMock",
    ) -> None:
        """Test the running epoch count within one challenge era."""
        httpx_mock.add_response(url=PRIMARY, status_code=500)
        httpx_mock.add_response(url=BACKUP, status_code=500)
        rpc.logs = [mint_log(B + i, f"0x{i}", 10 + i * 2, H1) for i in range(5)]

        async with httpx.AsyncClient() as client:
            scanner = make_scanner(rpc, client, cache, settings, use_cache_without_snapshot=True)
            result = await scanner.scan(head_block=B + 10, last_diff_start_block=0)

        oldest_first = [r.epoch_count for r in reversed(result.dataset.events)]
        assert oldest_first == sorted(oldest_first)
        # First event counts its full epoch count, the rest count deltas of 2
        assert result.totals.all_time.epochs == {MINER: 10 + 2 * 4}

    @pytest.mark.asyncio
    async def test_persists_and_resumes(
        self,
        rpc: AsyncMock,
        cache: PersistentCache,
        settings: AggregatorSettings,
        httpx_mock: "HTTPXMock",
    ) -> None:
        """Test that a second scan starts after the persisted tip."""
        for _ in range(2):
            httpx_mock.add_response(url=PRIMARY, status_code=500)
            httpx_mock.add_response(url=BACKUP, status_code=500)
        rpc.logs = [mint_log(B, "0xa", 1, H1)]

        async with httpx.AsyncClient() as client:
            scanner = make_scanner(rpc, client, cache, settings, use_cache_without_snapshot=True)
            await scanner.scan(head_block=B + 10)

            assert await cache.read_int(LATEST_BLOCK_KEY) == B + 8
            assert await cache.read_json(CHALLENGE_KEY) == "11" * 32

            rpc.logs.append(mint_log(B + 20, "0xb", 2, H1))
            result = await scanner.scan(head_block=B + 30)

        assert [r.tx_hash for r in result.dataset.records] == ["0xb", "0xa"]
        assert result.new_events == 1
        first_window = rpc.get_logs.await_args_list[-1].args[1]
        assert first_window.from_block == B + 9

    @pytest.mark.asyncio
    async def test_cache_dedupes_rescanned_events(
        self,
        rpc: AsyncMock,
        cache: PersistentCache,
        settings: AggregatorSettings,
        httpx_mock: "HTTPXMock",
    ) -> None:
        """Test that an event already cached is not duplicated."""
        httpx_mock.add_response(url=PRIMARY, status_code=500)
        httpx_mock.add_response(url=BACKUP, status_code=500)
        await cache.write_many(
            {DATASET_KEY: [[B, "0xa", MINER, 50.0, 1]], LATEST_BLOCK_KEY: B - 1}
        )
        rpc.logs = [mint_log(B, "0xa", 1, H1)]

        async with httpx.AsyncClient() as client:
            scanner = make_scanner(rpc, client, cache, settings, use_cache_without_snapshot=True)
            result = await scanner.scan(head_block=B + 10)

        assert [r.tx_hash for r in result.dataset.records] == ["0xa"]

    @pytest.mark.asyncio
    async def test_failed_window_skipped(
        self,
        rpc: AsyncMock,
        cache: PersistentCache,
        settings: AggregatorSettings,
        httpx_mock: "HTTPXMock",
    ) -> None:
        """Test that a window failing every attempt is skipped and reported."""
        httpx_mock.add_response(url=PRIMARY, status_code=500)
        httpx_mock.add_response(url=BACKUP, status_code=500)
        rpc.get_logs.side_effect = NetworkTransientError("HTTP 503")

        async with httpx.AsyncClient() as client:
            scanner = make_scanner(
                rpc, client, cache, settings,
                use_cache_without_snapshot=True, max_window_attempts=2,
                start_block=ETH_BLOCK_START_B0X,
            )
            with patch("src.data.mints.scanner.sleep", new_callable=AsyncMock):
                result = await scanner.scan(head_block=ETH_BLOCK_START_B0X + 600)

        assert result.skipped_windows == [
            (ETH_BLOCK_START_B0X + 1, ETH_BLOCK_START_B0X + 500),
            (ETH_BLOCK_START_B0X + 501, ETH_BLOCK_START_B0X + 598),
        ]
        assert rpc.get_logs.await_count == 4
        assert result.dataset.latest_block == ETH_BLOCK_START_B0X + 598

    @pytest.mark.asyncio
    async def test_html_log_reply_retried(
        self,
        cache: PersistentCache,
        settings: AggregatorSettings,
        httpx_mock: "HTTPXMock",
    ) -> None:
        """Test that a window answered with HTML is retried and the scan completes."""
        httpx_mock.add_response(url=PRIMARY, status_code=500)
        httpx_mock.add_response(url=BACKUP, status_code=500)
        log = mint_log(B, "0xa", 1, H1).model_dump(by_alias=True)
        httpx_mock.add_response(url=settings.rpc_url, text="<html>504 Gateway Time-out</html>")
        httpx_mock.add_response(
            url=settings.rpc_url, json={"jsonrpc": "2.0", "id": 1, "result": [log]}
        )
        rpc = RPCClient(settings.rpc_url, base_delay=0, jitter=0)

        async with httpx.AsyncClient() as client:
            scanner = make_scanner(rpc, client, cache, settings, use_cache_without_snapshot=True)
            with patch("src.data.mints.scanner.sleep", new_callable=AsyncMock):
                result = await scanner.scan(head_block=B + 30)

        assert result.skipped_windows == []
        assert [r.tx_hash for r in result.dataset.events] == ["0xa"]
        assert result.dataset.latest_block == B + 28
        assert scanner.state is ScanState.DONE

    @pytest.mark.asyncio
    async def test_reports_progress(
        self,
        rpc: AsyncMock,
        cache: PersistentCache,
        settings: AggregatorSettings,
        httpx_mock: "HTTPXMock",
    ) -> None:
        """Test one status string per window."""
        httpx_mock.add_response(url=PRIMARY, status_code=500)
        httpx_mock.add_response(url=BACKUP, status_code=500)
        statuses: list[str] = []

        async with httpx.AsyncClient() as client:
            scanner = make_scanner(
                rpc, client, cache, settings,
                use_cache_without_snapshot=True, status_callback=statuses.append,
                start_block=ETH_BLOCK_START_B0X,
            )
            await scanner.scan(head_block=ETH_BLOCK_START_B0X + 1_002)

        assert statuses == ["50% [1 / 2]", "100% [2 / 2]"]

    @pytest.mark.asyncio
    async def test_head_fetched_when_missing(
        self,
        rpc: AsyncMock,
        cache: PersistentCache,
        settings: AggregatorSettings,
        httpx_mock: "HTTPXMock",
    ) -> None:
        """Test that eth_blockNumber supplies the head when not given."""
        httpx_mock.add_response(url=PRIMARY, status_code=500)
        httpx_mock.add_response(url=BACKUP, status_code=500)
        rpc.get_block_number.return_value = ETH_BLOCK_START_B0X + 10

        async with httpx.AsyncClient() as client:
            result = await scan_mint_events(
                rpc, client, cache, settings, use_cache_without_snapshot=True, window_delay=0
            )

        assert result.latest_block == ETH_BLOCK_START_B0X + 8
        rpc.get_block_number.assert_awaited_once()


class TestSnapshotFailover:
    """Tests for snapshot selection."""

    @pytest.mark.asyncio
    async def test_backup_snapshot_newer_than_cache(
        self,
        rpc: AsyncMock,
        cache: PersistentCache,
        settings: AggregatorSettings,
        httpx_mock: "HTTPXMock",
    ) -> None:
        """Test that a newer backup snapshot overwrites the cache."""
        tip = B + 50
        await cache.write_many(
            {DATASET_KEY: [[B - 50, "0xold", MINER, 50.0, 1]], LATEST_BLOCK_KEY: B - 40}
        )
        httpx_mock.add_response(url=PRIMARY, status_code=500)
        httpx_mock.add_response(
            url=BACKUP,
            json={
                "mined_blocks": [[B, "0xsnap", MINER, 50.0, 2]],
                "latest_block_number": tip,
                "previous_challenge": "0x" + "11" * 32,
            },
        )

        async with httpx.AsyncClient() as client:
            scanner = make_scanner(rpc, client, cache, settings)
            result = await scanner.scan(head_block=tip + 2)

        assert result.source == "snapshot"
        assert result.windows_scanned == 0
        assert result.dataset.latest_block == tip
        assert await cache.read_int(LATEST_BLOCK_KEY) == tip
        assert await cache.read_json(DATASET_KEY) == [[B, "0xsnap", MINER, 50.0, 2]]

    @pytest.mark.asyncio
    async def test_older_snapshot_ignored(
        self,
        rpc: AsyncMock,
        cache: PersistentCache,
        settings: AggregatorSettings,
        httpx_mock: "HTTPXMock",
    ) -> None:
        """Test that the cache wins when its tip is not older."""
        await cache.write_many({DATASET_KEY: [], LATEST_BLOCK_KEY: B + 100})
        httpx_mock.add_response(
            url=PRIMARY, json={"mined_blocks": [], "latest_block_number": B}
        )

        async with httpx.AsyncClient() as client:
            scanner = make_scanner(rpc, client, cache, settings)
            result = await scanner.scan(head_block=B + 102)

        assert result.source == "cache"
        assert result.dataset.latest_block == B + 100

    @pytest.mark.asyncio
    async def test_all_sources_fail_raises(
        self,
        rpc: AsyncMock,
        cache: PersistentCache,
        settings: AggregatorSettings,
        httpx_mock: "HTTPXMock",
    ) -> None:
        """Test that the scan fails without a snapshot unless allowed."""
        httpx_mock.add_response(url=PRIMARY, status_code=500)
        httpx_mock.add_response(url=BACKUP, status_code=503)

        async with httpx.AsyncClient() as client:
            scanner = make_scanner(rpc, client, cache, settings)
            with pytest.raises(SnapshotUnavailableError):
                await scanner.scan(head_block=B)

        assert scanner.state is ScanState.INIT
        rpc.get_logs.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_rows_raise(
        self,
        rpc: AsyncMock,
        cache: PersistentCache,
        settings: AggregatorSettings,
        httpx_mock: "HTTPXMock",
    ) -> None:
        """Test that malformed snapshot rows count as an unavailable snapshot."""
        httpx_mock.add_response(
            url=PRIMARY, json={"mined_blocks": [[1, 2]], "latest_block_number": B}
        )

        async with httpx.AsyncClient() as client:
            scanner = make_scanner(rpc, client, cache, settings)
            with pytest.raises(SnapshotUnavailableError, match="rows are invalid"):
                await scanner.scan(head_block=B)


class TestConcurrency:
    """Tests for scan serialization and cancellation."""

    @pytest.mark.asyncio
    async def test_start_scan_cancels_previous(
        self, cache: PersistentCache, settings: AggregatorSettings
    ) -> None:
        """Test that a new scan task cancels the running one."""
        started = asyncio.Event()

        async def slow_snapshot() -> None:
            started.set()
            await asyncio.sleep(10)

        scanner = MintScanner(MagicMock(), MagicMock(), cache, settings)
        scanner.fetch_snapshot = slow_snapshot  # type: ignore[method-assign]

        first = scanner.start_scan(head_block=B)
        await started.wait()
        second = scanner.start_scan(head_block=B)
        second.cancel()

        with pytest.raises(asyncio.CancelledError):
            await first
        with pytest.raises(asyncio.CancelledError):
            await second
        assert not scanner.in_progress
        assert scanner.state is ScanState.INIT
