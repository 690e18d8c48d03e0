"""Tests for the price history snapshot and the mint monitor."""

import asyncio
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from src.data.constants import PRICE_SNAPSHOT
from src.data.mints.live import MintMonitor
from src.data.mints.models import MintDataset, MintScanResult
from src.data.multicall.stats import ContractStatsReader
from src.data.prices.models import UNAVAILABLE_LABEL, PriceHistory
from src.data.prices.snapshot import fetch_price_history, format_last_updated
from src.helpers.errors import NetworkTransientError


if TYPE_CHECKING:
    from pytest_httpx import HTTPXMock


PRIMARY = f"https://primary.example/{PRICE_SNAPSHOT}"
BACKUP = f"https://backup.example/{PRICE_SNAPSHOT}"
DOCUMENT = {
    "prices": [0.5, 0.6],
    "timestamps": [1_756_717_747, 1_756_721_347],
    "blocks": [34_966_000, 34_967_800],
    "last_updated": 1_756_721_347,
}


class TestPriceHistory:
    """Tests for fetch_price_history."""

    @pytest.mark.asyncio
    async def test_primary(self, httpx_mock: "HTTPXMock") -> None:
        """Test a history loaded from the primary source."""
        httpx_mock.add_response(url=PRIMARY, json=DOCUMENT)

        async with httpx.AsyncClient() as client:
            history = await fetch_price_history(
                client, "https://primary.example/", "https://backup.example/"
            )

        assert history.prices == [0.5, 0.6]
        assert history.from_backup is False
        assert history.last_updated_label == "2025-09-01 10:09:07 UTC"
        points = history.points()
        assert points[0].block == 34_966_000
        assert points[1].price == 0.6

    @pytest.mark.asyncio
    async def test_backup_label(self, httpx_mock: "HTTPXMock") -> None:
        """Test that a backup load is flagged in the label."""
        httpx_mock.add_response(url=PRIMARY, status_code=500)
        httpx_mock.add_response(url=BACKUP, json=DOCUMENT)

        async with httpx.AsyncClient() as client:
            history = await fetch_price_history(
                client, "https://primary.example/", "https://backup.example/"
            )

        assert history.from_backup is True
        assert history.last_updated_label.endswith("[FROM BACKUP]")

    @pytest.mark.asyncio
    async def test_all_sources_fail(self, httpx_mock: "HTTPXMock") -> None:
        """Test that a total failure yields an empty, labelled history."""
        httpx_mock.add_response(url=PRIMARY, status_code=500)
        httpx_mock.add_response(url=BACKUP, status_code=404)

        async with httpx.AsyncClient() as client:
            history = await fetch_price_history(
                client, "https://primary.example/", "https://backup.example/"
            )

        assert not history.available
        assert history.last_updated_label == UNAVAILABLE_LABEL

    @pytest.mark.asyncio
    async def test_mismatched_arrays(self, httpx_mock: "HTTPXMock") -> None:
        """Test that parallel arrays of different lengths are rejected."""
        httpx_mock.add_response(url=PRIMARY, json={"prices": [1.0], "timestamps": []})

        async with httpx.AsyncClient() as client:
            history = await fetch_price_history(
                client, "https://primary.example/", "https://backup.example/"
            )

        assert not history.available

    def test_points_without_blocks(self) -> None:
        """Test that a file without a block column yields None blocks."""
        history = PriceHistory(prices=[1.0], timestamps=[0])

        assert history.points()[0].block is None

    def test_format_unknown(self) -> None:
        """Test the label of a snapshot without a timestamp."""
        assert format_last_updated(None, from_backup=True) == "unknown [FROM BACKUP]"


def scan_result(new_events: int = 0) -> MintScanResult:
    """A minimal scan result."""
    return MintScanResult(dataset=MintDataset(latest_block=10), head_block=10, source="cache", new_events=new_events)


class TestMintMonitor:
    """Tests for MintMonitor."""

    @pytest.mark.asyncio
    async def test_run_once_uses_stats(self) -> None:
        """Test that the stats super-call supplies head and difficulty start."""
        scanner = MagicMock()
        scanner.scan = AsyncMock(return_value=scan_result(2))
        stats_reader = AsyncMock(spec=ContractStatsReader)
        stats_reader.get_stats.return_value = MagicMock(block_number=500, latest_diff_period=400)

        monitor = MintMonitor(scanner, stats_reader)
        result = await monitor.run_once()

        scanner.scan.assert_awaited_once_with(500, 400)
        assert result.new_events == 2
        assert monitor.scans_completed == 1

    @pytest.mark.asyncio
    async def test_continuous_until_stopped(self) -> None:
        """Test that the loop keeps scanning and stops on request."""
        scanner = MagicMock()
        monitor = MintMonitor(scanner)

        async def scan(*args: object) -> MintScanResult:
            if monitor.scans_completed == 2:
                monitor.stop()
            return scan_result()

        scanner.scan = AsyncMock(side_effect=scan)

        await asyncio.wait_for(monitor.run_continuous(sleep_seconds=0.01), timeout=5)

        assert monitor.scans_completed == 3

    @pytest.mark.asyncio
    async def test_failure_counted_and_retried(self) -> None:
        """Test that a failed scan is counted and the loop continues."""
        scanner = MagicMock()
        monitor = MintMonitor(scanner, error_retry_delay=0.01)
        calls = 0

        async def scan(*args: object) -> MintScanResult:
            nonlocal calls
            calls += 1
            if calls == 1:
                raise NetworkTransientError("HTTP 503")
            monitor.stop()
            return scan_result()

        scanner.scan = AsyncMock(side_effect=scan)

        await asyncio.wait_for(monitor.run_continuous(sleep_seconds=60), timeout=5)

        assert monitor.scans_failed == 1
        assert monitor.scans_completed == 1

    @pytest.mark.asyncio
    async def test_trigger_refresh_cuts_sleep(self) -> None:
        """Test that trigger_refresh wakes a sleeping monitor."""
        scanner = MagicMock()
        monitor = MintMonitor(scanner)

        async def scan(*args: object) -> MintScanResult:
            if monitor.scans_completed == 1:
                monitor.stop()
            return scan_result()

        scanner.scan = AsyncMock(side_effect=scan)
        task = asyncio.create_task(monitor.run_continuous(sleep_seconds=3600))
        await asyncio.sleep(0.05)
        monitor.trigger_refresh()

        await asyncio.wait_for(task, timeout=5)
        assert monitor.scans_completed == 2
