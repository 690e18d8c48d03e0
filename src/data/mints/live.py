"""Continuous mint monitoring.

Runs the mint scanner on an interval, feeding it the head block and the
difficulty start block from the contract stats super-call when available.

Usage:
    python -m src.live --monitor --interval 60
"""

from __future__ import annotations

import asyncio

from typing import TYPE_CHECKING

import httpx

from src.helpers.errors import AggregatorError
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    from src.data.mints.models import MintScanResult
    from src.data.mints.scanner import MintScanner
    from src.data.multicall.stats import ContractStatsReader


logger = get_logger(__name__)

DEFAULT_INTERVAL = 60.0
"""Seconds between two scans"""

ERROR_RETRY_DELAY = 30.0
"""Seconds to wait after a failed scan before trying again"""


class MintMonitor:
    """Periodically refreshes the mint dataset."""

    def __init__(
        self,
        scanner: MintScanner,
        stats_reader: ContractStatsReader | None = None,
        *,
        error_retry_delay: float = ERROR_RETRY_DELAY,
    ) -> None:
        """Initialize the monitor.

        Args:
            scanner: Scanner doing the work
            stats_reader: Optional source of head block and difficulty start
            error_retry_delay: Wait after a failed scan
        """
        self.scanner = scanner
        self.stats_reader = stats_reader
        self.error_retry_delay = error_retry_delay

        self.last_result: MintScanResult | None = None
        self.scans_completed = 0
        self.scans_failed = 0
        self.should_shutdown = False
        self._wake = asyncio.Event()

    async def run_once(self) -> MintScanResult:
        """Run a single scan.

        Returns:
            The scan result
        """
        head_block = None
        last_diff_start_block = None
        if self.stats_reader is not None:
            stats = await self.stats_reader.get_stats()
            head_block = stats.block_number
            last_diff_start_block = stats.latest_diff_period

        result = await self.scanner.scan(head_block, last_diff_start_block)
        self.last_result = result
        self.scans_completed += 1
        return result

    async def run_continuous(self, sleep_seconds: float = DEFAULT_INTERVAL) -> None:
        """Scan repeatedly until ``stop`` is called.

        Args:
            sleep_seconds: Pause between scans, cut short by ``trigger_refresh``
        """
        logger.info("Mint monitor started, interval %.0fs", sleep_seconds)
        while not self.should_shutdown:
            delay = sleep_seconds
            try:
                result = await self.run_once()
                logger.info(
                    "Mint monitor: %d new events, tip %d",
                    result.new_events,
                    result.dataset.latest_block,
                )
            except (AggregatorError, httpx.HTTPError):
                self.scans_failed += 1
                logger.exception(
                    "Mint scan failed, retrying in %.0fs", self.error_retry_delay
                )
                delay = self.error_retry_delay

            if self.should_shutdown:
                break
            await self._sleep(delay)

        logger.info("Mint monitor stopped after %d scans", self.scans_completed)

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._wake.wait(), timeout=seconds)
        except TimeoutError:
            pass
        self._wake.clear()

    def trigger_refresh(self) -> None:
        """Wake the monitor so the next scan starts now."""
        self._wake.set()

    def stop(self) -> None:
        """Stop after the current scan."""
        logger.info("Shutdown requested, stopping mint monitor...")
        self.should_shutdown = True
        self._wake.set()


__all__ = [
    "DEFAULT_INTERVAL",
    "ERROR_RETRY_DELAY",
    "MintMonitor",
]
