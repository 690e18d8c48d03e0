"""Incremental mint event scanner.

A scan walks through these stages:

    INIT -> LOAD_CACHE -> FETCH_REFERENCE_SNAPSHOT -> PICK_NEWER_SOURCE
         -> SCAN -> MERGE -> PERSIST -> DONE

The dataset is kept newest first. New events from ``eth_getLogs`` are
prepended in RPC order, so the running epoch count and challenge hash always
follow block order.
"""

from __future__ import annotations

import asyncio

from asyncio import sleep
from collections import deque
from typing import TYPE_CHECKING, Any

import httpx

from src.data.constants import (
    ETH_BLOCK_START_B0X,
    MINT_TOPIC,
    POW_CONTRACT_ADDRESS,
    SCAN_HEAD_LAG,
)
from src.data.mints.models import (
    MintDataset,
    MintRecord,
    MintScanResult,
    MinerTotals,
    ScanState,
    dedupe_records,
    normalize_challenge,
)
from src.data.mints.snapshot import fetch_mint_snapshot, pick_newer_source
from src.helpers.abi import decode_output
from src.helpers.errors import (
    AggregatorError,
    ProtocolDecodeError,
    SnapshotUnavailableError,
)
from src.helpers.logging import get_logger
from src.helpers.parsers import wei_to_token
from src.helpers.progress import format_status
from src.helpers.rpc import calculate_block_ranges
from src.helpers.rpc_models import LogFilter


if TYPE_CHECKING:
    from src.data.cache.store import PersistentCache
    from src.helpers.config import AggregatorSettings
    from src.helpers.progress import StatusCallback
    from src.helpers.rpc import RPCClient
    from src.helpers.rpc_models import EthLog


logger = get_logger(__name__)

WINDOW_SIZE = 500
"""Blocks per eth_getLogs window"""

MAX_WINDOW_ATTEMPTS = 5
"""Attempts per window before it is skipped"""

WINDOW_RETRY_BASE = 1.0
"""Retry delay of a window is this many seconds times the attempt number"""

WINDOW_DELAY = 0.2
"""Pause between windows (seconds)"""

MINT_DATA_TYPES = ["uint256", "uint256", "bytes32"]
"""Non-indexed Mint event fields: reward amount, epoch count, new challenge"""

DATASET_KEY = "mintData_minedBlocks"
"""Cache key of the dataset rows"""

LATEST_BLOCK_KEY = "mintData_latestBlock"
"""Cache key of the scanned tip"""

CHALLENGE_KEY = "mintData_previousChallenge"
"""Cache key of the last challenge hash"""

LAST_DIFF_START_KEY = "mintData_lastDiffStartBlock"
"""Cache key of the last difficulty start block"""

SCAN_ERRORS = (AggregatorError, httpx.HTTPError)


def decode_mint_log(log: EthLog) -> tuple[MintRecord, str]:
    """Decode a Mint log into a dataset row and its challenge hash.

    Args:
        log: Log entry matching the Mint topic

    Returns:
        Tuple of (record, challenge hash as 64 lower-case hex chars)

    Raises:
        ProtocolDecodeError: If the log has no miner topic or malformed data
    """
    if len(log.topics) < 2:
        msg = f"Mint log {log.transaction_hash} has no miner topic"
        raise ProtocolDecodeError(msg)

    reward_wei, epoch_count, challenge = decode_output(MINT_DATA_TYPES, log.data)
    record = MintRecord(
        block=log.block_number,
        tx_hash=log.transaction_hash,
        miner="0x" + log.topics[1][-40:],
        reward=wei_to_token(reward_wei) or 0.0,
        epoch_count=epoch_count,
    )
    return record, challenge.hex()


class MintScanner:
    """Keeps the mint dataset up to date, from the cached tip to the chain head.

    Only one scan runs at a time: a second ``scan`` call waits for the first
    to finish. ``start_scan`` instead replaces a running scan, cancelling it
    at its next suspension point.
    """

    def __init__(
        self,
        rpc: RPCClient,
        client: httpx.AsyncClient,
        cache: PersistentCache,
        settings: AggregatorSettings,
        *,
        contract_address: str = POW_CONTRACT_ADDRESS,
        start_block: int = ETH_BLOCK_START_B0X,
        window_size: int = WINDOW_SIZE,
        max_window_attempts: int = MAX_WINDOW_ATTEMPTS,
        window_retry_base: float = WINDOW_RETRY_BASE,
        window_delay: float = WINDOW_DELAY,
        use_cache_without_snapshot: bool = False,
        status_callback: StatusCallback | None = None,
    ) -> None:
        """Initialize the scanner.

        Args:
            rpc: JSON-RPC client
            client: HTTP client shared with the RPC client
            cache: Persistent cache holding the dataset
            settings: Source of the snapshot URLs
            contract_address: Contract emitting Mint events
            start_block: Scans never start at or below this block
            window_size: Blocks per eth_getLogs call
            max_window_attempts: Attempts before a window is skipped
            window_retry_base: Base of the linear retry delay
            window_delay: Pause between windows
            use_cache_without_snapshot: Continue on the cached dataset when
                both snapshot sources fail instead of raising
            status_callback: Receives "NN% [done / total]" progress strings
        """
        self.rpc = rpc
        self.client = client
        self.cache = cache
        self.settings = settings
        self.contract_address = contract_address
        self.start_block = start_block
        self.window_size = window_size
        self.max_window_attempts = max_window_attempts
        self.window_retry_base = window_retry_base
        self.window_delay = window_delay
        self.use_cache_without_snapshot = use_cache_without_snapshot
        self.status_callback = status_callback

        self.state = ScanState.INIT
        self._run_lock = asyncio.Lock()
        self._task: asyncio.Task[MintScanResult] | None = None

    @property
    def in_progress(self) -> bool:
        """Whether a scan currently holds the run guard."""
        return self._run_lock.locked()

    def start_scan(self, **kwargs: Any) -> asyncio.Task[MintScanResult]:
        """Start a scan as a task, cancelling the scan task started before it.

        Args:
            **kwargs: Passed to ``scan``

        Returns:
            The new scan task
        """
        if self._task is not None and not self._task.done():
            logger.info("Replacing running mint scan")
            self._task.cancel()
        self._task = asyncio.create_task(self.scan(**kwargs))
        return self._task

    async def load_cache(self) -> MintDataset:
        """Read the cached dataset, tip and challenge.

        Returns:
            The cached dataset, or an empty one when absent or corrupt
        """
        rows = await self.cache.read_json(DATASET_KEY)
        tip = await self.cache.read_int(LATEST_BLOCK_KEY)
        challenge = await self.cache.read_json(CHALLENGE_KEY)
        try:
            return MintDataset.from_rows(
                rows or [],
                tip or 0,
                challenge if isinstance(challenge, str) else None,
            )
        except (ValueError, TypeError) as e:
            logger.warning("Corrupt mint cache, starting from an empty dataset: %s", e)
            return MintDataset()

    async def fetch_snapshot(self) -> MintDataset | None:
        """Fetch the reference snapshot.

        Returns:
            The snapshot dataset, or None when unavailable and the scanner
            may continue on its cache

        Raises:
            SnapshotUnavailableError: If both sources fail and the scanner
                may not continue without a snapshot
        """
        try:
            snapshot = await fetch_mint_snapshot(
                self.client,
                self.settings.data_source_url,
                self.settings.backup_data_source_url,
            )
            return snapshot.to_dataset()
        except (SnapshotUnavailableError, ValueError) as e:
            if not self.use_cache_without_snapshot:
                if isinstance(e, SnapshotUnavailableError):
                    raise
                msg = f"Mint snapshot rows are invalid: {e}"
                raise SnapshotUnavailableError(msg) from e
            logger.warning("Mint snapshot unavailable, using cached dataset: %s", e)
            return None

    async def scan(
        self,
        head_block: int | None = None,
        last_diff_start_block: int | None = None,
    ) -> MintScanResult:
        """Bring the dataset up to ``head_block - 2``.

        Args:
            head_block: Current block number, fetched with eth_blockNumber
                when not given (the contract stats super-call supplies it)
            last_diff_start_block: Start block of the current difficulty
                period, read from the cache when not given

        Returns:
            The merged dataset with scan statistics

        Raises:
            SnapshotUnavailableError: If both snapshot sources fail
        """
        async with self._run_lock:
            try:
                return await self._scan(head_block, last_diff_start_block)
            except BaseException:
                self.state = ScanState.INIT
                raise

    async def _scan(
        self, head_block: int | None, last_diff_start_block: int | None
    ) -> MintScanResult:
        self.state = ScanState.LOAD_CACHE
        local = await self.load_cache()
        if last_diff_start_block is None:
            last_diff_start_block = await self.cache.read_int(LAST_DIFF_START_KEY) or 0

        self.state = ScanState.FETCH_REFERENCE_SNAPSHOT
        snapshot = await self.fetch_snapshot()

        self.state = ScanState.PICK_NEWER_SOURCE
        dataset, source = pick_newer_source(local, snapshot)
        if source == "snapshot":
            await self.persist(dataset, last_diff_start_block)

        if head_block is None:
            head_block = await self.rpc.get_block_number(self.client)
        head = head_block - SCAN_HEAD_LAG

        self.state = ScanState.SCAN
        start = max(self.start_block + 1, dataset.latest_block + 1)
        windows = list(calculate_block_ranges(start, head, self.window_size)) if start <= head else []
        logger.info(
            "Scanning mints %d-%d in %d windows (cached tip %d, source %s)",
            start,
            head,
            len(windows),
            dataset.latest_block,
            source,
        )

        records: deque[MintRecord] = deque(dataset.records)
        previous_epoch_count = dataset.newest_epoch_count
        previous_challenge = dataset.previous_challenge
        totals = MinerTotals(last_diff_start_block=last_diff_start_block)
        skipped: list[tuple[int, int]] = []
        new_events = 0

        for index, (from_block, to_block) in enumerate(windows):
            logs = await self._fetch_window(from_block, to_block)
            if logs is None:
                skipped.append((from_block, to_block))
            for log in logs or []:
                try:
                    record, challenge = decode_mint_log(log)
                except ProtocolDecodeError as e:
                    logger.warning("Skipping undecodable mint log: %s", e)
                    continue

                if previous_epoch_count is None:
                    epochs_mined = record.epoch_count
                else:
                    epochs_mined = record.epoch_count - previous_epoch_count
                if epochs_mined < 0:
                    logger.debug(
                        "Epoch count reset at block %d (%d -> %d), counting 1",
                        record.block,
                        previous_epoch_count,
                        record.epoch_count,
                    )
                    epochs_mined = 1
                previous_epoch_count = record.epoch_count

                records.appendleft(record)
                if challenge != previous_challenge:
                    if previous_challenge is not None:
                        records.appendleft(record.as_marker())
                    previous_challenge = challenge

                totals.record(record, epochs_mined)
                new_events += 1

            if self.status_callback is not None:
                self.status_callback(format_status(index + 1, len(windows)))
            if index + 1 < len(windows):
                await sleep(self.window_delay)

        self.state = ScanState.MERGE
        merged = MintDataset(
            records=dedupe_records(list(records)),
            latest_block=head if windows else dataset.latest_block,
            previous_challenge=normalize_challenge(previous_challenge),
        )
        removed = len(records) - len(merged.records)
        if removed:
            logger.info("Removed %d duplicate mint rows", removed)

        self.state = ScanState.PERSIST
        if windows:
            await self.persist(merged, last_diff_start_block)

        self.state = ScanState.DONE
        if skipped:
            logger.warning("Mint scan skipped %d windows: %s", len(skipped), skipped)
        logger.info(
            "Mint scan done: %d new events, %d rows, tip %d",
            new_events,
            len(merged),
            merged.latest_block,
        )
        return MintScanResult(
            dataset=merged,
            head_block=head,
            source=source,
            windows_scanned=len(windows),
            skipped_windows=skipped,
            new_events=new_events,
            totals=totals,
        )

    async def _fetch_window(self, from_block: int, to_block: int) -> list[EthLog] | None:
        log_filter = LogFilter(
            from_block=from_block,
            to_block=to_block,
            address=self.contract_address,
            topics=[MINT_TOPIC],
        )
        for attempt in range(1, self.max_window_attempts + 1):
            try:
                return await self.rpc.get_logs(self.client, log_filter)
            except SCAN_ERRORS as e:
                logger.warning(
                    "Window %d-%d failed (attempt %d/%d): %s",
                    from_block,
                    to_block,
                    attempt,
                    self.max_window_attempts,
                    e,
                )
                if attempt < self.max_window_attempts:
                    await sleep(self.window_retry_base * attempt)

        logger.warning("Skipping window %d-%d after %d attempts", from_block, to_block, self.max_window_attempts)
        return None

    async def persist(self, dataset: MintDataset, last_diff_start_block: int) -> None:
        """Write the dataset, tip, challenge and difficulty start in one transaction."""
        await self.cache.write_many(
            {
                DATASET_KEY: dataset.to_rows(),
                LATEST_BLOCK_KEY: dataset.latest_block,
                CHALLENGE_KEY: dataset.previous_challenge,
                LAST_DIFF_START_KEY: last_diff_start_block,
            }
        )
        logger.debug("Persisted %d mint rows at tip %d", len(dataset), dataset.latest_block)


async def scan_mint_events(
    rpc: RPCClient,
    client: httpx.AsyncClient,
    cache: PersistentCache,
    settings: AggregatorSettings,
    head_block: int | None = None,
    last_diff_start_block: int | None = None,
    **scanner_kwargs: Any,
) -> MintDataset:
    """Run one scan and return the resulting dataset.

    Example:
        ```python
        async with create_http_client() as client:
            dataset = await scan_mint_events(rpc, client, cache, settings)
            print(len(dataset.events))
        ```
    """
    scanner = MintScanner(rpc, client, cache, settings, **scanner_kwargs)
    result = await scanner.scan(head_block, last_diff_start_block)
    return result.dataset


__all__ = [
    "CHALLENGE_KEY",
    "DATASET_KEY",
    "LAST_DIFF_START_KEY",
    "LATEST_BLOCK_KEY",
    "MintScanner",
    "decode_mint_log",
    "scan_mint_events",
]
