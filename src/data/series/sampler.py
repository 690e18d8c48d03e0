"""Storage-slot sampler.

Samples one storage slot of a contract at evenly spaced historical blocks,
reusing cached samples that lie within a block tolerance of the plan and
fetching the rest in bounded concurrent batches.

Planning:
    stepsize = (end - start) // samples
    aligned_end = end - seconds_since_utc_midnight // seconds_per_block
    plan = {aligned_end - k * stepsize for k in range(samples)}

Aligning the end to UTC midnight makes every run of the same day produce the
same plan, so cached samples are reused instead of refetched.
"""

from __future__ import annotations

from asyncio import gather, sleep
import bisect
from datetime import UTC, datetime

from typing import TYPE_CHECKING

import httpx

from src.data.cache.store import cache_key
from src.data.constants import ETH_BLOCK_START, POW_CONTRACT_ADDRESS, SECONDS_PER_BLOCK
from src.data.series.models import Series, StorageSample
from src.data.series.policies import decode_storage_word, normalize_storage_slot
from src.helpers.errors import AggregatorError, ProtocolDecodeError
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Callable, Iterable

    from src.data.cache.store import PersistentCache
    from src.helpers.rpc import RPCClient


logger = get_logger(__name__)

STORAGE_BATCH_SIZE = 20
"""Concurrent eth_getStorageAt calls per batch"""

BATCH_DELAY = 0.2
"""Seconds slept after every batch"""

BATCH_GROUP_DELAY = 0.4
"""Extra seconds slept when more batches remain"""

SERIAL_RETRY_DELAY = 0.2
"""Seconds between serial per-block retries"""

VALUE_RETRY_DELAY = 0.6
"""First delay of the per-block retry loop, doubled on every attempt"""

MAX_VALUE_RETRIES = 5
"""Per-block retries before the block is dropped from the series"""

DEFAULT_TOLERANCE = 100
"""Blocks within which a cached sample satisfies a planned block"""

LOAD_POLL_INTERVAL = 0.5
"""Seconds between checks in wait_until_loaded"""

SAMPLE_ERRORS: tuple[type[Exception], ...] = (AggregatorError, httpx.HTTPError)
"""Errors that fail one sample without failing the series"""


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def blocks_since_utc_midnight(
    now: datetime, seconds_per_block: int = SECONDS_PER_BLOCK
) -> int:
    """Number of blocks produced since the last UTC midnight.

    Example:
        >>> blocks_since_utc_midnight(datetime(2025, 1, 1, 0, 1, tzinfo=UTC))
        30
    """
    now = now.astimezone(UTC)
    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    return int((now - midnight).total_seconds() // seconds_per_block)


def plan_sample_blocks(
    start_block: int,
    end_block: int,
    num_points: int,
    *,
    now: datetime,
    seconds_per_block: int = SECONDS_PER_BLOCK,
) -> list[int]:
    """Plan the blocks to sample, newest first.

    Args:
        start_block: First block of the range
        end_block: Last block of the range
        num_points: Number of samples requested
        now: Current time, used for the UTC midnight alignment
        seconds_per_block: Block time used for the alignment

    Returns:
        ``num_points`` blocks spaced ``(end - start) // num_points`` apart,
        counting down from the aligned end

    Raises:
        ValueError: If num_points is not positive
    """
    if num_points <= 0:
        msg = f"num_points must be positive, got {num_points}"
        raise ValueError(msg)

    stepsize = (end_block - start_block) // num_points
    aligned_end = end_block - blocks_since_utc_midnight(now, seconds_per_block)
    return [aligned_end - stepsize * i for i in range(num_points)]


def drop_cached_blocks(
    planned: Iterable[int], loaded_blocks: Iterable[int], tolerance: int
) -> list[int]:
    """Keep planned blocks that have no loaded block within ``tolerance``.

    Example:
        >>> drop_cached_blocks([100, 500], [150], tolerance=100)
        [500]
    """
    loaded = sorted(loaded_blocks)
    remaining: list[int] = []
    for block in planned:
        idx = bisect.bisect_left(loaded, block - tolerance)
        if idx < len(loaded) and loaded[idx] <= block + tolerance:
            continue
        remaining.append(block)
    return remaining


class StorageSlotSampler:
    """Samples one (contract, slot) and accumulates a Series."""

    def __init__(
        self,
        rpc: RPCClient,
        client: httpx.AsyncClient,
        cache: PersistentCache,
        contract_address: str,
        slot: int | str,
        descriptor: str,
        *,
        batch_size: int = STORAGE_BATCH_SIZE,
        genesis_floor: int = ETH_BLOCK_START,
        max_value_retries: int = MAX_VALUE_RETRIES,
        retry_delay: float = VALUE_RETRY_DELAY,
        cache_contract: str = POW_CONTRACT_ADDRESS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        """Initialize the sampler.

        Args:
            rpc: RPC client used for eth_getStorageAt
            client: HTTP client instance
            cache: Persistent cache holding previous samples
            contract_address: Contract whose storage is sampled
            slot: Slot index or 32-byte hex slot key
            descriptor: Series name used in the cache key
            batch_size: Concurrent calls per batch (at most 20)
            genesis_floor: Blocks below this are never requested
            max_value_retries: Per-block retries before dropping a block
            retry_delay: First per-block retry delay in seconds
            cache_contract: Contract whose prefix scopes the cache key
            clock: Returns the current time, for the midnight alignment

        Raises:
            ValueError: If batch_size is outside 1..20
        """
        if not 0 < batch_size <= STORAGE_BATCH_SIZE:
            msg = f"batch_size must be between 1 and {STORAGE_BATCH_SIZE}"
            raise ValueError(msg)

        self.rpc = rpc
        self.client = client
        self.cache = cache
        self.contract_address = contract_address
        self.slot = slot
        self.storage_slot = normalize_storage_slot(slot)
        self.descriptor = descriptor
        self.batch_size = batch_size
        self.genesis_floor = genesis_floor
        self.max_value_retries = max_value_retries
        self.retry_delay = retry_delay
        self.cache_contract = cache_contract
        self.clock = clock

        self.states: list[StorageSample] = []
        self.expected_state_length = 0
        self.dropped_blocks: list[int] = []
        self.rpc_calls = 0
        self.range_label: str | int | None = None
        self.sorted = False

    def cache_key(self, range_label: str | int) -> str:
        """Cache key of this series for a range label."""
        return cache_key(self.descriptor, range_label, self.cache_contract)

    async def load_from_cache(
        self, start_block: int, end_block: int, range_label: str | int
    ) -> list[StorageSample]:
        """Load cached samples in ``[start_block, end_block]`` into the series.

        Returns:
            The cached samples, sorted by block
        """
        cached = await self.cache.read_series(
            self.cache_key(range_label), start_block, end_block
        )
        results = [StorageSample(block=b, value=v) for b, v in sorted(cached.items())]
        self.states.extend(results)
        self.expected_state_length += len(results)
        return results

    async def add_values_in_range(
        self,
        start_block: int,
        end_block: int,
        num_points: int,
        tolerance: int = DEFAULT_TOLERANCE,
    ) -> list[int]:
        """Fill the series for a range, fetching only what the cache lacks.

        Args:
            start_block: First block of the range
            end_block: Last block of the range
            num_points: Number of samples, also the cache range label
            tolerance: Cached samples within this many blocks are reused

        Returns:
            The blocks that were requested from the node
        """
        self.range_label = num_points
        start_block = max(start_block, self.genesis_floor)

        cached = await self.load_from_cache(start_block, end_block, num_points)
        if cached:
            logger.info(
                "Loaded %d cached blocks for %s_%s",
                len(cached),
                self.descriptor,
                num_points,
            )

        planned = plan_sample_blocks(
            start_block, end_block, num_points, now=self.clock()
        )
        to_fetch = drop_cached_blocks(
            planned, (s.block for s in self.states), tolerance
        )
        if to_fetch:
            return await self.batch_get_storage_at(to_fetch)
        return []

    async def _fetch_once(self, block: int) -> int:
        self.rpc_calls += 1
        raw = await self.rpc.get_storage_at(
            self.client, self.contract_address, self.storage_slot, block
        )
        return decode_storage_word(self.slot, raw)

    async def batch_get_storage_at(
        self, block_numbers: list[int], batch_size: int | None = None
    ) -> list[int]:
        """Fetch samples in concurrent batches with serial fallback.

        Blocks below the genesis floor are discarded before any call. Each
        batch issues up to ``batch_size`` concurrent calls; blocks whose call
        failed or returned a bad value are retried one by one.

        Args:
            block_numbers: Blocks to sample
            batch_size: Override of the configured batch size

        Returns:
            The blocks that were requested
        """
        batch_size = min(batch_size or self.batch_size, STORAGE_BATCH_SIZE)
        blocks = [b for b in block_numbers if b >= self.genesis_floor]
        if not blocks:
            return []

        total_batches = -(-len(blocks) // batch_size)
        for i in range(0, len(blocks), batch_size):
            batch = blocks[i : i + batch_size]
            logger.info(
                "Processing batch %d/%d for %s",
                i // batch_size + 1,
                total_batches,
                self.descriptor,
            )
            self.expected_state_length += len(batch)

            results = await gather(
                *(self._fetch_once(block) for block in batch), return_exceptions=True
            )

            failed: list[int] = []
            for block, result in zip(batch, results, strict=True):
                if isinstance(result, SAMPLE_ERRORS):
                    logger.warning(
                        "Error fetching %s at block %d: %s", self.descriptor, block, result
                    )
                    failed.append(block)
                elif isinstance(result, BaseException):
                    raise result
                else:
                    self.states.append(StorageSample(block=block, value=result))

            for block in failed:
                await self._retry_block(block)
                await sleep(SERIAL_RETRY_DELAY)

            await sleep(BATCH_DELAY)
            if i + batch_size < len(blocks):
                await sleep(BATCH_GROUP_DELAY)

        return blocks

    async def _retry_block(self, block: int) -> bool:
        delay = self.retry_delay
        for attempt in range(1, self.max_value_retries + 1):
            await sleep(delay)
            try:
                value = await self._fetch_once(block)
            except ProtocolDecodeError as e:
                logger.warning(
                    "Bad value for %s at block %d (retry %d/%d): %s",
                    self.descriptor,
                    block,
                    attempt,
                    self.max_value_retries,
                    e,
                )
            except SAMPLE_ERRORS as e:
                logger.warning(
                    "Error reading %s at block %d (retry %d/%d): %s",
                    self.descriptor,
                    block,
                    attempt,
                    self.max_value_retries,
                    e,
                )
            else:
                self.states.append(StorageSample(block=block, value=value))
                return True
            delay *= 2

        logger.error(
            "Dropping block %d from %s after %d retries",
            block,
            self.descriptor,
            self.max_value_retries,
        )
        self.expected_state_length -= 1
        self.dropped_blocks.append(block)
        return False

    def all_values_loaded(self) -> bool:
        """Whether every expected sample (cached, fetched or retried) arrived."""
        logger.debug(
            "Expected: %d vs current length: %d",
            self.expected_state_length,
            len(self.states),
        )
        return self.expected_state_length == len(self.states)

    async def wait_until_loaded(self, poll_interval: float = LOAD_POLL_INTERVAL) -> None:
        """Suspend until all_values_loaded is true."""
        while not self.all_values_loaded():
            await sleep(poll_interval)

    def sort_values(self) -> None:
        """Sort samples by block, keeping the last sample seen per block."""
        by_block = {s.block: s for s in self.states}
        self.states = [by_block[b] for b in sorted(by_block)]
        self.expected_state_length = len(self.states)
        self.sorted = True

    async def save(self, range_label: str | int | None = None) -> int:
        """Merge the series into the cache.

        Returns:
            Number of samples written
        """
        label = range_label if range_label is not None else self.range_label
        if label is None or not self.states:
            return 0
        return await self.cache.write_series(
            self.cache_key(label), {s.block: s.value for s in self.states}
        )

    def to_series(self) -> Series:
        """Snapshot of the accumulated samples."""
        if not self.sorted:
            self.sort_values()
        return Series(
            descriptor=self.descriptor,
            contract_address=self.contract_address,
            slot=self.storage_slot,
            samples=list(self.states),
        )


async def fetch_series(
    rpc: RPCClient,
    client: httpx.AsyncClient,
    cache: PersistentCache,
    descriptor: str,
    contract_address: str,
    slot: int | str,
    start_block: int,
    end_block: int,
    samples: int,
    *,
    tolerance: int = DEFAULT_TOLERANCE,
    clock: Callable[[], datetime] = utc_now,
) -> Series:
    """Sample a slot over a range, persist it and return the sorted series.

    Example:
        ```python
        series = await fetch_series(
            rpc, client, cache, "miningTargets2",
            POW_CONTRACT_ADDRESS, SLOT_MINING_TARGET,
            start_block, end_block, samples=90,
        )
        ```
    """
    sampler = StorageSlotSampler(
        rpc, client, cache, contract_address, slot, descriptor, clock=clock
    )
    await sampler.add_values_in_range(start_block, end_block, samples, tolerance)
    await sampler.wait_until_loaded()
    sampler.sort_values()
    await sampler.save()
    return sampler.to_series()


__all__ = [
    "DEFAULT_TOLERANCE",
    "STORAGE_BATCH_SIZE",
    "StorageSlotSampler",
    "blocks_since_utc_midnight",
    "drop_cached_blocks",
    "fetch_series",
    "plan_sample_blocks",
    "utc_now",
]
