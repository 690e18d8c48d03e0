"""Token contract stats read with a single super-call."""

from __future__ import annotations

import time

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx

from src.data.constants import (
    HOOK_ADDRESS,
    LP_REWARDS_STAKING_ADDRESS,
    MULTICALL_ADDRESS,
    POW_CONTRACT_ADDRESS,
)
from src.data.multicall.batcher import GET_BLOCK_NUMBER, build_call
from src.data.multicall.models import ContractStats, InflationMined
from src.helpers.abi import AbiFunction
from src.helpers.errors import AggregatorError
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Callable

    from src.data.multicall.batcher import MulticallBatcher
    from src.data.multicall.models import Call3


logger = get_logger(__name__)

STATS_COOLDOWN = 180.0
"""Seconds a stats read is reused before the contract is queried again"""

STATS_FUNCTIONS: dict[str, AbiFunction] = {
    "mining_target": AbiFunction.parse("miningTarget()", "uint256"),
    "mining_difficulty": AbiFunction.parse("getMiningDifficulty()", "uint256"),
    "epoch_count": AbiFunction.parse("epochCount()", "uint256"),
    "inflation_mined": AbiFunction.parse(
        "inflationMined()", "uint256,uint256,uint256,uint256"
    ),
    "blocks_to_readjust": AbiFunction.parse("blocksToReadjust()", "uint256"),
    "seconds_until_switch": AbiFunction.parse(
        "seconds_Until_adjustmentSwitch()", "uint256"
    ),
    "latest_diff_period": AbiFunction.parse("latestDifficultyPeriodStarted()", "uint256"),
    "latest_diff_period2": AbiFunction.parse("latestDifficultyPeriodStarted2()", "uint256"),
    "reward_era": AbiFunction.parse("rewardEra()", "uint256"),
    "readjust_difficulty": AbiFunction.parse("readjustsToWhatDifficulty()", "uint256"),
    "tokens_minted": AbiFunction.parse("tokensMinted()", "uint256"),
    "max_supply_for_era": AbiFunction.parse("maxSupplyForEra()", "uint256"),
}
"""Token contract getters, in call order"""

OWNER = AbiFunction.parse("owner()", "address")

STATS_ERRORS = (AggregatorError, httpx.HTTPError)


def _stats_from_values(
    values: dict[str, tuple[object, ...]],
    block_number: int,
    owners: tuple[str | None, str | None] = (None, None),
) -> ContractStats:
    yearly, per_year, rewards, time_per_epoch = values["inflation_mined"]
    fields = {
        name: decoded[0]
        for name, decoded in values.items()
        if name != "inflation_mined"
    }
    return ContractStats(
        block_number=block_number,
        inflation_mined=InflationMined(
            yearly_inflation=yearly,
            epochs_per_year=per_year,
            rewards_at_time=rewards,
            time_per_epoch=time_per_epoch,
        ),
        lp_rewards_owner=owners[0],
        hook_owner=owners[1],
        fetched_at=datetime.now(UTC),
        **fields,
    )


class ContractStatsReader:
    """Reads and caches token contract stats.

    One aggregate3 call returns every getter, both owner addresses and the
    current block number. If any required getter fails, the reader retries
    once with the legacy aggregate. Stats are reused for 180 s.
    """

    def __init__(
        self,
        batcher: MulticallBatcher,
        *,
        contract_address: str = POW_CONTRACT_ADDRESS,
        cooldown: float = STATS_COOLDOWN,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the reader.

        Args:
            batcher: Multicall batcher
            contract_address: Token contract
            cooldown: Seconds cached stats stay fresh
            clock: Monotonic time source
        """
        self.batcher = batcher
        self.contract_address = contract_address
        self.cooldown = cooldown
        self.clock = clock

        self.cached: ContractStats | None = None
        self._fetched_at: float | None = None

    def cooldown_remaining(self) -> int:
        """Whole seconds until the next read hits the contract."""
        if self._fetched_at is None:
            return 0
        remaining = self.cooldown - (self.clock() - self._fetched_at)
        return max(0, int(remaining + 0.999))

    def _stats_calls(self) -> list[Call3]:
        return [
            build_call(self.contract_address, function, allow_failure=False)
            for function in STATS_FUNCTIONS.values()
        ]

    async def get_stats(self, *, force: bool = False) -> ContractStats:
        """Return contract stats, from cache while the cooldown lasts.

        Args:
            force: Query the contract even within the cooldown

        Returns:
            Current stats

        Raises:
            AggregatorError: If the read fails and nothing is cached
            httpx.HTTPError: If the transport fails and nothing is cached
        """
        if not force and self.cached is not None and self.cooldown_remaining() > 0:
            logger.debug(
                "Using cached contract stats (updates again in %ds)",
                self.cooldown_remaining(),
            )
            return self.cached

        try:
            stats = await self._fetch()
        except STATS_ERRORS as e:
            if self.cached is not None:
                logger.warning("Contract stats read failed, using cached stats: %s", e)
                return self.cached
            raise

        self.cached = stats
        self._fetched_at = self.clock()
        logger.info(
            "Contract stats at block %d: era %d, epoch %d",
            stats.block_number,
            stats.reward_era,
            stats.epoch_count,
        )
        return stats

    async def _fetch(self) -> ContractStats:
        calls = [
            *zip(self._stats_calls(), STATS_FUNCTIONS.values(), strict=True),
            (build_call(MULTICALL_ADDRESS, GET_BLOCK_NUMBER, allow_failure=False), GET_BLOCK_NUMBER),
            (build_call(LP_REWARDS_STAKING_ADDRESS, OWNER), OWNER),
            (build_call(HOOK_ADDRESS, OWNER), OWNER),
        ]
        try:
            results = await self.batcher.aggregate_decoded(calls)
        except AggregatorError as e:
            logger.info("aggregate3 failed, trying legacy aggregate: %s", e)
            return await self._fetch_legacy()

        required = results[: len(STATS_FUNCTIONS) + 1]
        if not all(result.success for result in required):
            logger.info("A stats call failed in aggregate3, trying legacy aggregate")
            return await self._fetch_legacy()

        values = {
            name: result.values or ()
            for name, result in zip(STATS_FUNCTIONS, results, strict=False)
        }
        (block_number,) = results[len(STATS_FUNCTIONS)].values or (0,)
        owners = tuple(
            result.values[0] if result.success and result.values else None
            for result in results[len(STATS_FUNCTIONS) + 1 :]
        )
        return _stats_from_values(values, block_number, (owners[0], owners[1]))

    async def _fetch_legacy(self) -> ContractStats:
        block_number, return_data = await self.batcher.aggregate_legacy(self._stats_calls())
        values = {
            name: function.decode(data)
            for (name, function), data in zip(STATS_FUNCTIONS.items(), return_data, strict=True)
        }
        return _stats_from_values(values, block_number)


__all__ = [
    "STATS_COOLDOWN",
    "STATS_FUNCTIONS",
    "ContractStatsReader",
]
