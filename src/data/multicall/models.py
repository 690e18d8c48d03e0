"""Pydantic models for batched contract reads."""

from __future__ import annotations

from datetime import datetime

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from src.helpers.parsers import strip_0x


DYNAMIC_FEE_FLAG = 0x800000
"""Pool fee value marking a hook-controlled dynamic fee"""

TICK_SPACING = 60
"""Tick spacing shared by every tracked pool"""


class Call3(BaseModel):
    """One entry of an aggregate3 request."""

    model_config = ConfigDict(frozen=True)

    target: str
    allow_failure: bool = True
    call_data: str = Field(..., description="0x-prefixed calldata")

    def as_abi_tuple(self) -> tuple[str, bool, bytes]:
        """The (address, bool, bytes) tuple aggregate3 expects."""
        return (self.target, self.allow_failure, bytes.fromhex(strip_0x(self.call_data)))


class CallResult(BaseModel):
    """Raw outcome of one aggregated call."""

    success: bool
    return_data: bytes = b""


class DecodedResult(BaseModel):
    """Decoded outcome of one aggregated call.

    ``values`` is None when the call failed or its return data could not be
    decoded; ``error`` then says why.
    """

    success: bool
    values: tuple[Any, ...] | None = None
    error: str | None = None


class PoolKey(BaseModel):
    """Identifies a v4 pool."""

    model_config = ConfigDict(frozen=True)

    currency0: str
    currency1: str
    fee: int = DYNAMIC_FEE_FLAG
    tick_spacing: int = TICK_SPACING
    hooks: str

    def as_abi_tuple(self) -> tuple[str, str, int, int, str]:
        """The (address,address,uint24,int24,address) tuple."""
        return (self.currency0, self.currency1, self.fee, self.tick_spacing, self.hooks)

    @classmethod
    def from_abi_tuple(cls, value: tuple[Any, ...] | list[Any]) -> PoolKey:
        """Build from a decoded ABI tuple."""
        currency0, currency1, fee, tick_spacing, hooks = value
        return cls(
            currency0=currency0,
            currency1=currency1,
            fee=fee,
            tick_spacing=tick_spacing,
            hooks=hooks,
        )


class InflationMined(BaseModel):
    """Return value of inflationMined()."""

    yearly_inflation: int
    epochs_per_year: int
    rewards_at_time: int
    time_per_epoch: int


class ContractStats(BaseModel):
    """Token contract state read by the stats super-call."""

    block_number: int
    mining_target: int
    mining_difficulty: int
    epoch_count: int
    inflation_mined: InflationMined
    blocks_to_readjust: int
    seconds_until_switch: int
    latest_diff_period: int = Field(
        ..., description="Block at which the current difficulty period started"
    )
    latest_diff_period2: int
    reward_era: int
    readjust_difficulty: int
    tokens_minted: int
    max_supply_for_era: int
    lp_rewards_owner: str | None = None
    hook_owner: str | None = None
    fetched_at: datetime


class PriceRatioSnapshot(BaseModel):
    """Swapper price ratio and sqrtPriceX96 read together."""

    ratio: int | None = Field(None, description="Price ratio scaled by 1e18")
    token0: str | None = None
    token1: str | None = None
    token0_decimals: int | None = None
    token1_decimals: int | None = None
    sqrt_price_x96: int | None = None
    changed: bool = False

    @property
    def ratio_float(self) -> float | None:
        """Ratio as a float multiplier."""
        return self.ratio / 10**18 if self.ratio is not None else None


class StakedPosition(BaseModel):
    """A staked liquidity position."""

    token_id: int
    amount_a: int
    amount_b: int
    liquidity: int
    time_staked_at: int
    multiplier_penalty: int
    currency0: str
    currency1: str
    pool_info: int


class UnstakedPosition(BaseModel):
    """A liquidity position held in the wallet."""

    token_id: int
    amount_a: int
    amount_b: int
    liquidity: int
    fees_owed_a: int
    fees_owed_b: int
    pool_key: PoolKey
    pool_info: int


class UserPositions(BaseModel):
    """Every position of one user."""

    user: str
    max_staked_id: int = 0
    staked: list[StakedPosition] = Field(default_factory=list)
    unstaked: list[UnstakedPosition] = Field(default_factory=list)
    failed_batches: int = 0

    @property
    def total_staked_a(self) -> int:
        """Sum of token A over staked positions."""
        return sum(p.amount_a for p in self.staked)

    @property
    def total_staked_b(self) -> int:
        """Sum of token B over staked positions."""
        return sum(p.amount_b for p in self.staked)


__all__ = [
    "DYNAMIC_FEE_FLAG",
    "TICK_SPACING",
    "Call3",
    "CallResult",
    "ContractStats",
    "DecodedResult",
    "InflationMined",
    "PoolKey",
    "PriceRatioSnapshot",
    "StakedPosition",
    "UnstakedPosition",
    "UserPositions",
]
