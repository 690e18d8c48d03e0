"""Pydantic models for derived chart series and miner aggregates."""

from pydantic import BaseModel, Field


class ChartPoint(BaseModel):
    """One (block, value) point of a chart series."""

    x: int = Field(..., description="Block number")
    y: float = Field(..., description="Derived value at that block")


class ChartSeries(BaseModel):
    """Every series derived from the sampled storage slots.

    Series are sorted by block. Series built from one sampled slot share its
    blocks; ``revenue`` is aligned by index with ``difficulty``.
    """

    difficulty: list[ChartPoint] = Field(default_factory=list)
    hashrate: list[ChartPoint] = Field(
        default_factory=list, description="Network hashrate in H/s"
    )
    reward_time: list[ChartPoint] = Field(
        default_factory=list, description="Average reward time in minutes"
    )
    usd_price: list[ChartPoint] = Field(default_factory=list)
    eth_price: list[ChartPoint] = Field(default_factory=list)
    revenue: list[ChartPoint] = Field(
        default_factory=list,
        description="Estimated USD revenue of a 31 GH/s miner over a difficulty period",
    )
    supply: list[ChartPoint] = Field(
        default_factory=list, description="Tokens minted, in whole tokens"
    )
    era: list[ChartPoint] = Field(default_factory=list)
    target_line: list[ChartPoint] = Field(
        default_factory=list,
        description="Target reward time at the first and last reward time block",
    )

    @property
    def latest_hashrate(self) -> float:
        """Most recent network hashrate, 0 when unknown."""
        return self.hashrate[-1].y if self.hashrate else 0.0

    def is_empty(self) -> bool:
        """True when no series has any point."""
        return not any(
            (self.difficulty, self.hashrate, self.reward_time, self.usd_price, self.supply)
        )


class TimeRange(BaseModel):
    """Block range and sample count of a chart refresh."""

    start_block: int
    end_block: int
    samples: int = Field(..., gt=0)


class MinerCost(BaseModel):
    """Transaction cost summary of one address."""

    total_value: float = 0.0
    total_cost: float = Field(default=0.0, description="Gas spent in wei")
    transaction_count: int = 0


class MinerAggregate(BaseModel):
    """Counters of one miner (or collapsed pool) over one window."""

    address: str = Field(..., description="Canonical address of the miner")
    name: str
    color: str
    url: str
    epochs_mined: int = 0
    tx_count: int = 0
    tokens_mined: float = 0.0
    percent: float = Field(default=0.0, description="Share of epochs mined, 0..1")
    cost: MinerCost | None = None

    def estimated_hashrate(self, network_hashrate: float) -> float:
        """Hashrate implied by this miner's share of the network."""
        return self.percent * network_hashrate


class MinerAggregates(BaseModel):
    """Miner aggregates of the whole history and of the current difficulty period.

    Entries are sorted by epochs mined, largest first.
    """

    all_time: list[MinerAggregate] = Field(default_factory=list)
    recent: list[MinerAggregate] = Field(default_factory=list)
    last_diff_start_block: int = 0

    @property
    def total_epochs(self) -> int:
        """Epochs mined over all time."""
        return sum(a.epochs_mined for a in self.all_time)

    @property
    def total_recent_epochs(self) -> int:
        """Epochs mined since the last difficulty start."""
        return sum(a.epochs_mined for a in self.recent)


__all__ = [
    "ChartPoint",
    "ChartSeries",
    "MinerAggregate",
    "MinerAggregates",
    "MinerCost",
    "TimeRange",
]
