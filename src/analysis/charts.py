"""Chart series derived from sampled storage values.

Raw inputs are (block, value) pairs of the mining target, era counter,
tokens minted and two pool prices. Derived values:

    difficulty     = MAXIMUM_TARGET // target
    eras_per_block = (era[i] - era[i-1]) / (block[i] - block[i-1]) * 3.5
    hashrate       = difficulty * 2**22 / 600 * eras_per_block / (1 / 80)
    reward_time    = 1 / (eras_per_block * 8)

When the difficulty changes inside an era sampling window, the hashrate of
that window uses the two difficulties blended by the share of the window each
one was in force.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import pandas as pd

from src.analysis.blocktime import block_to_datetime
from src.analysis.constants import (
    ERA_SCALE,
    EXPECTED_ERAS_PER_BLOCK,
    HASHRATE_MULTIPLIER,
    IDEAL_BLOCK_TIME_SECONDS,
    MAXIMUM_TARGET,
    PRICE_SCALE,
    REVENUE_HASHRATE_UNIT,
    REWARD_TIME_ADJUSTMENT,
)
from src.analysis.models import ChartPoint, ChartSeries, TimeRange
from src.data.constants import (
    BLOCKS_PER_DAY,
    ETH_BLOCK_START,
    HEAD_SAFETY_MARGIN,
    HISTORY_START_BLOCK,
)
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from src.data.series.models import Series


logger = get_logger(__name__)

Pairs = list[tuple[int, int]]


def difficulty_from_target(target: int) -> int:
    """Exact difficulty of a mining target.

    Example:
        >>> difficulty_from_target(2**224)
        1024
    """
    return MAXIMUM_TARGET // target


def convert_values_to_chart_data(
    values: Sequence[tuple[int, int]],
    value_fn: Callable[[int], float] | None = None,
    genesis_floor: int = ETH_BLOCK_START,
) -> list[ChartPoint]:
    """Turn (block, value) pairs into chart points.

    Zero values and blocks at or below ``genesis_floor`` are skipped.

    Args:
        values: (block, raw value) pairs
        value_fn: Maps a raw value to the plotted value
        genesis_floor: Blocks at or below this are dropped

    Returns:
        Chart points in input order
    """
    points: list[ChartPoint] = []
    for block, value in values:
        if value == 0:
            continue
        if block > genesis_floor:
            points.append(ChartPoint(x=block, y=value_fn(value) if value_fn else value))
    return points


def get_eras_per_block(
    era_values: Sequence[tuple[int, int]], *, era_scale: float = ERA_SCALE
) -> list[ChartPoint]:
    """Era advance per chain block between consecutive era samples.

    Pairs sharing a block are skipped. The advance is multiplied by
    ``era_scale``.

    Example:
        >>> get_eras_per_block([(100, 0), (180, 1)])[0].y
        0.04375
    """
    points: list[ChartPoint] = []
    for (prev_block, prev_era), (block, era) in zip(era_values, era_values[1:], strict=False):
        blocks_passed = block - prev_block
        if blocks_passed == 0:
            continue
        points.append(ChartPoint(x=block, y=(era - prev_era) / blocks_passed * era_scale))
    return points


def get_hashrate_data(
    difficulty_data: Sequence[ChartPoint],
    eras_per_block_data: Sequence[ChartPoint],
    genesis_floor: int = ETH_BLOCK_START,
) -> list[ChartPoint]:
    """Network hashrate at each eras-per-block point.

    The difficulty in force at a point is the last difficulty sample before
    it. If a difficulty change falls strictly inside the window
    ``(x[i-1], x[i])``, the window's difficulty is::

        d_prev * (change - x[i-1]) / (x[i] - x[i-1])
        + d_cur * (x[i] - change) / (x[i] - x[i-1])

    Args:
        difficulty_data: Difficulty points sorted by block
        eras_per_block_data: Eras per block points sorted by block
        genesis_floor: Points at or below this block are dropped

    Returns:
        Hashrate points in H/s
    """
    index = 0
    change_block = 0
    points: list[ChartPoint] = []

    for step, point in enumerate(eras_per_block_data):
        while index < len(difficulty_data) - 1 and difficulty_data[index + 1].x < point.x:
            change_block = difficulty_data[index + 1].x
            index += 1

        difficulty = difficulty_data[index].y if difficulty_data else 0.0

        if (
            step != 0
            and index != 0
            and eras_per_block_data[step - 1].x < change_block < point.x
        ):
            window = point.x - eras_per_block_data[step - 1].x
            current_share = (point.x - change_block) / window
            previous_share = (change_block - eras_per_block_data[step - 1].x) / window
            difficulty = (
                difficulty_data[index].y * current_share
                + difficulty_data[index - 1].y * previous_share
            )

        unadjusted = difficulty * HASHRATE_MULTIPLIER / IDEAL_BLOCK_TIME_SECONDS
        hashrate = unadjusted * (point.y / EXPECTED_ERAS_PER_BLOCK)
        if point.x > genesis_floor:
            points.append(ChartPoint(x=point.x, y=hashrate))
    return points


def get_reward_time_data(
    eras_per_block_data: Sequence[ChartPoint],
    genesis_floor: int = ETH_BLOCK_START,
    *,
    adjustment: float = REWARD_TIME_ADJUSTMENT,
) -> list[ChartPoint]:
    """Average reward time in minutes; windows without era progress are skipped."""
    return [
        ChartPoint(x=p.x, y=1 / (p.y * adjustment))
        for p in eras_per_block_data
        if p.x > genesis_floor and p.y != 0
    ]


def get_target_line(reward_time_data: Sequence[ChartPoint]) -> list[ChartPoint]:
    """Target reward time at the first and last reward time block."""
    if not reward_time_data:
        return []
    target = IDEAL_BLOCK_TIME_SECONDS / 60
    return [
        ChartPoint(x=reward_time_data[0].x, y=target),
        ChartPoint(x=reward_time_data[-1].x, y=target),
    ]


def get_usd_price_data(
    eth_price_data: Sequence[ChartPoint], usdc_price_data: Sequence[ChartPoint]
) -> list[ChartPoint]:
    """USD price of the token: USDC/ETH times the token's ETH price, by index."""
    points: list[ChartPoint] = []
    for index, usdc in enumerate(usdc_price_data):
        if index < len(eth_price_data) and eth_price_data[index].y != 0:
            points.append(ChartPoint(x=usdc.x, y=usdc.y * eth_price_data[index].y))
    return points


def get_revenue_data(
    usd_price_data: Sequence[ChartPoint], difficulty_data: Sequence[ChartPoint]
) -> list[ChartPoint]:
    """Estimated USD revenue of a reference miner, aligned by index."""
    points: list[ChartPoint] = []
    for price, difficulty in zip(usd_price_data, difficulty_data, strict=False):
        if not difficulty.y:
            continue
        tokens = (
            REVENUE_HASHRATE_UNIT
            * 4_320_000
            / 2
            * 5
            / (10 * difficulty.y * HASHRATE_MULTIPLIER)
        )
        points.append(ChartPoint(x=difficulty.x, y=tokens * price.y))
    return points


def plan_time_range(latest_block: int, history_days: int) -> TimeRange:
    """Block range and sample count covering the last ``history_days`` days.

    Example:
        >>> plan_time_range(40_000_000, 30)
        TimeRange(start_block=38704000, end_block=39999992, samples=30)
    """
    start = max(latest_block - history_days * BLOCKS_PER_DAY, HISTORY_START_BLOCK)
    return TimeRange(
        start_block=start,
        end_block=latest_block - HEAD_SAFETY_MARGIN,
        samples=history_days,
    )


def _pairs(series: Series | Pairs) -> Pairs:
    return series if isinstance(series, list) else series.as_pairs()


def compute_chart_series(
    targets: Series | Pairs,
    eras: Series | Pairs,
    tokens_minted: Series | Pairs,
    token_eth_prices: Series | Pairs,
    usdc_eth_prices: Series | Pairs,
    *,
    era_scale: float = ERA_SCALE,
    reward_time_adjustment: float = REWARD_TIME_ADJUSTMENT,
) -> ChartSeries:
    """Derive every chart series from the sampled slots.

    Args:
        targets: Mining target samples
        eras: Era counter samples
        tokens_minted: Tokens minted samples (wei)
        token_eth_prices: Token/ETH pool price samples (price * 1e12)
        usdc_eth_prices: USDC/ETH pool price samples
        era_scale: Multiplier of the era advance per block
        reward_time_adjustment: Divisor of the average reward time

    Returns:
        The derived chart series

    Example:
        ```python
        charts = compute_chart_series(targets, eras, minted, token_eth, usdc_eth)
        print(format_hashrate(charts.latest_hashrate))
        ```
    """
    difficulty = convert_values_to_chart_data(
        _pairs(targets), lambda target: float(difficulty_from_target(target))
    )
    era = convert_values_to_chart_data(_pairs(eras), float)
    supply = convert_values_to_chart_data(_pairs(tokens_minted), lambda wei: wei / 10**18)
    eth_price = convert_values_to_chart_data(
        _pairs(token_eth_prices), lambda price: 1 / (price / PRICE_SCALE)
    )
    usdc_price = convert_values_to_chart_data(_pairs(usdc_eth_prices), float)
    usd_price = get_usd_price_data(eth_price, usdc_price)

    eras_per_block = get_eras_per_block(_pairs(eras), era_scale=era_scale)
    reward_time = get_reward_time_data(
        eras_per_block, adjustment=reward_time_adjustment
    )
    hashrate = get_hashrate_data(difficulty, eras_per_block)
    if hashrate and hashrate[-1].y == 0:
        hashrate.pop()

    series = ChartSeries(
        difficulty=difficulty,
        hashrate=hashrate,
        reward_time=reward_time,
        usd_price=usd_price,
        eth_price=eth_price,
        revenue=get_revenue_data(usd_price, difficulty),
        supply=supply,
        era=era,
        target_line=get_target_line(reward_time),
    )
    logger.info(
        "Derived %d difficulty, %d hashrate and %d price points",
        len(series.difficulty),
        len(series.hashrate),
        len(series.usd_price),
    )
    return series


CHART_COLUMNS = (
    "difficulty",
    "hashrate",
    "reward_time",
    "usd_price",
    "eth_price",
    "revenue",
    "supply",
    "era",
)


def chart_series_to_dataframe(series: ChartSeries) -> pd.DataFrame:
    """One row per block, one column per series, with an estimated UTC timestamp."""
    columns = {
        name: pd.Series({p.x: p.y for p in getattr(series, name)}, dtype="float64")
        for name in CHART_COLUMNS
    }
    df = pd.DataFrame(columns).sort_index()
    df.index.name = "block"
    df.insert(0, "timestamp", [block_to_datetime(int(block)) for block in df.index])
    return df


__all__ = [
    "CHART_COLUMNS",
    "chart_series_to_dataframe",
    "compute_chart_series",
    "convert_values_to_chart_data",
    "difficulty_from_target",
    "get_eras_per_block",
    "get_hashrate_data",
    "get_revenue_data",
    "get_reward_time_data",
    "get_target_line",
    "get_usd_price_data",
    "plan_time_range",
]
