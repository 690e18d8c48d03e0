"""Per-miner aggregation of the mint dataset."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pandas as pd

from src.analysis.constants import HASHRATE_UNITS
from src.analysis.models import MinerAggregate, MinerAggregates, MinerCost
from src.analysis.registry import (
    KNOWN_MINERS,
    KnownMiner,
    get_miner_color,
    get_miner_name,
    get_miner_url,
)
from src.data.constants import COST_SUMMARY_URL
from src.data.mints.models import MinerCounters, MinerTotals, epochs_mined_per_record
from src.helpers.http import fetch_json
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Iterable

    import httpx

    from src.data.mints.models import MintDataset


logger = get_logger(__name__)

CONSOLIDATED = -1
"""Epoch count marking an alias merged into its canonical address"""


def format_hashrate(hashrate: float) -> str:
    """Human readable hashrate.

    Example:
        >>> format_hashrate(2_500_000_000)
        '2.50 GH/s'
        >>> format_hashrate(12)
        '12.00 H/s'
    """
    for threshold, unit in HASHRATE_UNITS:
        if hashrate >= threshold:
            return f"{hashrate / threshold:.2f} {unit}"
    return f"{hashrate:.2f} H/s"


def alias_groups(
    addresses: Iterable[str], registry: dict[str, KnownMiner] | None = None
) -> dict[str, list[str]]:
    """Group known addresses by registry name.

    Returns:
        Canonical address (the lexicographically first of its group) to the
        other addresses of the group; groups of one are omitted
    """
    registry = KNOWN_MINERS if registry is None else registry
    by_name: dict[str, list[str]] = {}
    for address in addresses:
        known = registry.get(address.lower())
        if known is not None:
            by_name.setdefault(known.name, []).append(address)

    groups: dict[str, list[str]] = {}
    for members in by_name.values():
        if len(members) > 1:
            canonical, *aliases = sorted(members)
            groups[canonical] = aliases
    return groups


def collapse_known_miners(
    counters: MinerCounters, registry: dict[str, KnownMiner] | None = None
) -> MinerCounters:
    """Merge registry aliases into one entry per pool.

    Each alias's counters are added to the canonical address, the alias is
    marked consolidated and then removed.

    Args:
        counters: Per-address counters
        registry: Known miners, defaults to KNOWN_MINERS

    Returns:
        New counters with one entry per pool
    """
    epochs = dict(counters.epochs)
    txs = dict(counters.txs)
    tokens = dict(counters.tokens)

    for canonical, aliases in alias_groups(epochs, registry).items():
        for alias in aliases:
            epochs[canonical] += epochs[alias]
            txs[canonical] = txs.get(canonical, 0) + txs.get(alias, 0)
            tokens[canonical] = tokens.get(canonical, 0.0) + tokens.get(alias, 0.0)
            epochs[alias] = CONSOLIDATED
            logger.debug("Collapsed %s into %s", alias, canonical)

    removed = {address for address, count in epochs.items() if count == CONSOLIDATED}
    return MinerCounters(
        epochs={a: v for a, v in epochs.items() if a not in removed},
        txs={a: v for a, v in txs.items() if a not in removed},
        tokens={a: v for a, v in tokens.items() if a not in removed},
    )


def collapse_costs(
    costs: dict[str, MinerCost], registry: dict[str, KnownMiner] | None = None
) -> dict[str, MinerCost]:
    """Sum the cost summaries of registry aliases into their canonical address."""
    merged = dict(costs)
    for canonical, aliases in alias_groups(costs, registry).items():
        for alias in aliases:
            a, b = merged[canonical], merged.pop(alias)
            merged[canonical] = MinerCost(
                total_value=a.total_value + b.total_value,
                total_cost=a.total_cost + b.total_cost,
                transaction_count=a.transaction_count + b.transaction_count,
            )
    return merged


def _aggregate_window(
    counters: MinerCounters,
    registry: dict[str, KnownMiner] | None,
    costs: dict[str, MinerCost] | None = None,
) -> list[MinerAggregate]:
    total = counters.total_epochs
    aggregates = [
        MinerAggregate(
            address=address,
            name=get_miner_name(address, registry),
            color=get_miner_color(address, registry),
            url=get_miner_url(address, registry),
            epochs_mined=epochs,
            tx_count=counters.txs.get(address, 0),
            tokens_mined=counters.tokens.get(address, 0.0),
            percent=epochs / total if total > 0 else 0.0,
            cost=costs.get(address) if costs else None,
        )
        for address, epochs in counters.epochs.items()
    ]
    aggregates.sort(key=lambda a: (-a.epochs_mined, a.address))
    return aggregates


def compute_miner_aggregates(
    dataset: MintDataset,
    last_diff_start_block: int,
    *,
    registry: dict[str, KnownMiner] | None = None,
    costs: dict[str, MinerCost] | None = None,
) -> MinerAggregates:
    """Aggregate the mint dataset per miner.

    Markers and mints at or before the start of mining are excluded. The
    recent window holds mints after ``last_diff_start_block``.

    Args:
        dataset: Mint dataset, newest first
        last_diff_start_block: Block the current difficulty period started
        registry: Known miners used for names, colours and alias collapsing
        costs: Optional transaction cost summary per address

    Returns:
        All-time and recent aggregates, largest miner first

    Example:
        ```python
        aggregates = compute_miner_aggregates(dataset, stats.latest_diff_period)
        for miner in aggregates.recent[:5]:
            print(miner.name, f"{miner.percent:.2%}")
        ```
    """
    totals = MinerTotals(last_diff_start_block=last_diff_start_block)
    for record, epochs in zip(
        dataset.records, epochs_mined_per_record(dataset.records), strict=True
    ):
        totals.record(record, epochs)

    all_time = collapse_known_miners(totals.all_time, registry)
    recent = collapse_known_miners(totals.recent, registry)
    merged_costs = collapse_costs(costs, registry) if costs else None

    aggregates = MinerAggregates(
        all_time=_aggregate_window(all_time, registry, merged_costs),
        recent=_aggregate_window(recent, registry),
        last_diff_start_block=last_diff_start_block,
    )
    logger.info(
        "Aggregated %d miners (%d recent) over %d epochs",
        len(aggregates.all_time),
        len(aggregates.recent),
        aggregates.total_epochs,
    )
    return aggregates


async def fetch_cost_summary(
    client: httpx.AsyncClient, url: str = COST_SUMMARY_URL
) -> dict[str, MinerCost]:
    """Fetch the per-address transaction cost summary.

    Returns:
        Cost per lowercase address; empty when the summary is unavailable
    """
    data = await fetch_json(client, url)
    if not isinstance(data, dict):
        logger.warning("Transaction cost summary unavailable")
        return {}

    costs: dict[str, MinerCost] = {}
    for address, entry in data.items():
        if not isinstance(entry, dict):
            continue
        costs[address.lower()] = MinerCost(
            total_value=entry.get("totalValue") or 0,
            total_cost=entry.get("totalCost") or 0,
            transaction_count=entry.get("transactionCount") or 0,
        )
    return costs


def miner_aggregates_to_dataframe(
    aggregates: list[MinerAggregate], network_hashrate: float | None = None
) -> pd.DataFrame:
    """One row per miner, indexed by address."""
    rows = [
        {
            "address": a.address,
            "name": a.name,
            "epochs_mined": a.epochs_mined,
            "tx_count": a.tx_count,
            "tokens_mined": a.tokens_mined,
            "percent": a.percent,
            "total_cost": a.cost.total_cost if a.cost else None,
            "estimated_hashrate": (
                a.estimated_hashrate(network_hashrate) if network_hashrate else None
            ),
        }
        for a in aggregates
    ]
    df = pd.DataFrame(
        rows,
        columns=[
            "address",
            "name",
            "epochs_mined",
            "tx_count",
            "tokens_mined",
            "percent",
            "total_cost",
            "estimated_hashrate",
        ],
    )
    return df.set_index("address")


__all__ = [
    "alias_groups",
    "collapse_costs",
    "collapse_known_miners",
    "compute_miner_aggregates",
    "fetch_cost_summary",
    "format_hashrate",
    "miner_aggregates_to_dataframe",
]
