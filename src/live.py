"""B0x chain history aggregator.

Rebuilds difficulty, hashrate, reward time, price and miner statistics
directly from a Base JSON-RPC node.

Processing flow:
1. Sample six storage slots over the history range -> chart series
2. Refresh the mint dataset from the cached tip (or newer snapshot) to head
3. Aggregate the dataset per miner, all-time and since the difficulty start
4. Print rich tables, optionally export CSV, optionally keep monitoring

Usage:
    python -m src.live --days 90
    python -m src.live --skip-charts --monitor --interval 60
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
import signal
import sys

from typing import TYPE_CHECKING, NamedTuple, Self

import httpx
from rich.console import Console
from rich.table import Table

from src.analysis.charts import (
    chart_series_to_dataframe,
    compute_chart_series,
    plan_time_range,
)
from src.analysis.miners import (
    compute_miner_aggregates,
    fetch_cost_summary,
    format_hashrate,
    miner_aggregates_to_dataframe,
)
from src.data.cache.store import PersistentCache
from src.data.constants import (
    POOL_MANAGER_ADDRESS,
    POW_CONTRACT_ADDRESS,
    SLOT_BWORK_ETH_PRICE,
    SLOT_ERA,
    SLOT_LAST_DIFF_START_BLOCK,
    SLOT_MINING_TARGET,
    SLOT_TOKENS_MINTED,
    SLOT_USDC_ETH_PRICE,
)
from src.data.mints.live import DEFAULT_INTERVAL, MintMonitor
from src.data.mints.scanner import MintScanner
from src.data.multicall.batcher import MulticallBatcher
from src.data.multicall.stats import ContractStatsReader
from src.data.prices.snapshot import fetch_price_history
from src.data.series.sampler import fetch_series
from src.helpers.config import AggregatorSettings
from src.helpers.db import dispose_engines
from src.helpers.errors import AggregatorError
from src.helpers.http import create_http_client
from src.helpers.logging import get_logger, set_log_level
from src.helpers.progress import format_status, status_to_progress, track_progress
from src.helpers.rpc import RPCClient


if TYPE_CHECKING:
    from types import TracebackType

    from src.analysis.models import ChartSeries, MinerAggregate, MinerAggregates
    from src.data.mints.models import MintScanResult
    from src.data.multicall.models import ContractStats
    from src.data.prices.models import PriceHistory
    from src.data.series.models import Series
    from src.helpers.progress import StatusCallback


logger = get_logger(__name__)

CHART_ERROR_LABEL = "Error loading data"
"""Status shown in place of the charts when a refresh fails"""

CHART_PROGRESS_TOTAL = 420
"""Denominator of the chart refresh progress text"""

REFRESH_ERRORS = (AggregatorError, httpx.HTTPError)


class SeriesSpec(NamedTuple):
    """A storage slot sampled for the charts."""

    descriptor: str
    contract_address: str
    slot: int | str


CHART_SERIES = (
    SeriesSpec("miningTargets2", POW_CONTRACT_ADDRESS, SLOT_MINING_TARGET),
    SeriesSpec("eraValues2", POW_CONTRACT_ADDRESS, SLOT_ERA),
    SeriesSpec("tokensMinted2", POW_CONTRACT_ADDRESS, SLOT_TOKENS_MINTED),
    SeriesSpec("diffStartBlocks2", POW_CONTRACT_ADDRESS, SLOT_LAST_DIFF_START_BLOCK),
    SeriesSpec("BWORKETHPrice", POOL_MANAGER_ADDRESS, SLOT_BWORK_ETH_PRICE),
    SeriesSpec("USDCETHPrice", POOL_MANAGER_ADDRESS, SLOT_USDC_ETH_PRICE),
)
"""Slots sampled on every chart refresh, in fetch order"""


class AggregatorContext:
    """Shared clients of one aggregator run.

    Use as an async context manager: the HTTP client is closed and the cache
    engine disposed on exit.
    """

    def __init__(self, settings: AggregatorSettings | None = None) -> None:
        """Initialize the context.

        Args:
            settings: Runtime settings, read from the environment when omitted
        """
        self.settings = settings or AggregatorSettings()
        self.http_client = create_http_client()
        self.rpc = RPCClient(self.settings.rpc_url)
        self.cache = PersistentCache.from_url(self.settings.cache_database_url)
        self.batcher = MulticallBatcher(self.rpc, self.http_client)
        self.stats_reader = ContractStatsReader(self.batcher)

    def set_rpc_url(self, rpc_url: str) -> None:
        """Point every component at a new RPC endpoint."""
        self.settings.rpc_url = rpc_url
        self.rpc.rpc_url = self.settings.rpc_url

    async def close(self) -> None:
        """Release the HTTP client and the cache engine."""
        await self.http_client.aclose()
        await dispose_engines()

    async def __aenter__(self) -> Self:
        await self.cache.initialize()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


class Aggregator:
    """Runs chart refreshes, mint scans and miner reports on one context."""

    def __init__(self, context: AggregatorContext, console: Console | None = None) -> None:
        self.context = context
        self.console = console or Console()

        self.stats: ContractStats | None = None
        self.charts: ChartSeries | None = None
        self.chart_status = ""
        self.sampled_diff_start: int | None = None
        self.scanner = MintScanner(
            context.rpc,
            context.http_client,
            context.cache,
            context.settings,
            use_cache_without_snapshot=True,
        )

    async def load_stats(self) -> ContractStats | None:
        """Read contract stats; None when the super-call is unavailable."""
        try:
            self.stats = await self.context.stats_reader.get_stats()
        except REFRESH_ERRORS as e:
            logger.warning("Contract stats unavailable: %s", e)
            return None
        return self.stats

    async def refresh_charts(
        self,
        history_days: int | None = None,
        status_callback: StatusCallback | None = None,
    ) -> ChartSeries | None:
        """Sample every chart slot and derive the chart series.

        Args:
            history_days: Days of history, defaults to the configured value
            status_callback: Receives "NN% [done / total]" strings

        Returns:
            The chart series, or None when sampling failed
        """
        ctx = self.context
        days = history_days or ctx.settings.history_days

        def report(status: str) -> None:
            self.chart_status = status
            if status_callback is not None:
                status_callback(status)

        try:
            head = await ctx.rpc.get_block_number(ctx.http_client)
            time_range = plan_time_range(head, days)
            logger.info(
                "Sampling %d points between blocks %d and %d",
                time_range.samples,
                time_range.start_block,
                time_range.end_block,
            )

            series: dict[str, Series] = {}
            for index, slot_spec in enumerate(CHART_SERIES):
                series[slot_spec.descriptor] = await fetch_series(
                    ctx.rpc,
                    ctx.http_client,
                    ctx.cache,
                    slot_spec.descriptor,
                    slot_spec.contract_address,
                    slot_spec.slot,
                    time_range.start_block,
                    time_range.end_block,
                    time_range.samples,
                )
                done = CHART_PROGRESS_TOTAL * (index + 1) / len(CHART_SERIES)
                report(format_status(done, CHART_PROGRESS_TOTAL))
        except REFRESH_ERRORS:
            logger.exception("Chart refresh failed")
            report(CHART_ERROR_LABEL)
            return None

        self.charts = compute_chart_series(
            series["miningTargets2"],
            series["eraValues2"],
            series["tokensMinted2"],
            series["BWORKETHPrice"],
            series["USDCETHPrice"],
        )
        if series["diffStartBlocks2"].values:
            self.sampled_diff_start = series["diffStartBlocks2"].values[-1]
        return self.charts

    async def scan_mints(
        self, status_callback: StatusCallback | None = None
    ) -> MintScanResult:
        """Bring the mint dataset up to the chain head.

        The head and difficulty start come from the contract stats when they
        are available.
        """
        self.scanner.status_callback = status_callback
        head_block = None
        last_diff_start = self.sampled_diff_start
        if self.stats is not None:
            head_block = self.stats.block_number
            last_diff_start = self.stats.latest_diff_period
        return await self.scanner.scan(head_block, last_diff_start)

    async def miner_report(
        self, result: MintScanResult, *, with_costs: bool = True
    ) -> MinerAggregates:
        """Aggregate the scanned dataset per miner."""
        if self.stats is not None:
            last_diff_start = self.stats.latest_diff_period
        elif self.sampled_diff_start is not None:
            last_diff_start = self.sampled_diff_start
        else:
            last_diff_start = result.totals.last_diff_start_block
        costs = await fetch_cost_summary(self.context.http_client) if with_costs else None
        return compute_miner_aggregates(result.dataset, last_diff_start, costs=costs)

    async def price_history(self) -> PriceHistory:
        """Published price history, empty when both sources fail."""
        settings = self.context.settings
        return await fetch_price_history(
            self.context.http_client,
            settings.data_source_url,
            settings.backup_data_source_url,
        )

    def monitor(self) -> MintMonitor:
        """Mint monitor sharing this aggregator's scanner and stats reader."""
        return MintMonitor(self.scanner, self.context.stats_reader)


def render_miner_table(
    title: str, aggregates: list[MinerAggregate], network_hashrate: float = 0.0, limit: int = 25
) -> Table:
    """Rich table of the largest miners."""
    table = Table(title=title)
    table.add_column("Miner", style="cyan")
    table.add_column("Epochs", justify="right", style="yellow")
    table.add_column("Txs", justify="right")
    table.add_column("Tokens", justify="right", style="green")
    table.add_column("Share", justify="right", style="magenta")
    if network_hashrate:
        table.add_column("Est. Hashrate", justify="right")

    for miner in aggregates[:limit]:
        row = [
            miner.name,
            f"{miner.epochs_mined:,}",
            f"{miner.tx_count:,}",
            f"{miner.tokens_mined:,.0f}",
            f"{100 * miner.percent:.2f}%",
        ]
        if network_hashrate:
            row.append(format_hashrate(miner.estimated_hashrate(network_hashrate)))
        table.add_row(*row)
    return table


def render_charts_table(charts: ChartSeries) -> Table:
    """Rich table of the latest chart values."""
    table = Table(title="Network")
    table.add_column("Metric", style="cyan")
    table.add_column("Latest", justify="right", style="yellow")

    def latest(points: list, fmt: str) -> str:
        return format(points[-1].y, fmt) if points else "-"

    table.add_row("Difficulty", latest(charts.difficulty, ",.0f"))
    table.add_row("Hashrate", format_hashrate(charts.latest_hashrate))
    table.add_row("Avg reward time (min)", latest(charts.reward_time, ".2f"))
    table.add_row("Price (USD)", latest(charts.usd_price, ".6f"))
    table.add_row("Supply", latest(charts.supply, ",.0f"))
    return table


def export_csv(
    export_dir: Path,
    charts: ChartSeries | None,
    aggregates: MinerAggregates | None,
    network_hashrate: float = 0.0,
) -> list[Path]:
    """Write the chart and miner frames as CSV files.

    Returns:
        Paths written
    """
    export_dir.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    if charts is not None:
        path = export_dir / "charts.csv"
        chart_series_to_dataframe(charts).to_csv(path)
        written.append(path)
    if aggregates is not None:
        for name, rows in (("miners_all_time", aggregates.all_time), ("miners_recent", aggregates.recent)):
            path = export_dir / f"{name}.csv"
            miner_aggregates_to_dataframe(rows, network_hashrate or None).to_csv(path)
            written.append(path)
    return written


async def run(args: argparse.Namespace, console: Console | None = None) -> int:
    """Run one aggregation (and optionally the monitor) from parsed arguments.

    Returns:
        Process exit code
    """
    console = console or Console()
    settings = AggregatorSettings()
    if args.days:
        settings.history_days = args.days

    async with AggregatorContext(settings) as ctx:
        chain = await ctx.rpc.detect_chain(ctx.http_client)
        console.print(f"[bold blue]B0x chain history[/bold blue] on {chain.name}")

        aggregator = Aggregator(ctx, console)
        await aggregator.load_stats()

        charts = None
        if not args.skip_charts:
            with track_progress("Sampling storage", total=CHART_PROGRESS_TOTAL, console=console) as (
                progress,
                task,
            ):
                show = status_to_progress(progress, task)

                def on_status(status: str) -> None:
                    show(status)
                    progress.advance(task, CHART_PROGRESS_TOTAL / len(CHART_SERIES))

                charts = await aggregator.refresh_charts(settings.history_days, on_status)
            if charts is None:
                console.print(f"[red]{CHART_ERROR_LABEL}[/red]")
            else:
                console.print(render_charts_table(charts))

            prices = await aggregator.price_history()
            console.print(
                f"[cyan]Published price history: {len(prices.prices)} points, "
                f"last updated {prices.last_updated_label}[/cyan]"
            )

        aggregates = None
        if not args.skip_mints:
            with track_progress(
                "Scanning mint logs", total=100, console=console, show_time_remaining=False
            ) as (progress, task):
                result = await aggregator.scan_mints(status_to_progress(progress, task))
            console.print(
                f"[cyan]{len(result.dataset.events):,} mints up to block "
                f"{result.dataset.latest_block:,} ({result.source}, "
                f"{result.new_events} new)[/cyan]"
            )
            if result.skipped_windows:
                console.print(
                    f"[yellow]{len(result.skipped_windows)} windows skipped[/yellow]"
                )

            aggregates = await aggregator.miner_report(result)
            hashrate = charts.latest_hashrate if charts else 0.0
            console.print(render_miner_table("Miners since difficulty start", aggregates.recent, hashrate))
            console.print(render_miner_table("Miners all time", aggregates.all_time))

        if args.export_dir:
            hashrate = charts.latest_hashrate if charts else 0.0
            for path in export_csv(Path(args.export_dir), charts, aggregates, hashrate):
                console.print(f"[green]✓ Saved {path}[/green]")

        if args.monitor:
            monitor = aggregator.monitor()
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(sig, monitor.stop)
            await monitor.run_continuous(args.interval)

    return 0


async def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)
    if args.log_level:
        set_log_level(args.log_level)
    try:
        return await run(args)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt, exiting...")
        return 0
    except REFRESH_ERRORS:
        logger.exception("Fatal error")
        return 1


def build_parser() -> argparse.ArgumentParser:
    """Command-line arguments of the aggregator."""
    parser = argparse.ArgumentParser(
        description="Rebuild B0x mining and price history from a Base RPC node",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Charts and miners for the last 30 days
  python -m src.live --days 30

  # Miners only, then keep the dataset fresh every minute
  python -m src.live --skip-charts --monitor --interval 60

  # Export CSV files
  python -m src.live --export-dir out/
        """,
    )
    parser.add_argument("--days", type=int, default=None, help="Days of chart history")
    parser.add_argument("--skip-charts", action="store_true", help="Skip storage sampling")
    parser.add_argument("--skip-mints", action="store_true", help="Skip the mint log scan")
    parser.add_argument(
        "--monitor", action="store_true", help="Keep scanning for new mints until interrupted"
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=DEFAULT_INTERVAL,
        help="Seconds between monitor scans",
    )
    parser.add_argument("--export-dir", default=None, help="Directory for CSV exports")
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    return parser


def cli() -> None:
    """Command-line interface entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
