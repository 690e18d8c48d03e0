"""Price history snapshot fetch."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import ValidationError

from src.data.constants import PRICE_SNAPSHOT
from src.data.mints.snapshot import snapshot_urls
from src.data.prices.models import PriceHistory, PriceSnapshot
from src.helpers.errors import SnapshotUnavailableError
from src.helpers.http import fetch_json_with_fallback
from src.helpers.logging import get_logger
from src.helpers.parsers import parse_unix_timestamp


if TYPE_CHECKING:
    import httpx


logger = get_logger(__name__)


def format_last_updated(last_updated: int | None, *, from_backup: bool = False) -> str:
    """Freshness label of a snapshot.

    Example:
        >>> format_last_updated(0)
        '1970-01-01 00:00:00 UTC'
    """
    if last_updated is None:
        label = "unknown"
    else:
        label = parse_unix_timestamp(last_updated).strftime("%Y-%m-%d %H:%M:%S UTC")
    return f"{label} [FROM BACKUP]" if from_backup else label


async def fetch_price_history(
    client: httpx.AsyncClient,
    data_source: str,
    backup_data_source: str,
) -> PriceHistory:
    """Download the price history, primary first then backup.

    Never raises for unavailable data: when both sources fail the history is
    empty and its label says so.

    Args:
        client: HTTP client instance
        data_source: Primary data source base URL
        backup_data_source: Backup data source base URL

    Returns:
        The price history
    """
    urls = snapshot_urls(data_source, backup_data_source, PRICE_SNAPSHOT)
    try:
        data, url = await fetch_json_with_fallback(client, urls)
        snapshot = PriceSnapshot.model_validate(data)
        from_backup = url != urls[0]
        history = PriceHistory(
            prices=snapshot.prices,
            timestamps=snapshot.timestamps,
            blocks=snapshot.blocks,
            last_updated=(
                parse_unix_timestamp(snapshot.last_updated)
                if snapshot.last_updated is not None
                else None
            ),
            last_updated_label=format_last_updated(
                snapshot.last_updated, from_backup=from_backup
            ),
            from_backup=from_backup,
        )
    except (SnapshotUnavailableError, ValidationError) as e:
        logger.error("Price history unavailable: %s", e)
        return PriceHistory()

    logger.info("Loaded %d price points (%s)", len(history.prices), history.last_updated_label)
    return history


__all__ = [
    "fetch_price_history",
    "format_last_updated",
]
