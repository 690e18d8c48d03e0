"""Published mint dataset snapshots."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import ValidationError

from src.data.constants import MINED_BLOCKS_SNAPSHOT
from src.data.mints.models import MintDataset, MintSnapshot
from src.helpers.errors import SnapshotUnavailableError
from src.helpers.http import fetch_json_with_fallback
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    import httpx


logger = get_logger(__name__)


def snapshot_urls(data_source: str, backup_data_source: str, file_name: str) -> list[str]:
    """Primary and backup URLs of a snapshot file.

    Example:
        >>> snapshot_urls("https://a/", "https://b", "x.json")
        ['https://a/x.json', 'https://b/x.json']
    """
    return [f"{base.rstrip('/')}/{file_name}" for base in (data_source, backup_data_source)]


async def fetch_mint_snapshot(
    client: httpx.AsyncClient,
    data_source: str,
    backup_data_source: str,
) -> MintSnapshot:
    """Download the mint dataset snapshot, primary first then backup.

    Args:
        client: HTTP client instance
        data_source: Primary data source base URL
        backup_data_source: Backup data source base URL

    Returns:
        The parsed snapshot

    Raises:
        SnapshotUnavailableError: If both sources fail or return an invalid document
    """
    urls = snapshot_urls(data_source, backup_data_source, MINED_BLOCKS_SNAPSHOT)
    data, url = await fetch_json_with_fallback(client, urls)
    try:
        snapshot = MintSnapshot.model_validate(data)
    except ValidationError as e:
        msg = f"Invalid mint snapshot from {url}: {e}"
        raise SnapshotUnavailableError(msg) from e

    logger.info(
        "Mint snapshot from %s: %d rows, tip %d",
        url,
        len(snapshot.mined_blocks),
        snapshot.latest_block_number,
    )
    return snapshot


def pick_newer_source(
    local: MintDataset, snapshot: MintDataset | None
) -> tuple[MintDataset, str]:
    """Choose between the cached dataset and a snapshot by tip block.

    The snapshot wins only when its tip is strictly greater than the cached
    tip. A snapshot without a challenge keeps the cached one.

    Returns:
        Tuple of (dataset, "snapshot" or "cache")
    """
    if snapshot is None or snapshot.latest_block <= local.latest_block:
        return local, "cache"

    if snapshot.previous_challenge is None and local.previous_challenge is not None:
        snapshot = snapshot.model_copy(
            update={"previous_challenge": local.previous_challenge}
        )
    logger.info(
        "Snapshot tip %d is newer than cached tip %d, adopting snapshot",
        snapshot.latest_block,
        local.latest_block,
    )
    return snapshot, "snapshot"


__all__ = [
    "fetch_mint_snapshot",
    "pick_newer_source",
    "snapshot_urls",
]
