"""Block number to wall-clock conversion without RPC calls.

Base produces a block every two seconds, so a block's timestamp is derived
from a fixed reference block.
"""

from datetime import UTC, datetime

from src.data.constants import REFERENCE_BLOCK, REFERENCE_TIMESTAMP, SECONDS_PER_BLOCK


def block_to_timestamp(
    block_number: int,
    reference_block: int = REFERENCE_BLOCK,
    reference_timestamp: int = REFERENCE_TIMESTAMP,
    seconds_per_block: int = SECONDS_PER_BLOCK,
) -> int:
    """Estimated unix timestamp of a block.

    Example:
        >>> block_to_timestamp(34_966_010)
        1756717767
    """
    return reference_timestamp + (block_number - reference_block) * seconds_per_block


def block_to_datetime(block_number: int) -> datetime:
    """Estimated UTC datetime of a block."""
    return datetime.fromtimestamp(block_to_timestamp(block_number), tz=UTC)


def block_to_date_label(block_number: int) -> str:
    """Short date label used on chart axes, e.g. ``Sep 1``."""
    dt = block_to_datetime(block_number)
    return f"{dt:%b} {dt.day}"


def relative_time_label(
    block_number: int,
    current_block: int,
    seconds_per_block: int = SECONDS_PER_BLOCK,
) -> str:
    """Human age of a block relative to the current block.

    Args:
        block_number: Block to describe
        current_block: Current chain head
        seconds_per_block: Block time in seconds

    Returns:
        One of ``just now``, ``N mins ago``, ``N hrs ago``, ``N days ago``
        or ``N years ago`` (singular for 1)

    Example:
        >>> relative_time_label(100, 190)
        '3 mins ago'
    """
    seconds = max(0, (current_block - block_number) * seconds_per_block)
    minutes = seconds // 60
    hours = minutes // 60
    days = hours // 24
    years = days // 365

    if years >= 1:
        return "1 year ago" if years == 1 else f"{years} years ago"
    if days >= 1:
        return "1 day ago" if days == 1 else f"{days} days ago"
    if hours >= 1:
        return "1 hr ago" if hours == 1 else f"{hours} hrs ago"
    if minutes >= 1:
        return "1 min ago" if minutes == 1 else f"{minutes} mins ago"
    return "just now"


__all__ = [
    "block_to_date_label",
    "block_to_datetime",
    "block_to_timestamp",
    "relative_time_label",
]
