"""Parsing utilities for common data transformations."""

from datetime import UTC, datetime

from src.helpers.errors import ProtocolDecodeError


HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def parse_hex_int(hex_value: str | None, default: int = 0) -> int:
    """Parse hex string to integer.

    Args:
        hex_value: Hex-encoded string (with or without 0x) or None
        default: Default value if hex_value is None or empty

    Returns:
        int: Parsed integer value

    Raises:
        ProtocolDecodeError: If the string is not valid hex

    Example:
        >>> parse_hex_int("0xff")
        255
        >>> parse_hex_int(None, 0)
        0
        >>> parse_hex_int("0x", 7)
        7
    """
    if hex_value is None:
        return default
    digits = strip_0x(hex_value)
    if not digits:
        return default
    if not set(digits) <= HEX_DIGITS:
        msg = f"Not a hex value: {hex_value!r}"
        raise ProtocolDecodeError(msg)
    return int(digits, 16)


def strip_0x(value: str) -> str:
    """Remove a leading 0x/0X prefix.

    Example:
        >>> strip_0x("0xabc")
        'abc'
    """
    return value[2:] if value[:2] in {"0x", "0X"} else value


def to_hex_block(block_number: int | str) -> str:
    """Format a block number as a JSON-RPC block parameter.

    Args:
        block_number: Block number or a tag such as "latest"

    Returns:
        Hex quantity string or the tag unchanged

    Example:
        >>> to_hex_block(255)
        '0xff'
        >>> to_hex_block("latest")
        'latest'
    """
    return hex(block_number) if isinstance(block_number, int) else block_number


def parse_storage_word(value: str | None) -> int:
    """Parse a 32-byte storage word returned by eth_getStorageAt.

    Args:
        value: Hex word, usually 0x followed by 64 hex chars

    Returns:
        int: The word as an unsigned integer

    Raises:
        ProtocolDecodeError: If the value is empty, too long or not hex
    """
    if not value or strip_0x(value) == "":
        msg = f"Empty storage value: {value!r}"
        raise ProtocolDecodeError(msg)
    digits = strip_0x(value)
    if len(digits) > 64:
        msg = f"Storage value longer than 32 bytes: {value!r}"
        raise ProtocolDecodeError(msg)
    return parse_hex_int(digits)


def wei_to_token(wei: int | None, decimals: int = 18) -> float | None:
    """Convert a raw token amount to whole tokens.

    Args:
        wei: Raw amount, or None
        decimals: Token decimals (default 18)

    Returns:
        float | None: Amount in whole tokens, or None if input was None

    Example:
        >>> wei_to_token(1000000000000000000)
        1.0
        >>> wei_to_token(None)
    """
    return float(wei) / 10**decimals if wei is not None else None


def parse_unix_timestamp(timestamp: int | float) -> datetime:
    """Convert a unix timestamp to an aware UTC datetime.

    Example:
        >>> parse_unix_timestamp(0).year
        1970
    """
    return datetime.fromtimestamp(timestamp, tz=UTC)


def normalize_address(address: str) -> str:
    """Lower-case an address and make sure it carries a 0x prefix.

    Example:
        >>> normalize_address("ABCDEF")
        '0xabcdef'
    """
    return "0x" + strip_0x(address).lower()


__all__ = [
    "normalize_address",
    "parse_hex_int",
    "parse_storage_word",
    "parse_unix_timestamp",
    "strip_0x",
    "to_hex_block",
    "wei_to_token",
]
