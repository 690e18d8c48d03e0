"""Decoding policies for raw storage words."""

from enum import StrEnum

from src.data.constants import SLOT_Q96_PRICE
from src.helpers.errors import ProtocolDecodeError
from src.helpers.parsers import parse_storage_word, strip_0x


Q96 = 2**96
"""Fixed-point scale of sqrtPriceX96"""

PRICE_SCALE = 10**12
"""Scale applied to prices decoded with SQRT_PRICE_E12"""

SQRT_PRICE_MASK = (1 << 160) - 1
"""sqrtPriceX96 occupies the low 160 bits of a v4 pool slot0 word"""

FULL_SLOT_HEX_LENGTH = 10
"""0x strings longer than this are full 32-byte slot keys, used verbatim"""


class SlotPolicy(StrEnum):
    """How a storage word is turned into a sample value."""

    INTEGER = "integer"
    SQRT_PRICE_E12 = "sqrt_price_e12"
    SQRT_PRICE_Q96 = "sqrt_price_q96"


def normalize_storage_slot(slot: int | str) -> str:
    """Normalize a slot identifier to the hex string sent to eth_getStorageAt.

    Args:
        slot: Slot index (int or decimal string) or 0x hex string

    Returns:
        0x-prefixed hex slot

    Example:
        >>> normalize_storage_slot(12)
        '0xc'
        >>> normalize_storage_slot("0x04")
        '0x4'
    """
    if isinstance(slot, int):
        return hex(slot)
    if slot[:2] in {"0x", "0X"}:
        if len(slot) > FULL_SLOT_HEX_LENGTH:
            return slot
        return hex(int(strip_0x(slot) or "0", 16))
    return hex(int(slot))


def select_policy(slot: int | str) -> SlotPolicy:
    """Pick the decoding policy for a slot.

    Full 32-byte hex slot keys address pool state and hold a sqrtPriceX96;
    one of them is decoded as a Q96 integer price, the others as price * 1e12.
    Numeric slots hold plain integers.

    Example:
        >>> select_policy(4)
        <SlotPolicy.INTEGER: 'integer'>
    """
    if isinstance(slot, str) and slot[:2] in {"0x", "0X"} and len(slot) > FULL_SLOT_HEX_LENGTH:
        if slot.lower() == SLOT_Q96_PRICE:
            return SlotPolicy.SQRT_PRICE_Q96
        return SlotPolicy.SQRT_PRICE_E12
    return SlotPolicy.INTEGER


def decode_word(policy: SlotPolicy, word: int) -> int:
    """Apply a policy to a storage word already parsed as an integer.

    Args:
        policy: Decoding policy
        word: The 256-bit storage word

    Returns:
        Decoded non-negative integer, exact (no floating point)
    """
    if policy is SlotPolicy.INTEGER:
        return word

    sqrt_price_x96 = word & SQRT_PRICE_MASK
    if policy is SlotPolicy.SQRT_PRICE_Q96:
        return (sqrt_price_x96 * sqrt_price_x96) // (Q96 * Q96)
    return (sqrt_price_x96 * sqrt_price_x96 * PRICE_SCALE) // (Q96 * Q96)


def decode_storage_word(slot: int | str, raw: str | None) -> int:
    """Decode a raw eth_getStorageAt result for ``slot``.

    Args:
        slot: Slot identifier, drives policy selection
        raw: Hex word returned by the node

    Returns:
        Decoded value

    Raises:
        ProtocolDecodeError: If the word is empty ("0x"), too long or not hex
    """
    if raw is None or strip_0x(raw) == "":
        msg = f"Empty storage value for slot {slot}"
        raise ProtocolDecodeError(msg)
    return decode_word(select_policy(slot), parse_storage_word(raw))


__all__ = [
    "PRICE_SCALE",
    "Q96",
    "SlotPolicy",
    "decode_storage_word",
    "decode_word",
    "normalize_storage_slot",
    "select_policy",
]
