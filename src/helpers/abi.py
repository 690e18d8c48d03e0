"""ABI encoding helpers for read-only contract calls."""

from __future__ import annotations

from typing import Any

from eth_abi import decode as abi_decode, encode as abi_encode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, to_checksum_address
from pydantic import BaseModel, ConfigDict

from src.helpers.errors import ProtocolDecodeError
from src.helpers.parsers import strip_0x


def split_types(type_list: str) -> list[str]:
    """Split a comma separated ABI type list, respecting nested tuples.

    Args:
        type_list: Types without the surrounding parentheses

    Returns:
        The top-level types

    Example:
        >>> split_types("address,(address,uint24)[],uint256")
        ['address', '(address,uint24)[]', 'uint256']
    """
    types: list[str] = []
    depth = 0
    current = ""
    for char in type_list.replace(" ", ""):
        if char == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        current += char
    if current:
        types.append(current)
    return types


def split_signature(signature: str) -> tuple[str, list[str]]:
    """Split ``name(type,...)`` into its name and input types.

    Example:
        >>> split_signature("getCurrentPoolFee((address,address,uint24,int24,address))")
        ('getCurrentPoolFee', ['(address,address,uint24,int24,address)'])
    """
    name, _, rest = signature.partition("(")
    if not name or not rest.endswith(")"):
        msg = f"Invalid function signature: {signature!r}"
        raise ValueError(msg)
    return name, split_types(rest[:-1])


def function_selector(signature: str) -> str:
    """Return the 0x-prefixed 4-byte selector of a function signature.

    Example:
        >>> function_selector("balanceOf(address)")
        '0x70a08231'
    """
    return "0x" + function_signature_to_4byte_selector(signature).hex()


def _normalize_arg(abi_type: str, value: Any) -> Any:
    if abi_type.endswith("]"):
        inner = abi_type[: abi_type.rindex("[")]
        return [_normalize_arg(inner, item) for item in value]
    if abi_type.startswith("("):
        inner_types = split_types(abi_type[1:-1])
        return tuple(
            _normalize_arg(t, v) for t, v in zip(inner_types, value, strict=True)
        )
    if abi_type == "address":
        return to_checksum_address(value)
    return value


def encode_arguments(types: list[str], args: list[Any] | tuple[Any, ...]) -> bytes:
    """ABI encode arguments, checksumming any address values."""
    normalized = [_normalize_arg(t, a) for t, a in zip(types, args, strict=True)]
    return abi_encode(types, normalized)


def encode_call(signature: str, *args: Any) -> str:
    """Encode calldata for ``signature`` with ``args``.

    Args:
        signature: Canonical signature, e.g. "getMaxStakedIDforUser(address)"
        *args: Argument values in signature order

    Returns:
        0x-prefixed calldata

    Raises:
        ValueError: If the number of args does not match the signature
    """
    _, input_types = split_signature(signature)
    if len(input_types) != len(args):
        msg = f"{signature} expects {len(input_types)} args, got {len(args)}"
        raise ValueError(msg)
    body = encode_arguments(input_types, args) if input_types else b""
    return function_selector(signature) + body.hex()


def decode_output(output_types: list[str], data: bytes | str) -> tuple[Any, ...]:
    """Decode return data.

    Args:
        output_types: ABI types of the return values
        data: Raw bytes or a hex string

    Returns:
        Decoded values

    Raises:
        ProtocolDecodeError: If the data does not match the types
    """
    try:
        raw = bytes.fromhex(strip_0x(data)) if isinstance(data, str) else data
    except ValueError as e:
        msg = f"Return data is not hex: {data!r}"
        raise ProtocolDecodeError(msg) from e
    if output_types and not raw:
        msg = f"Empty return data for {output_types}"
        raise ProtocolDecodeError(msg)
    try:
        return tuple(abi_decode(output_types, raw))
    except (DecodingError, ValueError) as e:
        msg = f"Cannot decode {output_types}: {e}"
        raise ProtocolDecodeError(msg) from e


class AbiFunction(BaseModel):
    """A contract function with its input signature and output types.

    Example:
        ```python
        fee = AbiFunction.parse(
            "getCurrentPoolFee((address,address,uint24,int24,address))",
            "uint24",
        )
        calldata = fee.encode(pool_key)
        (current_fee,) = fee.decode(return_data)
        ```
    """

    model_config = ConfigDict(frozen=True)

    signature: str
    outputs: tuple[str, ...] = ()

    @classmethod
    def parse(cls, signature: str, outputs: str = "") -> AbiFunction:
        """Build from a signature and a comma separated output type list."""
        return cls(signature=signature, outputs=tuple(split_types(outputs)))

    @property
    def name(self) -> str:
        """Function name."""
        return split_signature(self.signature)[0]

    @property
    def selector(self) -> str:
        """0x-prefixed 4-byte selector."""
        return function_selector(self.signature)

    def encode(self, *args: Any) -> str:
        """Encode calldata."""
        return encode_call(self.signature, *args)

    def decode(self, data: bytes | str) -> tuple[Any, ...]:
        """Decode return data into a tuple of values."""
        return decode_output(list(self.outputs), data)


__all__ = [
    "AbiFunction",
    "decode_output",
    "encode_arguments",
    "encode_call",
    "function_selector",
    "split_signature",
    "split_types",
]
