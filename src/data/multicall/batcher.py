"""Multicall3 batching.

Many read-only calls are packed into a single ``eth_call`` against the
Multicall3 contract. A call that reverts only marks its own result as
failed; a transport failure of the batch itself propagates to the caller.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from src.data.constants import MULTICALL_ADDRESS
from src.data.multicall.models import Call3, CallResult, DecodedResult
from src.helpers.abi import AbiFunction
from src.helpers.errors import ProtocolDecodeError
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Sequence

    import httpx

    from src.helpers.rpc import RPCClient


logger = get_logger(__name__)

AGGREGATE3 = AbiFunction.parse("aggregate3((address,bool,bytes)[])", "(bool,bytes)[]")
AGGREGATE = AbiFunction.parse("aggregate((address,bytes)[])", "uint256,bytes[]")
GET_BLOCK_NUMBER = AbiFunction.parse("getBlockNumber()", "uint256")


def build_call(
    target: str, function: AbiFunction, *args: object, allow_failure: bool = True
) -> Call3:
    """Encode one aggregate3 entry.

    Example:
        >>> call = build_call(MULTICALL_ADDRESS, GET_BLOCK_NUMBER)
        >>> call.call_data
        '0x42cbb15c'
    """
    return Call3(target=target, allow_failure=allow_failure, call_data=function.encode(*args))


class MulticallBatcher:
    """Sends batches of calls through Multicall3."""

    def __init__(
        self,
        rpc: RPCClient,
        client: httpx.AsyncClient,
        address: str = MULTICALL_ADDRESS,
    ) -> None:
        """Initialize the batcher.

        Args:
            rpc: JSON-RPC client
            client: HTTP client instance
            address: Multicall3 deployment
        """
        self.rpc = rpc
        self.client = client
        self.address = address

    async def aggregate(
        self, calls: Sequence[Call3], block_number: int | str = "latest"
    ) -> list[CallResult]:
        """Run ``calls`` through aggregate3.

        Args:
            calls: Calls in order
            block_number: Block to execute at

        Returns:
            One result per call, in call order

        Raises:
            ProtocolDecodeError: If the response is malformed
        """
        if not calls:
            return []

        data = AGGREGATE3.encode([call.as_abi_tuple() for call in calls])
        raw = await self.rpc.eth_call(self.client, self.address, data, block_number)
        (results,) = AGGREGATE3.decode(raw)
        if len(results) != len(calls):
            msg = f"aggregate3 returned {len(results)} results for {len(calls)} calls"
            raise ProtocolDecodeError(msg)

        failed = sum(1 for success, _ in results if not success)
        logger.debug("aggregate3: %d calls, %d failed", len(calls), failed)
        return [CallResult(success=success, return_data=ret) for success, ret in results]

    async def aggregate_legacy(
        self, calls: Sequence[Call3], block_number: int | str = "latest"
    ) -> tuple[int, list[bytes]]:
        """Run ``calls`` through the legacy aggregate, which reverts as a whole.

        Returns:
            Tuple of (block number, return data per call)
        """
        if not calls:
            return 0, []

        pairs = [(call.target, call.as_abi_tuple()[2]) for call in calls]
        raw = await self.rpc.eth_call(
            self.client, self.address, AGGREGATE.encode(pairs), block_number
        )
        block, return_data = AGGREGATE.decode(raw)
        return block, list(return_data)

    async def aggregate_decoded(
        self,
        calls: Sequence[tuple[Call3, AbiFunction]],
        block_number: int | str = "latest",
    ) -> list[DecodedResult]:
        """Run calls through aggregate3 and decode each result.

        Args:
            calls: Pairs of (call, function whose outputs decode the result)
            block_number: Block to execute at

        Returns:
            One decoded result per call; failures stay local to their entry
        """
        results = await self.aggregate([call for call, _ in calls], block_number)
        decoded: list[DecodedResult] = []
        for (_, function), result in zip(calls, results, strict=True):
            if not result.success:
                decoded.append(DecodedResult(success=False, error=f"{function.name} reverted"))
                continue
            try:
                decoded.append(DecodedResult(success=True, values=function.decode(result.return_data)))
            except ProtocolDecodeError as e:
                logger.warning("Cannot decode %s result: %s", function.name, e)
                decoded.append(DecodedResult(success=False, error=str(e)))
        return decoded


__all__ = [
    "AGGREGATE",
    "AGGREGATE3",
    "GET_BLOCK_NUMBER",
    "MulticallBatcher",
    "build_call",
]
