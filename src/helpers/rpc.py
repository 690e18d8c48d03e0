"""EVM JSON-RPC client utilities."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import asyncio

import httpx
from pydantic import ValidationError

from src.helpers.constants import (
    CHAIN_DETECT_TIMEOUT,
    DEFAULT_TIMEOUT,
    KNOWN_CHAINS,
    MAX_RETRIES,
    RETRY_BASE_DELAY,
    RETRY_JITTER,
    UNKNOWN_NETWORK,
)
from src.helpers.errors import (
    AggregatorError,
    ProtocolDecodeError,
    classify_http_error,
    classify_rpc_error,
)
from src.helpers.http import retry_with_backoff
from src.helpers.logging import get_logger
from src.helpers.parsers import parse_hex_int
from src.helpers.rpc_models import (
    ChainInfo,
    EthBlockNumberRequest,
    EthCallRequest,
    EthChainIdRequest,
    EthGetLogsRequest,
    EthGetStorageAtRequest,
    EthLog,
    JsonRpcRequest,
    LogFilter,
)


if TYPE_CHECKING:
    from collections.abc import Iterator


logger = get_logger(__name__)


class RPCClient:
    """EVM JSON-RPC client with rate-limit aware retries."""

    def __init__(
        self,
        rpc_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        *,
        max_retries: int = MAX_RETRIES,
        base_delay: float = RETRY_BASE_DELAY,
        jitter: float = RETRY_JITTER,
    ) -> None:
        """Initialize RPC client.

        Args:
            rpc_url: JSON-RPC endpoint URL
            timeout: Default timeout for requests in seconds
            max_retries: Attempts made by ``request`` before giving up
            base_delay: Base of the exponential backoff in seconds
            jitter: Upper bound of the random jitter added to each delay

        Raises:
            ValueError: If rpc_url is empty or None
        """
        if not rpc_url:
            msg = "RPC URL cannot be empty"
            raise ValueError(msg)

        self.rpc_url = rpc_url
        self.timeout = timeout
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.jitter = jitter

    async def _post(
        self,
        client: httpx.AsyncClient,
        payload: dict[str, Any] | list[dict[str, Any]],
        timeout: float | None,
    ) -> Any:
        response = await client.post(
            self.rpc_url, json=payload, timeout=timeout or self.timeout
        )
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise classify_http_error(e) from e
        try:
            return response.json()
        except ValueError as e:
            msg = f"Invalid JSON from {self.rpc_url}: {e}"
            raise ProtocolDecodeError(msg) from e

    async def send(
        self,
        client: httpx.AsyncClient,
        request: JsonRpcRequest,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Send one typed JSON-RPC request without retrying.

        Args:
            client: HTTP client instance
            request: Request model
            timeout: Optional timeout override

        Returns:
            RPC result value

        Raises:
            RateLimitedError: On HTTP 429 or a rate-limit error payload
            NetworkTransientError: On 5xx responses
            FatalError: On any other RPC error
            ProtocolDecodeError: If the reply body is not valid JSON
            httpx.TransportError: If the connection fails
        """
        result = await self._post(client, request.model_dump(), timeout)

        if isinstance(result, dict) and "error" in result:
            raise classify_rpc_error(result["error"])

        return result.get("result") if isinstance(result, dict) else None

    async def call(
        self,
        client: httpx.AsyncClient,
        method: str,
        params: list[Any] | None = None,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Make a single JSON-RPC call without retrying.

        Args:
            client: HTTP client instance
            method: RPC method name (e.g., "eth_blockNumber")
            params: Method parameters list
            timeout: Optional timeout override

        Returns:
            RPC result value
        """
        request = JsonRpcRequest(method=method, params=params or [])
        return await self.send(client, request, timeout=timeout)

    async def request(
        self,
        client: httpx.AsyncClient,
        request: JsonRpcRequest,
        *,
        timeout: float | None = None,
    ) -> Any:
        """Send a typed request, retrying rate-limit and transient failures.

        Args:
            client: HTTP client instance
            request: Request model
            timeout: Optional timeout override

        Returns:
            RPC result value

        Raises:
            AggregatorError: The last error once retries are exhausted, or the
                first non-retryable one
        """
        retrying = retry_with_backoff(
            self.max_retries, self.base_delay, jitter=self.jitter
        )(self.send)
        return await retrying(client, request, timeout=timeout)

    async def get_block_number(self, client: httpx.AsyncClient) -> int:
        """Get the latest block number.

        Args:
            client: HTTP client instance

        Returns:
            Latest block number
        """
        result = await self.request(client, EthBlockNumberRequest())
        return parse_hex_int(result)

    async def get_chain_id(
        self, client: httpx.AsyncClient, *, timeout: float | None = None
    ) -> int:
        """Get the chain id reported by the node, in a single attempt."""
        result = await self.send(client, EthChainIdRequest(), timeout=timeout)
        return parse_hex_int(result)

    async def get_storage_at(
        self,
        client: httpx.AsyncClient,
        address: str,
        slot: str,
        block_number: int | str = "latest",
    ) -> str:
        """Read a raw 32-byte storage word.

        Args:
            client: HTTP client instance
            address: Contract address
            slot: Storage slot as a 0x hex string
            block_number: Block number or tag

        Returns:
            The hex word as returned by the node (may be "0x" on bad nodes)
        """
        request = EthGetStorageAtRequest.build(address, slot, block_number)
        result = await self.request(client, request)
        return result or "0x"

    async def get_logs(
        self, client: httpx.AsyncClient, log_filter: LogFilter
    ) -> list[EthLog]:
        """Fetch logs for a block range.

        Args:
            client: HTTP client instance
            log_filter: Range, address and topics to match

        Returns:
            Log entries in node order, removed (reorged) entries excluded
        """
        request = EthGetLogsRequest.build(log_filter)
        result = await self.request(client, request)
        try:
            logs = [EthLog.model_validate(entry) for entry in result or []]
        except ValidationError as e:
            msg = f"Malformed log entry in blocks {log_filter.from_block}-{log_filter.to_block}: {e}"
            raise ProtocolDecodeError(msg) from e
        return [log for log in logs if not log.removed]

    async def eth_call(
        self,
        client: httpx.AsyncClient,
        to: str,
        data: str,
        block_number: int | str = "latest",
        *,
        timeout: float | None = None,
    ) -> str:
        """Execute a read-only contract call.

        Args:
            client: HTTP client instance
            to: Contract address
            data: ABI encoded call data
            block_number: Block number or tag
            timeout: Optional timeout override

        Returns:
            Hex encoded return data
        """
        request = EthCallRequest.build(to, data, block_number)
        result = await self.request(client, request, timeout=timeout)
        return result or "0x"

    async def detect_chain(
        self, client: httpx.AsyncClient, timeout: float = CHAIN_DETECT_TIMEOUT
    ) -> ChainInfo:
        """Identify the network, degrading to "unknown network" after ``timeout``.

        Args:
            client: HTTP client instance
            timeout: Seconds to wait for eth_chainId

        Returns:
            ChainInfo with the chain id and display name
        """
        try:
            chain_id = await asyncio.wait_for(
                self.get_chain_id(client, timeout=timeout), timeout
            )
        except TimeoutError:
            logger.warning("Chain detection timed out after %.1fs", timeout)
            return ChainInfo(name=UNKNOWN_NETWORK)
        except (AggregatorError, httpx.HTTPError) as e:
            logger.warning("Chain detection failed: %s", e)
            return ChainInfo(name=UNKNOWN_NETWORK)

        return ChainInfo(
            chain_id=chain_id, name=KNOWN_CHAINS.get(chain_id, f"chain {chain_id}")
        )


def calculate_block_ranges(
    start_block: int, end_block: int, size: int
) -> Iterator[tuple[int, int]]:
    """Split ``[start_block, end_block]`` into inclusive windows of ``size`` blocks.

    Args:
        start_block: First block of the range
        end_block: Last block of the range (inclusive)
        size: Window size in blocks

    Yields:
        (from_block, to_block) pairs in ascending order

    Raises:
        ValueError: If size is not positive

    Example:
        >>> list(calculate_block_ranges(0, 1100, 500))
        [(0, 499), (500, 999), (1000, 1100)]
    """
    if size <= 0:
        msg = f"Window size must be positive, got {size}"
        raise ValueError(msg)

    current = start_block
    while current <= end_block:
        stop = min(current + size - 1, end_block)
        yield current, stop
        current = stop + 1


__all__ = [
    "RPCClient",
    "calculate_block_ranges",
]
