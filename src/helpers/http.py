"""HTTP client utilities and helpers."""

from __future__ import annotations

from asyncio import sleep
from functools import wraps
import random

from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

import httpx

from src.helpers.constants import (
    DEFAULT_TIMEOUT,
    MAX_CONNECTIONS,
    MAX_KEEPALIVE_CONNECTIONS,
    MAX_RETRIES,
    RETRY_BASE_DELAY,
    RETRY_JITTER,
    RETRY_MAX_DELAY,
)
from src.helpers.errors import (
    RETRYABLE_ERRORS,
    SnapshotUnavailableError,
    classify_http_error,
)
from src.helpers.logging import get_logger


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence


logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


def backoff_delay(
    attempt: int,
    base_delay: float = RETRY_BASE_DELAY,
    max_delay: float = RETRY_MAX_DELAY,
    jitter: float = RETRY_JITTER,
) -> float:
    """Compute the delay before retry number ``attempt`` (0-indexed).

    Args:
        attempt: Zero-based attempt index
        base_delay: Delay of the first retry in seconds
        max_delay: Cap applied before jitter is added
        jitter: Upper bound of the uniform random jitter in seconds

    Returns:
        ``min(base_delay * 2**attempt, max_delay)`` plus jitter

    Example:
        >>> 2.0 <= backoff_delay(0, base_delay=2.0, jitter=1.0) < 3.0
        True
    """
    delay = min(base_delay * (2**attempt), max_delay)
    if jitter > 0:
        delay += random.uniform(0, jitter)  # noqa: S311
    return delay


def retry_with_backoff(
    max_retries: int = MAX_RETRIES,
    base_delay: float = RETRY_BASE_DELAY,
    max_delay: float = RETRY_MAX_DELAY,
    *,
    jitter: float = RETRY_JITTER,
    log_errors: bool = True,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorator to retry async functions with exponential backoff.

    Only rate-limit and transient network failures are retried. HTTP status
    errors are classified first: 429 and 5xx are retried, anything else
    propagates immediately, as do all other exceptions.

    Args:
        max_retries: Maximum number of attempts (default: 5)
        base_delay: Initial delay in seconds (default: 2.0)
        max_delay: Maximum delay between retries (default: 60.0)
        jitter: Upper bound of random jitter added to each delay (default: 1.0)
        log_errors: Whether to log retry attempts (default: True)

    Returns:
        Decorated function that retries on retryable errors

    Example:
        ```python
        from src.helpers.http import retry_with_backoff

        @retry_with_backoff(max_retries=3, base_delay=2.0)
        async def fetch_head(rpc: RPCClient, client: httpx.AsyncClient) -> int:
            return await rpc.get_block_number(client)

        # Will retry up to 3 times with delays of 2s, 4s (+ jitter)
        ```
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Exception | None = None

            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except httpx.HTTPStatusError as e:
                    if not isinstance(classify_http_error(e), RETRYABLE_ERRORS):
                        raise
                    last_exception = e
                    if log_errors and attempt < max_retries - 1:
                        logger.warning(
                            "%s HTTP error (attempt %d/%d): %s",
                            func.__name__,
                            attempt + 1,
                            max_retries,
                            e,
                        )
                except RETRYABLE_ERRORS as e:
                    last_exception = e
                    if log_errors and attempt < max_retries - 1:
                        logger.warning(
                            "%s %s (attempt %d/%d): %s",
                            func.__name__,
                            type(e).__name__,
                            attempt + 1,
                            max_retries,
                            e,
                        )

                # Don't sleep after the last attempt
                if attempt < max_retries - 1:
                    await sleep(backoff_delay(attempt, base_delay, max_delay, jitter))

            # All retries exhausted, raise the last exception
            if last_exception:
                if log_errors:
                    logger.error(
                        "%s failed after %d attempts", func.__name__, max_retries
                    )
                raise last_exception

            msg = f"{func.__name__} failed without exception"
            raise RuntimeError(msg)

        return wrapper

    return decorator


def create_http_client(
    timeout: float = DEFAULT_TIMEOUT, **kwargs: Any
) -> httpx.AsyncClient:
    """Create a configured httpx AsyncClient.

    Args:
        timeout: Default timeout in seconds (default: DEFAULT_TIMEOUT)
        **kwargs: Additional httpx.AsyncClient kwargs

    Returns:
        Configured AsyncClient instance with pooled connections

    Example:
        ```python
        from src.helpers.http import create_http_client

        async with create_http_client(timeout=60.0) as client:
            response = await client.get("https://data.bzerox.org/mainnet/")
        ```
    """
    kwargs.setdefault(
        "limits",
        httpx.Limits(
            max_keepalive_connections=MAX_KEEPALIVE_CONNECTIONS,
            max_connections=MAX_CONNECTIONS,
        ),
    )
    kwargs.setdefault("follow_redirects", True)
    return httpx.AsyncClient(timeout=timeout, **kwargs)


async def fetch_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout: float | None = None,
    raise_for_status: bool = True,
) -> dict[str, Any] | list[Any] | None:
    """Fetch JSON data from a URL.

    Args:
        client: HTTP client instance
        url: URL to fetch
        timeout: Optional timeout override
        raise_for_status: Whether to treat non-2xx responses as errors

    Returns:
        Parsed JSON data or None on error

    Example:
        ```python
        async with httpx.AsyncClient() as client:
            data = await fetch_json(client, "https://data.bzerox.org/mainnet/mined_blocks_mainnet.json")
            if data:
                print(data["latest_block_number"])
        ```
    """
    try:
        response = await client.get(url, timeout=timeout or DEFAULT_TIMEOUT)
        if raise_for_status:
            response.raise_for_status()
        return response.json()
    except httpx.HTTPStatusError as e:
        if e.response.status_code == 404:
            logger.debug("URL not found: %s", url)
        else:
            logger.warning("HTTP error fetching %s: %s", url, e)
        return None
    except httpx.HTTPError as e:
        logger.warning("HTTP error fetching %s: %s", url, e)
        return None
    except ValueError as e:
        logger.warning("Invalid JSON from %s: %s", url, e)
        return None


async def fetch_json_with_fallback(
    client: httpx.AsyncClient,
    urls: Sequence[str],
    *,
    timeout: float | None = None,
) -> tuple[dict[str, Any] | list[Any], str]:
    """Fetch JSON from the first URL that answers, trying each in order.

    Args:
        client: HTTP client instance
        urls: Candidate URLs, primary first
        timeout: Optional timeout override

    Returns:
        Tuple of (parsed JSON, URL it was fetched from)

    Raises:
        SnapshotUnavailableError: If every URL fails
    """
    for index, url in enumerate(urls):
        data = await fetch_json(client, url, timeout=timeout)
        if data is not None:
            if index > 0:
                logger.info("Fetched %s from backup source", url)
            return data, url
        logger.warning("Source %d/%d failed: %s", index + 1, len(urls), url)

    msg = f"All data sources unavailable: {', '.join(urls)}"
    raise SnapshotUnavailableError(msg)


__all__ = [
    "backoff_delay",
    "create_http_client",
    "fetch_json",
    "fetch_json_with_fallback",
    "retry_with_backoff",
]
