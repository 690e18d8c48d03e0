"""Error kinds raised by the RPC transport, cache and snapshot layers."""

from typing import Any

import httpx


RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "429")
"""Lower-cased substrings that identify a rate-limit response payload"""

RATE_LIMIT_CODES = frozenset({429, -32005})
"""JSON-RPC / HTTP codes that identify a rate-limit response"""

TRANSIENT_HTTP_STATUSES = frozenset({500, 502, 503, 504})
"""HTTP statuses retried as transient network failures"""


class AggregatorError(Exception):
    """Base class for every error raised by the aggregator."""


class RateLimitedError(AggregatorError):
    """The node or data source asked us to slow down."""


class NetworkTransientError(AggregatorError):
    """A connection, timeout or 5xx failure that may succeed on retry."""


class ProtocolDecodeError(AggregatorError):
    """A response could not be decoded (non-hex, wrong length, bad ABI)."""


class CacheCorruptError(AggregatorError):
    """A persisted cache entry could not be parsed."""


class SnapshotUnavailableError(AggregatorError):
    """Every configured snapshot source failed."""


class FatalError(AggregatorError):
    """A non-retryable RPC error (invalid params, reverted call, ...)."""

    def __init__(self, message: str, code: int | None = None) -> None:
        """Initialize the error.

        Args:
            message: Human readable error message
            code: JSON-RPC error code when available
        """
        super().__init__(message)
        self.code = code


RETRYABLE_ERRORS: tuple[type[Exception], ...] = (
    RateLimitedError,
    NetworkTransientError,
    httpx.TransportError,
)
"""Exceptions the transport retries before re-raising"""


def is_rate_limit_error(error: Any) -> bool:
    """Check whether an error, error payload or message is a rate-limit signal.

    Args:
        error: An exception, a JSON-RPC error object, a message or a code

    Returns:
        True if the error carries a rate-limit marker, a -32005 code or a 429

    Example:
        >>> is_rate_limit_error({"code": -32005, "message": "limit exceeded"})
        True
        >>> is_rate_limit_error("execution reverted")
        False
    """
    if error is None:
        return False
    if isinstance(error, RateLimitedError):
        return True
    if isinstance(error, int):
        return error in RATE_LIMIT_CODES
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code == 429
    if isinstance(error, dict):
        if error.get("code") in RATE_LIMIT_CODES:
            return True
        message = str(error.get("message", ""))
    else:
        code = getattr(error, "code", None)
        if isinstance(code, int) and code in RATE_LIMIT_CODES:
            return True
        message = str(error)

    lowered = message.lower()
    return any(marker in lowered for marker in RATE_LIMIT_MARKERS)


def classify_rpc_error(error: dict[str, Any] | str) -> AggregatorError:
    """Map a JSON-RPC error object to an error kind.

    Args:
        error: The ``error`` member of a JSON-RPC response

    Returns:
        A RateLimitedError for rate-limit signals, otherwise a FatalError
    """
    message = f"RPC error: {error}"
    if is_rate_limit_error(error):
        return RateLimitedError(message)
    code = error.get("code") if isinstance(error, dict) else None
    return FatalError(message, code=code)


def classify_http_error(exc: httpx.HTTPError) -> AggregatorError:
    """Map an httpx exception to an error kind.

    Args:
        exc: The exception raised by httpx

    Returns:
        RateLimitedError for 429, NetworkTransientError for transport failures
        and 5xx responses, FatalError for everything else
    """
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return RateLimitedError(f"HTTP 429 from {exc.request.url}")
        if status in TRANSIENT_HTTP_STATUSES:
            return NetworkTransientError(f"HTTP {status} from {exc.request.url}")
        return FatalError(f"HTTP {status} from {exc.request.url}", code=status)
    return NetworkTransientError(f"{type(exc).__name__}: {exc}")


__all__ = [
    "RATE_LIMIT_CODES",
    "RATE_LIMIT_MARKERS",
    "RETRYABLE_ERRORS",
    "AggregatorError",
    "CacheCorruptError",
    "FatalError",
    "NetworkTransientError",
    "ProtocolDecodeError",
    "RateLimitedError",
    "SnapshotUnavailableError",
    "classify_http_error",
    "classify_rpc_error",
    "is_rate_limit_error",
]
