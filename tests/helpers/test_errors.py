"""Tests for error kinds and their classification."""

import httpx
import pytest

from src.helpers.errors import (
    FatalError,
    NetworkTransientError,
    RateLimitedError,
    classify_http_error,
    classify_rpc_error,
    is_rate_limit_error,
)


def _status_error(status: int) -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://rpc.example")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError("error", request=request, response=response)


class TestIsRateLimitError:
    """Tests for is_rate_limit_error function."""

    @pytest.mark.parametrize(
        "error",
        [
            {"code": -32005, "message": "limit exceeded"},
            {"code": -32000, "message": "Too Many Requests"},
            429,
            -32005,
            "rate limit reached",
            RateLimitedError("slow down"),
        ],
    )
    def test_rate_limit_signals(self, error: object) -> None:
        """Test every recognised rate-limit signal."""
        assert is_rate_limit_error(error)

    @pytest.mark.parametrize(
        "error",
        [None, "execution reverted", {"code": 3, "message": "reverted"}, 500],
    )
    def test_not_rate_limit(self, error: object) -> None:
        """Test that other errors are not rate limits."""
        assert not is_rate_limit_error(error)

    def test_http_status(self) -> None:
        """Test HTTP status errors by code."""
        assert is_rate_limit_error(_status_error(429))
        assert not is_rate_limit_error(_status_error(500))


class TestClassifyRpcError:
    """Tests for classify_rpc_error function."""

    def test_rate_limited(self) -> None:
        """Test that rate-limit payloads become RateLimitedError."""
        assert isinstance(classify_rpc_error({"code": -32005}), RateLimitedError)

    def test_fatal_keeps_code(self) -> None:
        """Test that other payloads become FatalError with the code."""
        error = classify_rpc_error({"code": -32602, "message": "invalid params"})

        assert isinstance(error, FatalError)
        assert error.code == -32602


class TestClassifyHttpError:
    """Tests for classify_http_error function."""

    @pytest.mark.parametrize(
        ("status", "kind"),
        [
            (429, RateLimitedError),
            (500, NetworkTransientError),
            (503, NetworkTransientError),
            (400, FatalError),
            (404, FatalError),
        ],
    )
    def test_status_mapping(self, status: int, kind: type) -> None:
        """Test the status to error kind mapping."""
        assert isinstance(classify_http_error(_status_error(status)), kind)

    def test_transport_error(self) -> None:
        """Test that connection failures are transient."""
        error = classify_http_error(httpx.ConnectError("refused"))

        assert isinstance(error, NetworkTransientError)
        assert "ConnectError" in str(error)
