"""Configuration management and environment variable utilities."""

import os

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dotenv import load_dotenv


# Load environment variables from .env file
load_dotenv()

DEFAULT_BASE_RPC_URL = "https://mainnet.base.org"
"""Public Base mainnet endpoint used when BASE_RPC_URL is unset"""

DEFAULT_ETH_RPC_URL = "https://eth.llamarpc.com"
"""Public Ethereum mainnet endpoint used when ETH_RPC_URL is unset"""

DEFAULT_DATA_SOURCE_URL = "https://data.bzerox.org/mainnet/"
"""Primary snapshot host"""

DEFAULT_BACKUP_DATA_SOURCE_URL = "https://data.github.bzerox.org/"
"""Backup snapshot host"""

DEFAULT_CACHE_DATABASE_URL = "sqlite+aiosqlite:///b0x_cache.db"
"""SQLAlchemy URL of the persistent cache"""


def get_required_env(key: str) -> str:
    """Get a required environment variable.

    Args:
        key: Environment variable name

    Returns:
        Environment variable value

    Raises:
        ValueError: If the environment variable is not set

    Example:
        ```python
        from src.helpers.config import get_required_env

        rpc_url = get_required_env("BASE_RPC_URL")
        ```
    """
    value = os.getenv(key)
    if not value:
        msg = f"{key} environment variable is not set"
        raise ValueError(msg)
    return value


def get_optional_env(key: str, default: str | None = None) -> str | None:
    """Get an optional environment variable with a default value.

    Args:
        key: Environment variable name
        default: Default value if not set

    Returns:
        Environment variable value or default

    Example:
        ```python
        from src.helpers.config import get_optional_env

        history_days = int(get_optional_env("HISTORY_DAYS", "90"))
        ```
    """
    return os.getenv(key, default)


def get_rpc_url(rpc_url: str | None = None) -> str:
    """Get the Base RPC URL from parameter or environment.

    Args:
        rpc_url: Optional RPC URL to use directly

    Returns:
        Base RPC URL, the public endpoint when nothing is configured
    """
    if rpc_url:
        return rpc_url
    return os.getenv("BASE_RPC_URL") or DEFAULT_BASE_RPC_URL


def get_eth_rpc_url(rpc_url: str | None = None) -> str:
    """Get the Ethereum fallback RPC URL from parameter or environment.

    Args:
        rpc_url: Optional RPC URL to use directly

    Returns:
        Ethereum RPC URL, the public endpoint when nothing is configured

    Example:
        ```python
        from src.helpers.config import get_eth_rpc_url

        # Get from environment
        rpc_url = get_eth_rpc_url()

        # Or provide explicitly
        rpc_url = get_eth_rpc_url("https://eth.llamarpc.com")
        ```
    """
    if rpc_url:
        return rpc_url
    return os.getenv("ETH_RPC_URL") or DEFAULT_ETH_RPC_URL


def get_data_sources() -> tuple[str, str]:
    """Get the primary and backup snapshot hosts.

    Returns:
        Tuple of (primary, backup) base URLs
    """
    return (
        os.getenv("DATA_SOURCE_URL") or DEFAULT_DATA_SOURCE_URL,
        os.getenv("BACKUP_DATA_SOURCE_URL") or DEFAULT_BACKUP_DATA_SOURCE_URL,
    )


def get_cache_database_url(database_url: str | None = None) -> str:
    """Get the SQLAlchemy URL of the persistent cache.

    Args:
        database_url: Optional URL to use directly

    Returns:
        Cache database URL
    """
    if database_url:
        return database_url
    return os.getenv("CACHE_DATABASE_URL") or DEFAULT_CACHE_DATABASE_URL


class AggregatorSettings(BaseModel):
    """Runtime settings shared by every component.

    Instances are mutable: assigning a new RPC URL or data source is
    validated and picked up by the next call that reads it.
    """

    model_config = ConfigDict(validate_assignment=True)

    rpc_url: str = Field(default_factory=get_rpc_url)
    eth_rpc_url: str = Field(default_factory=get_eth_rpc_url)
    data_source_url: str = Field(default_factory=lambda: get_data_sources()[0])
    backup_data_source_url: str = Field(default_factory=lambda: get_data_sources()[1])
    cache_database_url: str = Field(default_factory=get_cache_database_url)
    history_days: int = Field(
        default_factory=lambda: int(get_optional_env("HISTORY_DAYS", "90") or "90"),
        gt=0,
    )

    @field_validator("rpc_url", "eth_rpc_url", "data_source_url", "backup_data_source_url")
    @classmethod
    def _require_http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            msg = f"Expected an http(s) URL, got {value!r}"
            raise ValueError(msg)
        return value

    @field_validator("data_source_url", "backup_data_source_url")
    @classmethod
    def _ensure_trailing_slash(cls, value: str) -> str:
        return value if value.endswith("/") else f"{value}/"


__all__ = [
    "DEFAULT_BACKUP_DATA_SOURCE_URL",
    "DEFAULT_BASE_RPC_URL",
    "DEFAULT_CACHE_DATABASE_URL",
    "DEFAULT_DATA_SOURCE_URL",
    "DEFAULT_ETH_RPC_URL",
    "AggregatorSettings",
    "get_cache_database_url",
    "get_data_sources",
    "get_eth_rpc_url",
    "get_optional_env",
    "get_required_env",
    "get_rpc_url",
]
