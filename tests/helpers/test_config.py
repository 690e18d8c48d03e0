"""Tests for configuration and environment variable helpers."""

import pytest
from pydantic import ValidationError

from src.helpers.config import (
    DEFAULT_BACKUP_DATA_SOURCE_URL,
    DEFAULT_BASE_RPC_URL,
    DEFAULT_CACHE_DATABASE_URL,
    DEFAULT_DATA_SOURCE_URL,
    DEFAULT_ETH_RPC_URL,
    AggregatorSettings,
    get_cache_database_url,
    get_data_sources,
    get_eth_rpc_url,
    get_optional_env,
    get_required_env,
    get_rpc_url,
)


CONFIG_VARS = (
    "TEST_KEY",
    "BASE_RPC_URL",
    "ETH_RPC_URL",
    "DATA_SOURCE_URL",
    "BACKUP_DATA_SOURCE_URL",
    "CACHE_DATABASE_URL",
    "HISTORY_DAYS",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Remove every configuration variable for the test."""
    for key in CONFIG_VARS:
        monkeypatch.delenv(key, raising=False)


@pytest.mark.usefixtures("clean_env")
class TestEnvHelpers:
    """Tests for get_required_env and get_optional_env."""

    def test_required_returns_value(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that a set variable is returned."""
        monkeypatch.setenv("TEST_KEY", "value")

        assert get_required_env("TEST_KEY") == "value"

    @pytest.mark.parametrize("value", [None, ""])
    def test_required_raises_when_missing(
        self, monkeypatch: pytest.MonkeyPatch, value: str | None
    ) -> None:
        """Test that unset and empty variables raise ValueError."""
        if value is not None:
            monkeypatch.setenv("TEST_KEY", value)

        with pytest.raises(ValueError, match="TEST_KEY environment variable is not set"):
            get_required_env("TEST_KEY")

    def test_optional_default(self) -> None:
        """Test that the default is used when unset."""
        assert get_optional_env("TEST_KEY") is None
        assert get_optional_env("TEST_KEY", "90") == "90"


@pytest.mark.usefixtures("clean_env")
class TestUrlGetters:
    """Tests for the typed URL getters."""

    def test_defaults(self) -> None:
        """Test the public endpoints used when nothing is configured."""
        assert get_rpc_url() == DEFAULT_BASE_RPC_URL
        assert get_eth_rpc_url() == DEFAULT_ETH_RPC_URL
        assert get_data_sources() == (DEFAULT_DATA_SOURCE_URL, DEFAULT_BACKUP_DATA_SOURCE_URL)
        assert get_cache_database_url() == DEFAULT_CACHE_DATABASE_URL

    def test_environment_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that environment variables replace the defaults."""
        monkeypatch.setenv("BASE_RPC_URL", "https://base.example")
        monkeypatch.setenv("ETH_RPC_URL", "https://eth.example")
        monkeypatch.setenv("DATA_SOURCE_URL", "https://primary.example/")
        monkeypatch.setenv("BACKUP_DATA_SOURCE_URL", "https://backup.example/")

        assert get_rpc_url() == "https://base.example"
        assert get_eth_rpc_url() == "https://eth.example"
        assert get_data_sources() == ("https://primary.example/", "https://backup.example/")

    def test_parameter_takes_precedence(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that an explicit URL wins over the environment."""
        monkeypatch.setenv("BASE_RPC_URL", "https://base.example")

        assert get_rpc_url("https://explicit.example") == "https://explicit.example"
        assert get_cache_database_url("sqlite+aiosqlite:///x.db") == "sqlite+aiosqlite:///x.db"


@pytest.mark.usefixtures("clean_env")
class TestAggregatorSettings:
    """Tests for AggregatorSettings model."""

    def test_reads_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that defaults come from the environment getters."""
        monkeypatch.setenv("HISTORY_DAYS", "30")

        settings = AggregatorSettings()

        assert settings.rpc_url == DEFAULT_BASE_RPC_URL
        assert settings.data_source_url == DEFAULT_DATA_SOURCE_URL
        assert settings.history_days == 30

    def test_adds_trailing_slash_to_data_sources(self) -> None:
        """Test that data source URLs always end with a slash."""
        settings = AggregatorSettings(data_source_url="https://data.example/mainnet")

        assert settings.data_source_url == "https://data.example/mainnet/"

    def test_assignment_is_validated(self) -> None:
        """Test that runtime changes go through validation."""
        settings = AggregatorSettings()

        settings.rpc_url = "https://other.example"
        assert settings.rpc_url == "https://other.example"

        with pytest.raises(ValidationError):
            settings.rpc_url = "ws://not-http"

    def test_history_days_must_be_positive(self) -> None:
        """Test that zero days is rejected."""
        with pytest.raises(ValidationError):
            AggregatorSettings(history_days=0)
