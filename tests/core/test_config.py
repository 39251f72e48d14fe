"""Tests for core configuration classes."""

from __future__ import annotations

import pytest

from syncbridge.core.config import BackendConfig, EngineConfig
from syncbridge.sync.dedup import EvictionPolicy


class TestBackendConfig:
    """Tests for BackendConfig class."""

    def test_init_basic(self) -> None:
        """Should initialize with required fields."""
        config = BackendConfig(server_url="https://example.com", token="test-token")
        assert config.server_url == "https://example.com"
        assert config.token == "test-token"
        assert config.timeout == 30.0
        assert config.verify_ssl is True

    def test_url_trailing_slash_removed(self) -> None:
        """Should strip trailing slash from server URL."""
        config = BackendConfig(server_url="https://example.com/", token="test-token")
        assert config.server_url == "https://example.com"

    def test_ws_url_http(self) -> None:
        config = BackendConfig(server_url="http://localhost:3000", device_id="pixel")
        assert config.ws_url == "ws://localhost:3000/ws/devices/pixel"
        assert not config.is_secure

    def test_ws_url_https(self) -> None:
        config = BackendConfig(server_url="https://example.com", device_id="pixel")
        assert config.ws_url == "wss://example.com/ws/devices/pixel"
        assert config.is_secure

    def test_ws_url_without_device_id(self) -> None:
        config = BackendConfig(server_url="https://example.com")
        assert config.ws_url.endswith("/ws/devices/default")


class TestEngineConfig:
    """Tests for EngineConfig class."""

    def test_defaults(self) -> None:
        config = EngineConfig()
        assert config.staleness_window_ms == 10_000
        assert config.debounce_window == 1.0
        assert config.max_retries == 3
        assert config.retry_backoff == 300.0
        assert config.mirror_capacity == 20
        assert config.dedup_capacity == 100
        assert config.dedup_policy == "fifo"

    def test_policy_enum_accepted(self) -> None:
        assert EngineConfig(dedup_policy=EvictionPolicy.CLEAR).dedup_policy == "clear"

    def test_policy_case_insensitive(self) -> None:
        assert EngineConfig(dedup_policy="FIFO").dedup_policy == "fifo"

    def test_unknown_policy_rejected(self) -> None:
        with pytest.raises(ValueError, match="dedup_policy"):
            EngineConfig(dedup_policy="lru")

    @pytest.mark.parametrize(
        "field_name",
        ["staleness_window_ms", "debounce_window", "max_retries", "mirror_capacity"],
    )
    def test_non_positive_values_rejected(self, field_name: str) -> None:
        with pytest.raises(ValueError, match=field_name):
            EngineConfig(**{field_name: 0})

    def test_from_dict_ignores_unknown_keys(self) -> None:
        config = EngineConfig.from_dict({"mirror_capacity": 5, "theme": "dark"})
        assert config.mirror_capacity == 5

    def test_to_dict_round_trip(self) -> None:
        config = EngineConfig(debounce_window=0.5, dedup_policy="clear")
        assert EngineConfig.from_dict(config.to_dict()) == config
