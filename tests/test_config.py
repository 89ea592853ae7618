"""Tests for HubConfig."""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest
from permissionhub import ConfigurationError, HubConfig, LogLevel, get_http_status, load_config_from_env


class TestHubConfig:
    """Tests for HubConfig model."""

    def test_create_default_config(self) -> None:
        """Test creating a HubConfig with defaults."""
        config = HubConfig()
        assert config.log_level == LogLevel.INFO
        assert config.log_json is False
        assert config.redis_url is None
        assert config.state_path is None
        assert config.state_namespace == "permissionHub"
        assert config.limited_threshold == 0.2
        assert config.sweep_interval_seconds == 60.0
        assert config.demo_user_id == 1
        assert config.seed_demo_data is False

    def test_log_level_from_string(self) -> None:
        """Test creating config with log level as lowercase string."""
        config = HubConfig(log_level="debug")
        assert config.log_level == LogLevel.DEBUG

    def test_log_level_invalid(self) -> None:
        """Test creating config with invalid log level."""
        with pytest.raises(ValueError, match="Invalid log level"):
            HubConfig(log_level="INVALID")

    def test_redis_url_validation_valid(self) -> None:
        """Test valid Redis URL formats."""
        for url in ("redis://localhost:6379/0", "rediss://localhost:6379/0", "unix:///tmp/redis.sock"):
            config = HubConfig(redis_url=url)
            assert config.redis_url == url

    def test_redis_url_validation_invalid(self) -> None:
        """Test invalid Redis URL formats."""
        for url in ("http://localhost:6379", "localhost:6379"):
            with pytest.raises(ValueError, match="Redis URL must start with"):
                HubConfig(redis_url=url)

    @pytest.mark.parametrize("threshold", [0, 1, -0.1, 1.5])
    def test_limited_threshold_bounds(self, threshold: float) -> None:
        """limited_threshold must be strictly between 0 and 1."""
        with pytest.raises(ValueError, match="limited_threshold"):
            HubConfig(limited_threshold=threshold)

    def test_sweep_interval_positive(self) -> None:
        """A zero sweep interval is rejected."""
        with pytest.raises(ValueError, match="sweep_interval_seconds"):
            HubConfig(sweep_interval_seconds=0)

    def test_extra_fields_forbidden(self) -> None:
        """Test that extra fields are forbidden."""
        with pytest.raises(Exception):  # Pydantic validation error
            HubConfig(extra_field="value")  # type: ignore[call-arg]


class TestLoadConfigFromEnv:
    """Tests for load_config_from_env function."""

    @patch.dict(os.environ, {}, clear=True)
    def test_load_defaults(self) -> None:
        """Test loading config with no environment variables."""
        config = load_config_from_env()
        assert config.log_level == LogLevel.INFO
        assert config.redis_url is None
        assert config.seed_demo_data is False

    @patch.dict(
        os.environ,
        {
            "LOG_LEVEL": "DEBUG",
            "LOG_JSON": "true",
            "REDIS_URL": "redis://localhost:6379/0",
            "PERMISSIONHUB_STATE_PATH": "/tmp/permissionhub.json",
            "PERMISSIONHUB_NAMESPACE": "hub",
            "PERMISSIONHUB_LIMITED_THRESHOLD": "0.25",
            "PERMISSIONHUB_SWEEP_INTERVAL": "5",
            "PERMISSIONHUB_DEMO_USER_ID": "7",
            "PERMISSIONHUB_SEED_DEMO": "yes",
        },
        clear=True,
    )
    def test_load_from_env(self) -> None:
        """Test loading config from environment variables."""
        config = load_config_from_env()
        assert config.log_level == LogLevel.DEBUG
        assert config.log_json is True
        assert config.redis_url == "redis://localhost:6379/0"
        assert config.state_path == "/tmp/permissionhub.json"
        assert config.state_namespace == "hub"
        assert config.limited_threshold == 0.25
        assert config.sweep_interval_seconds == 5.0
        assert config.demo_user_id == 7
        assert config.seed_demo_data is True

    def test_seed_demo_variants(self) -> None:
        """Test PERMISSIONHUB_SEED_DEMO accepts various true values."""
        for value in ("true", "1", "yes", "on"):
            with patch.dict(os.environ, {"PERMISSIONHUB_SEED_DEMO": value}, clear=True):
                assert load_config_from_env().seed_demo_data is True

    @patch.dict(os.environ, {"REDIS_URL": "http://nope"}, clear=True)
    def test_invalid_env_value_rejected(self) -> None:
        """Invalid values from the environment fail validation."""
        with pytest.raises(ValueError):
            load_config_from_env()

    @pytest.mark.parametrize(
        "variable",
        [
            "PERMISSIONHUB_LIMITED_THRESHOLD",
            "PERMISSIONHUB_SWEEP_INTERVAL",
            "PERMISSIONHUB_DEMO_USER_ID",
        ],
    )
    def test_malformed_number_raises_configuration_error(self, variable: str) -> None:
        """Unparseable numeric variables raise ConfigurationError naming the variable."""
        with patch.dict(os.environ, {variable: "not-a-number"}, clear=True):
            with pytest.raises(ConfigurationError, match=variable) as exc_info:
                load_config_from_env()
        assert exc_info.value.details == {"variable": variable, "value": "not-a-number"}
        assert get_http_status(exc_info.value) == 500
