"""Tests for process configuration (app/config.py)."""

import pytest

from app.config import (
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_SYNC_SCHEDULE,
    AppConfig,
    get_config,
    reset_config,
)
from app.exceptions import ConfigurationError


@pytest.fixture
def clean_env(monkeypatch):
    """Remove InfraDeck variables and forget the cached config."""
    for name in (
        "INFRADECK_ENCRYPTION_KEY",
        "INFRADECK_HTTP_TIMEOUT",
        "INFRADECK_SYNC_ENABLED",
        "INFRADECK_SYNC_SCHEDULE",
        "INFRADECK_DEBUG",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield monkeypatch
    reset_config()


class TestAppConfigFromEnv:
    """Test suite for AppConfig.from_env()."""

    def test_defaults(self, clean_env):
        """Test defaults apply when only the passphrase is set."""
        clean_env.setenv("INFRADECK_ENCRYPTION_KEY", "passphrase")

        config = AppConfig.from_env()

        assert config.encryption_key == "passphrase"
        assert config.http_timeout == DEFAULT_HTTP_TIMEOUT
        assert config.sync_enabled is True
        assert config.sync_schedule == DEFAULT_SYNC_SCHEDULE
        assert config.debug is False

    def test_overrides(self, clean_env):
        """Test every variable is honoured."""
        clean_env.setenv("INFRADECK_ENCRYPTION_KEY", "passphrase")
        clean_env.setenv("INFRADECK_HTTP_TIMEOUT", "3.5")
        clean_env.setenv("INFRADECK_SYNC_ENABLED", "false")
        clean_env.setenv("INFRADECK_SYNC_SCHEDULE", "0 * * * *")
        clean_env.setenv("INFRADECK_DEBUG", "yes")

        config = AppConfig.from_env()

        assert config.http_timeout == 3.5
        assert config.sync_enabled is False
        assert config.sync_schedule == "0 * * * *"
        assert config.debug is True

    def test_missing_passphrase_raises(self, clean_env):
        """Test a missing master passphrase is a configuration error."""
        with pytest.raises(ConfigurationError) as exc_info:
            AppConfig.from_env()

        assert "INFRADECK_ENCRYPTION_KEY" in str(exc_info.value)

    @pytest.mark.parametrize("value", ["abc", "0", "-1", "inf", "nan"])
    def test_invalid_timeout_raises(self, clean_env, value):
        """Test a non-numeric, non-positive or non-finite timeout is rejected."""
        clean_env.setenv("INFRADECK_ENCRYPTION_KEY", "passphrase")
        clean_env.setenv("INFRADECK_HTTP_TIMEOUT", value)

        with pytest.raises(ConfigurationError):
            AppConfig.from_env()


class TestAppConfig:
    """Test suite for the AppConfig value object."""

    def test_passphrase_not_in_repr(self):
        """Test repr() does not leak the passphrase."""
        config = AppConfig(encryption_key="very-secret-passphrase")

        assert "very-secret-passphrase" not in repr(config)

    def test_immutable(self):
        """Test configuration cannot be changed after construction."""
        config = AppConfig(encryption_key="passphrase")

        with pytest.raises(AttributeError):
            config.encryption_key = "other"


class TestGetConfig:
    """Test suite for the cached process configuration."""

    def test_cached_until_reset(self, clean_env):
        """Test get_config() returns the same instance until reset."""
        clean_env.setenv("INFRADECK_ENCRYPTION_KEY", "first")
        first = get_config()

        clean_env.setenv("INFRADECK_ENCRYPTION_KEY", "second")
        assert get_config() is first

        reset_config()
        assert get_config().encryption_key == "second"
