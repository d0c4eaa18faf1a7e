"""Process configuration loaded from environment variables."""

import logging
import math
import os
from dataclasses import dataclass, field
from typing import Optional

from app.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

ENCRYPTION_KEY_ENV = "INFRADECK_ENCRYPTION_KEY"

DEFAULT_HTTP_TIMEOUT = 15.0
DEFAULT_SYNC_SCHEDULE = "*/5 * * * *"


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class AppConfig:
    """Immutable configuration constructed once at process start.

    The master passphrase never leaves this object except through
    ``EnvelopeCipher``, which derives the symmetric key from it.

    Environment Variables:
        INFRADECK_ENCRYPTION_KEY: Master passphrase for secret encryption (required)
        INFRADECK_HTTP_TIMEOUT: Timeout in seconds for control-plane calls (default: 15)
        INFRADECK_SYNC_ENABLED: Enable scheduled inventory sync (default: true)
        INFRADECK_SYNC_SCHEDULE: Cron expression for scheduled sync (default: every 5 minutes)
        INFRADECK_DEBUG: Show detailed errors in API responses (default: false)
    """

    encryption_key: str = field(repr=False)
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    sync_enabled: bool = True
    sync_schedule: str = DEFAULT_SYNC_SCHEDULE
    debug: bool = False

    def __post_init__(self) -> None:
        if not self.encryption_key:
            raise ConfigurationError(
                f"Encryption key not configured. Set {ENCRYPTION_KEY_ENV} environment variable."
            )
        if not math.isfinite(self.http_timeout) or self.http_timeout <= 0:
            raise ConfigurationError("HTTP timeout must be a finite positive number of seconds")

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Build the configuration from the process environment.

        Raises:
            ConfigurationError: If the master passphrase is missing or a value is malformed
        """
        timeout_raw = os.getenv("INFRADECK_HTTP_TIMEOUT", str(DEFAULT_HTTP_TIMEOUT))
        try:
            http_timeout = float(timeout_raw)
        except ValueError:
            raise ConfigurationError(
                f"INFRADECK_HTTP_TIMEOUT must be a number, got {timeout_raw!r}"
            )

        return cls(
            encryption_key=os.getenv(ENCRYPTION_KEY_ENV, ""),
            http_timeout=http_timeout,
            sync_enabled=_env_bool("INFRADECK_SYNC_ENABLED", True),
            sync_schedule=os.getenv("INFRADECK_SYNC_SCHEDULE", DEFAULT_SYNC_SCHEDULE),
            debug=_env_bool("INFRADECK_DEBUG", False),
        )


_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Return the process-wide configuration, loading it on first use."""
    global _config

    if _config is None:
        _config = AppConfig.from_env()
        logger.debug("Configuration loaded from environment")

    return _config


def reset_config() -> None:
    """Forget the loaded configuration (tests change the environment)."""
    global _config
    _config = None
