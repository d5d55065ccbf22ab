"""Environment-specific configuration loader."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass

from .exceptions import ConfigurationError

ALLOWED_ENVS = {"dev", "test", "prod"}
_TRUTHY = {"1", "true", "yes", "on"}


@dataclass
class Settings:
    """Runtime settings populated from the environment."""

    environment: str = "dev"
    debug: bool = False
    log_level: str = "INFO"
    task_warning_ms: int = 100
    task_timeout: float | None = 30.0

    @property
    def task_warning_threshold(self) -> float:
        """Slow-task warning threshold in seconds."""

        return self.task_warning_ms / 1000.0


def validate_settings(settings: Settings) -> None:
    """Validate *settings* for safe operation.

    Raises
    ------
    ConfigurationError
        If the environment is unsupported, a numeric option is out of range
        or production settings are insecure.
    """

    env = settings.environment
    if env not in ALLOWED_ENVS:
        raise ConfigurationError(f"Unsupported environment: {env}")
    if env == "prod" and settings.debug:
        raise ConfigurationError("Debug must be disabled in production")
    if not isinstance(logging.getLevelName(settings.log_level.upper()), int):
        raise ConfigurationError(f"Unknown log level: {settings.log_level}")
    if settings.task_warning_ms <= 0:
        raise ConfigurationError("ROUTEKIT_TASK_WARNING_MS must be a positive integer")
    if settings.task_timeout is not None and settings.task_timeout <= 0:
        raise ConfigurationError("ROUTEKIT_TASK_TIMEOUT must be positive")


def load_settings() -> Settings:
    """Return configuration derived from ``ROUTEKIT_*`` variables."""

    env = os.getenv("ROUTEKIT_ENV", "dev").strip().lower()
    debug = os.getenv("ROUTEKIT_DEBUG", "0").strip().lower() in _TRUTHY
    log_level = os.getenv("ROUTEKIT_LOG_LEVEL", "INFO").strip().upper()

    warning_value = os.getenv("ROUTEKIT_TASK_WARNING_MS", "100")
    try:
        warning_ms = int(warning_value)
    except ValueError as exc:
        raise ConfigurationError(
            "ROUTEKIT_TASK_WARNING_MS must be a positive integer"
        ) from exc

    timeout_value = os.getenv("ROUTEKIT_TASK_TIMEOUT", "30")
    try:
        timeout = float(timeout_value)
    except ValueError as exc:
        raise ConfigurationError(
            "ROUTEKIT_TASK_TIMEOUT must be a number of seconds"
        ) from exc

    settings = Settings(
        environment=env,
        debug=debug,
        log_level=log_level,
        task_warning_ms=warning_ms,
        task_timeout=timeout if timeout != 0 else None,
    )
    validate_settings(settings)
    return settings


__all__ = ["ALLOWED_ENVS", "Settings", "load_settings", "validate_settings"]
