"""Settings Management Module.

Delivery and circuit breaker configuration. Values come from an optional
JSON file (data/settings.json by default) with environment overrides on top.
"""

import json
import logging
import os
from pathlib import Path
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# Constants
SETTINGS_FILE = Path("data/settings.json")
SETTINGS_FILE_ENV = "HOOKLINE_SETTINGS_FILE"

BreakerScope = Literal["webhook", "host"]


class DeliverySettings(BaseModel):
    """Outgoing webhook delivery configuration."""
    max_retries: int = Field(3, ge=1)
    retry_delays_seconds: List[float] = Field(default_factory=lambda: [1.0, 2.0, 4.0])
    timeout_seconds: float = 10.0
    response_body_limit: int = 1000
    recent_window: int = 100
    recent_deliveries_shown: int = 10
    user_agent: str = "Hookline-Webhook/1.0"
    # 4xx statuses that are retried like 5xx instead of ending the sequence
    retryable_client_statuses: List[int] = Field(default_factory=lambda: [408, 429])
    # None disables the breaker in the dispatcher
    breaker_scope: Optional[BreakerScope] = None

    class Config:
        validate_assignment = True

    @field_validator("retry_delays_seconds")
    @classmethod
    def _non_negative_delays(cls, value: List[float]) -> List[float]:
        if any(d < 0 for d in value):
            raise ValueError("retry delays must be non-negative")
        return value

    def delay_after(self, attempt: int) -> float:
        """Backoff to wait after the given 1-based attempt failed."""
        if not self.retry_delays_seconds:
            return 0.0
        index = min(attempt - 1, len(self.retry_delays_seconds) - 1)
        return self.retry_delays_seconds[index]


class CircuitBreakerSettings(BaseModel):
    """Default circuit breaker thresholds."""
    failure_threshold: int = Field(5, ge=1)
    failure_window_seconds: float = 60.0
    reset_timeout_seconds: float = 30.0


class AppSettings(BaseModel):
    """Global Application Settings."""
    delivery: DeliverySettings = Field(default_factory=DeliverySettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    log_level: str = "INFO"

    class Config:
        validate_assignment = True


def _breaker_scope(value: str) -> Optional[str]:
    return None if value == "none" else value


# (env var, settings section or None for top level, field, converter)
ENV_OVERRIDES = [
    ("HOOKLINE_MAX_RETRIES", "delivery", "max_retries", int),
    ("HOOKLINE_TIMEOUT_SECONDS", "delivery", "timeout_seconds", float),
    ("HOOKLINE_BREAKER_SCOPE", "delivery", "breaker_scope", _breaker_scope),
    ("HOOKLINE_LOG_LEVEL", None, "log_level", str.upper),
]


def _apply_env_overrides(settings: AppSettings) -> AppSettings:
    for env_var, section, field_name, convert in ENV_OVERRIDES:
        raw = os.getenv(env_var)
        if not raw:
            continue

        target = getattr(settings, section) if section else settings
        try:
            setattr(target, field_name, convert(raw))
        except ValueError as e:
            logger.error(f"Ignoring invalid {env_var}={raw!r}: {e}")

    return settings


def load_settings(path: Optional[Path] = None) -> AppSettings:
    """Load settings from JSON (if present) and apply env overrides.

    Args:
        path: Settings file. Defaults to $HOOKLINE_SETTINGS_FILE or
            data/settings.json.
    """
    settings_path = path or Path(os.getenv(SETTINGS_FILE_ENV, str(SETTINGS_FILE)))

    settings = AppSettings()
    if settings_path.exists():
        try:
            data = json.loads(settings_path.read_text(encoding="utf-8"))
            settings = AppSettings(**data)
        except (ValueError, OSError) as e:
            logger.error(f"Error loading settings from {settings_path}: {e}. Using defaults.")

    return _apply_env_overrides(settings)
