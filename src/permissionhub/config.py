"""Configuration contract for PermissionHub.

This module provides the Pydantic-validated configuration model for the
permission core (logging, derived-state persistence, accounting policy,
expiry sweep). Direct os.environ/os.getenv usage is only allowed inside
load_config_from_env() and its _env_number helper.
"""

from __future__ import annotations

from enum import Enum
from typing import Callable, Optional, TypeVar

from pydantic import BaseModel, Field, field_validator

from .exceptions import ConfigurationError

_N = TypeVar("_N", int, float)


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class HubConfig(BaseModel):
    """Configuration for a PermissionHub process.

    Persistence backend selection for derived state (health factors, badges):
        redis_url set   → RedisKeyValueStore
        state_path set  → JsonFileKeyValueStore
        neither         → InMemoryKeyValueStore (lost on restart)
    """

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level for the process",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )

    # Derived-state persistence
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL for derived state (e.g., redis://localhost:6379/0)",
    )
    state_path: Optional[str] = Field(
        default=None,
        description="JSON file used for derived state when Redis is not configured",
    )
    state_namespace: str = Field(
        default="permissionHub",
        description="Key prefix for persisted health factors, badges and flags",
    )

    # Accounting policy
    limited_threshold: float = Field(
        default=0.2,
        description="Remaining-capacity fraction below which a bounded permission is 'limited'",
    )

    # Expiry sweep
    sweep_interval_seconds: float = Field(
        default=60.0,
        description="Interval between background expiry sweeps",
    )

    # Demo wiring (single demo user)
    demo_user_id: int = Field(
        default=1,
        description="User id of the single demo user",
    )
    seed_demo_data: bool = Field(
        default=False,
        description="Seed the store with demo permissions and requests on startup",
    )

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Redis URL must start with redis://, rediss://, or unix://")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    @field_validator("limited_threshold")
    @classmethod
    def validate_limited_threshold(cls, v: float) -> float:
        if not 0 < v < 1:
            raise ValueError("limited_threshold must be between 0 and 1 (exclusive)")
        return v

    @field_validator("sweep_interval_seconds")
    @classmethod
    def validate_sweep_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("sweep_interval_seconds must be positive")
        return v

    model_config = {
        "use_enum_values": True,
        "extra": "forbid",  # Prevent accidental extra fields
    }


_TRUTHY = ("true", "1", "yes", "on")


def _env_number(name: str, default: str, parse: Callable[[str], _N]) -> _N:
    import os

    raw = os.getenv(name, default)
    try:
        return parse(raw)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid value for {name}: {raw!r}",
            variable=name,
            value=raw,
        ) from e


def load_config_from_env() -> HubConfig:
    """Load configuration from environment variables.

    This and _env_number are the ONLY places where os.getenv is allowed.

    Environment variables:
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - LOG_JSON: Use JSON log format (true/false, default: false)
    - REDIS_URL: Redis connection URL for derived state
    - PERMISSIONHUB_STATE_PATH: JSON state file path
    - PERMISSIONHUB_NAMESPACE: Key prefix for persisted state
    - PERMISSIONHUB_LIMITED_THRESHOLD: Remaining-capacity fraction for 'limited'
    - PERMISSIONHUB_SWEEP_INTERVAL: Seconds between expiry sweeps
    - PERMISSIONHUB_DEMO_USER_ID: Demo user id
    - PERMISSIONHUB_SEED_DEMO: Seed demo data (true/false)

    Returns:
        HubConfig instance with values from environment or defaults.

    Raises:
        ConfigurationError: a numeric variable does not parse.
    """
    import os

    return HubConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=os.getenv("LOG_JSON", "false").lower() in _TRUTHY,
        redis_url=os.getenv("REDIS_URL"),
        state_path=os.getenv("PERMISSIONHUB_STATE_PATH"),
        state_namespace=os.getenv("PERMISSIONHUB_NAMESPACE", "permissionHub"),
        limited_threshold=_env_number("PERMISSIONHUB_LIMITED_THRESHOLD", "0.2", float),
        sweep_interval_seconds=_env_number("PERMISSIONHUB_SWEEP_INTERVAL", "60", float),
        demo_user_id=_env_number("PERMISSIONHUB_DEMO_USER_ID", "1", int),
        seed_demo_data=os.getenv("PERMISSIONHUB_SEED_DEMO", "false").lower() in _TRUTHY,
    )


__all__ = [
    "HubConfig",
    "LogLevel",
    "load_config_from_env",
]
