"""Configuration for vaultcore.

Pydantic-validated settings shared by the store, the resolver policy,
audit log and logging setup. ``load_config_from_env()`` is the only place
that reads ``os.environ``; everything else receives a ``VaultCoreConfig``.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class VaultCoreConfig(BaseModel):
    """Settings for a vaultcore deployment.

    Storage selection: when ``redis_url`` is set the Redis backend is used,
    otherwise records live in process memory (tests, single-process tools).
    """

    # Logging
    log_level: LogLevel = Field(
        default=LogLevel.INFO,
        description="Logging level",
    )
    log_json: bool = Field(
        default=False,
        description="Use JSON log format (default: plain text)",
    )
    service_name: Optional[str] = Field(
        default=None,
        description="Service name attached to log output",
    )

    # Storage
    redis_url: Optional[str] = Field(
        default=None,
        description="Redis connection URL (e.g., redis://localhost:6379/0)",
    )
    store_prefix: str = Field(
        default="vaultcore",
        min_length=1,
        description="Key prefix for all records in Redis",
    )
    commit_retry_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for a transaction commit that fails with a storage error",
    )

    # Resolution policy
    collection_create_grants: bool = Field(
        default=False,
        description=(
            "Allow a COLLECTION-scoped grant to carry Create (asset creation). "
            "Off: Create is a vault membership permission only."
        ),
    )

    # Audit log
    audit_enabled: bool = Field(default=True, description="Record audit events for mutations")
    audit_dedupe_window_seconds: float = Field(
        default=5.0,
        ge=0,
        description="Identical consecutive events inside this window are recorded once",
    )
    audit_retention_days: int = Field(
        default=90,
        ge=1,
        description="Default age cutoff for prune_audit_events()",
    )

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Redis URL format."""
        if v is None or v == "":
            return None
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

    model_config = {
        "extra": "forbid",
    }


def _env_flag(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def load_config_from_env() -> VaultCoreConfig:
    """Load configuration from environment variables.

    Environment variables:
    - LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - LOG_JSON: Use JSON log format (true/false)
    - SERVICE_NAME: Service name for log output
    - REDIS_URL: Redis connection URL (unset = in-memory store)
    - VAULTCORE_STORE_PREFIX: Redis key prefix
    - VAULTCORE_COMMIT_RETRY_ATTEMPTS: Commit attempts on storage errors
    - VAULTCORE_COLLECTION_CREATE_GRANTS: Allow collection-level Create grants
    - VAULTCORE_AUDIT_ENABLED: Record audit events (default true)
    - VAULTCORE_AUDIT_DEDUPE_WINDOW_SECONDS: Duplicate-event window
    - VAULTCORE_AUDIT_RETENTION_DAYS: Default audit prune cutoff

    Returns:
        VaultCoreConfig with values from environment or defaults.
    """
    import os

    return VaultCoreConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=_env_flag(os.getenv("LOG_JSON")),
        service_name=os.getenv("SERVICE_NAME"),
        redis_url=os.getenv("REDIS_URL"),
        store_prefix=os.getenv("VAULTCORE_STORE_PREFIX", "vaultcore"),
        commit_retry_attempts=int(os.getenv("VAULTCORE_COMMIT_RETRY_ATTEMPTS", "3")),
        collection_create_grants=_env_flag(os.getenv("VAULTCORE_COLLECTION_CREATE_GRANTS")),
        audit_enabled=_env_flag(os.getenv("VAULTCORE_AUDIT_ENABLED"), default=True),
        audit_dedupe_window_seconds=float(os.getenv("VAULTCORE_AUDIT_DEDUPE_WINDOW_SECONDS", "5")),
        audit_retention_days=int(os.getenv("VAULTCORE_AUDIT_RETENTION_DAYS", "90")),
    )


__all__ = [
    "LogLevel",
    "VaultCoreConfig",
    "load_config_from_env",
]
