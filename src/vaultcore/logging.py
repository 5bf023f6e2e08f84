"""Logging utilities for vaultcore.

This module provides:
- Logging configuration from VaultCoreConfig
- Safe preview utilities for values placed in log records
- Secret and email redaction
- A logger adapter that stamps actor_id / vault_id on every record
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from .config import LogLevel, VaultCoreConfig

SECRET_PATTERNS = [
    r'(?i)(?:password|passwd|pwd|secret|token|api[_-]?key|auth[_-]?token)\s*[:=]\s*["\']?([^"\'\s]+)',
    r"(?i)(?:bearer|basic)\s+([a-zA-Z0-9+/=._-]+)",
    r"(?i)(?:-----BEGIN\s+(?:RSA\s+)?(?:PRIVATE\s+)?KEY-----).*?(?:-----END\s+(?:RSA\s+)?(?:PRIVATE\s+)?KEY-----)",
]

EMAIL_PATTERN = re.compile(r"([A-Za-z0-9._%+-])[A-Za-z0-9._%+-]*(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})")

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RESERVED_ATTRS = frozenset(
    {
        "name", "msg", "args", "created", "filename", "funcName", "levelname",
        "levelno", "lineno", "module", "msecs", "message", "pathname", "process",
        "processName", "relativeCreated", "thread", "threadName", "exc_info",
        "exc_text", "stack_info", "taskName", "actor_id", "vault_id",
    }
)


def safe_preview(value: Any, limit: int = 240) -> str:
    """Single-line, length-bounded preview of a value for logging.

    Args:
        value: The value to preview (any type)
        limit: Maximum length of the preview (default: 240)

    Returns:
        A truncated string representation with whitespace collapsed.
    """
    if value is None:
        return ""

    if isinstance(value, str):
        s = value
    elif isinstance(value, (dict, list, tuple)):
        try:
            s = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            s = str(value)
    else:
        s = str(value)

    s = " ".join(s.split())
    if len(s) > limit:
        return s[: limit - 1] + "…"
    return s


def mask_email(text: str) -> str:
    """Keep the first character of the local part: ``alice@example.com`` → ``a***@example.com``."""
    if not isinstance(text, str):
        return text
    return EMAIL_PATTERN.sub(r"\1***\2", text)


def redact_secrets(text: str, replacement: str = "[REDACTED]") -> str:
    """Redact credentials and mask email addresses in text."""
    if not isinstance(text, str):
        return text

    result = text
    for pattern in SECRET_PATTERNS:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE | re.DOTALL)
    return mask_email(result)


def safe_log_value(value: Any, limit: int = 240, redact: bool = True) -> str:
    """Preview plus optional redaction; use for any user-supplied value."""
    preview = safe_preview(value, limit=limit)
    if redact:
        preview = redact_secrets(preview)
    return preview


class VaultLogFormatter(logging.Formatter):
    """Formatter emitting JSON (or plain text) with actor/vault context."""

    def __init__(
        self,
        json_format: bool = True,
        redact: bool = True,
        service_name: Optional[str] = None,
        *args: Any,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.json_format = json_format
        self.redact = redact
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        actor_id = getattr(record, "actor_id", None)
        vault_id = getattr(record, "vault_id", None)

        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if self.service_name:
            log_data["service"] = self.service_name
        if actor_id:
            log_data["actor_id"] = actor_id
        if vault_id:
            log_data["vault_id"] = vault_id
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = safe_log_value(value, redact=self.redact)

        if self.redact:
            log_data["message"] = redact_secrets(log_data["message"])

        if self.json_format:
            return json.dumps(log_data, default=str, ensure_ascii=False)

        parts = [f"[{log_data['timestamp']}]", log_data["level"], log_data["logger"]]
        if actor_id:
            parts.append(f"actor={actor_id}")
        if vault_id:
            parts.append(f"vault={vault_id}")
        parts.append(f": {log_data['message']}")
        return " ".join(parts)


class VaultLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds actor_id and vault_id to log records.

    Usage:
        logger = get_vault_logger(__name__, actor_id=user_id)
        logger.info("Collection created", vault_id=vault.id)
    """

    def __init__(
        self,
        logger: logging.Logger,
        actor_id: Optional[str] = None,
        vault_id: Optional[str] = None,
    ):
        super().__init__(logger, {})
        self.actor_id = actor_id
        self.vault_id = vault_id

    def process(self, msg: str, kwargs: Any) -> tuple[str, Any]:
        actor_id = kwargs.pop("actor_id", self.actor_id)
        vault_id = kwargs.pop("vault_id", self.vault_id)

        extra = dict(kwargs.get("extra") or {})
        if actor_id:
            extra["actor_id"] = actor_id
        if vault_id:
            extra["vault_id"] = vault_id
        kwargs["extra"] = extra
        return msg, kwargs

    def bind(self, **context: Optional[str]) -> VaultLoggerAdapter:
        """Return a new adapter with some context replaced."""
        return VaultLoggerAdapter(
            self.logger,
            actor_id=context.get("actor_id", self.actor_id),
            vault_id=context.get("vault_id", self.vault_id),
        )


_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}


def setup_logging(
    config: Optional[VaultCoreConfig] = None,
    json_format: Optional[bool] = None,
    redact: bool = True,
) -> None:
    """Configure the root logger from a VaultCoreConfig.

    Args:
        config: Configuration (if None, loads from environment)
        json_format: Override ``config.log_json``
        redact: Whether to redact secrets and emails (default: True)
    """
    if config is None:
        from .config import load_config_from_env

        config = load_config_from_env()

    level = _LEVELS.get(LogLevel(config.log_level), logging.INFO)
    use_json = config.log_json if json_format is None else json_format

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(VaultLogFormatter(json_format=use_json, redact=redact, service_name=config.service_name))
    root_logger.addHandler(handler)


def get_vault_logger(
    name: str,
    actor_id: Optional[str] = None,
    vault_id: Optional[str] = None,
) -> VaultLoggerAdapter:
    """Get a logger adapter carrying actor/vault context."""
    return VaultLoggerAdapter(logging.getLogger(name), actor_id=actor_id, vault_id=vault_id)


__all__ = [
    "VaultLogFormatter",
    "VaultLoggerAdapter",
    "get_vault_logger",
    "mask_email",
    "redact_secrets",
    "safe_log_value",
    "safe_preview",
    "setup_logging",
]
