"""Centralized logging utilities for PermissionHub.

This module provides:
- Logging configuration from HubConfig
- Safe preview utilities for sensitive data
- Secret redaction (private keys, seed phrases, bearer tokens)
- Structured logging with user_id / permission_id context
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from pydantic import BaseModel

from .config import HubConfig, LogLevel


# Patterns for detecting secrets. 40-hex contract addresses stay readable;
# 64-hex strings are treated as private keys.
SECRET_PATTERNS = [
    r'(?i)(?:password|passwd|pwd|secret|token|api[_-]?key|private[_-]?key|mnemonic|seed)\s*[:=]\s*["\']?([^"\'\s]+)',
    r'(?i)(?:bearer|basic)\s+([a-zA-Z0-9+/=._-]+)',
    r'(?i)\b(?:0x)?[a-f0-9]{64}\b',
    r'(?i)(?:-----BEGIN\s+(?:EC\s+|RSA\s+)?(?:PRIVATE\s+)?KEY-----).*?(?:-----END\s+(?:EC\s+|RSA\s+)?(?:PRIVATE\s+)?KEY-----)',
]

_CONTEXT_KEYS = ("user_id", "permission_id", "request_id")

_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "message", "pathname", "process", "processName", "relativeCreated",
    "thread", "threadName", "exc_info", "exc_text", "stack_info",
    "taskName", *_CONTEXT_KEYS,
}


def safe_preview(value: Any, limit: int = 240) -> str:
    """Single-line, length-bounded rendering of a value for log output.

    Pydantic records (permissions, requests, health factors) render as their
    camelCase JSON wire form; mappings and lists as JSON.
    """
    if value is None:
        return ""

    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True)

    if isinstance(value, str):
        text = value
    elif isinstance(value, (dict, list, tuple)):
        try:
            text = json.dumps(value, default=str, ensure_ascii=False)
        except (TypeError, ValueError):
            text = str(value)
    else:
        text = str(value)

    text = " ".join(text.split())
    return text if len(text) <= limit else text[: limit - 1] + "…"


def redact_secrets(text: str, replacement: str = "[REDACTED]") -> str:
    """Redact secret patterns from text.

    Removes private keys (hex or PEM), seed phrases, passwords, API keys
    and bearer/basic credentials.

    Args:
        text: The text to redact
        replacement: String to replace secrets with (default: "[REDACTED]")

    Returns:
        Text with secrets redacted
    """
    if not isinstance(text, str):
        return text

    result = text
    for pattern in SECRET_PATTERNS:
        result = re.sub(pattern, replacement, result, flags=re.IGNORECASE | re.DOTALL)

    return result


class HubFormatter(logging.Formatter):
    """Formatter that includes user/permission context and optional JSON output."""

    def __init__(
        self,
        json_format: bool = True,
        redact_secrets: bool = True,
        *args: Any,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.json_format = json_format
        self.redact_secrets = redact_secrets

    def _extra_value(self, value: Any) -> str:
        # additional_data may carry arbitrary client metadata
        preview = safe_preview(value)
        return redact_secrets(preview) if self.redact_secrets else preview

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {}
        for key in _CONTEXT_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                context[key] = value
        log_data.update(context)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS:
                log_data[key] = self._extra_value(value)

        if self.redact_secrets:
            log_data["message"] = redact_secrets(log_data["message"])

        if self.json_format:
            return json.dumps(log_data, default=str, ensure_ascii=False)

        parts = [
            f"[{log_data['timestamp']}]",
            f"{log_data['level']}",
            f"{log_data['logger']}",
        ]
        parts.extend(f"{key}={value}" for key, value in context.items())
        parts.append(f": {log_data['message']}")
        if "exception" in log_data:
            parts.append("\n" + log_data["exception"])
        return " ".join(parts)


class HubLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that adds user_id / permission_id / request_id to records.

    Usage:
        logger = get_hub_logger(__name__, user_id=1)
        logger.info("Permission stopped", permission_id=42)
    """

    def __init__(
        self,
        logger: logging.Logger,
        user_id: Optional[int] = None,
    ):
        super().__init__(logger, {})
        self.user_id = user_id

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        user_id = kwargs.pop("user_id", self.user_id)
        if user_id is not None:
            extra["user_id"] = user_id
        for key in ("permission_id", "request_id"):
            value = kwargs.pop(key, None)
            if value is not None:
                extra[key] = value
        kwargs["extra"] = extra
        return msg, kwargs


def setup_logging(
    config: Optional[HubConfig] = None,
    json_format: Optional[bool] = None,
    redact_secrets: bool = True,
) -> None:
    """Configure root logging for a PermissionHub process.

    Args:
        config: HubConfig instance (if None, loads from environment)
        json_format: Override config.log_json
        redact_secrets: Whether to redact secrets (default: True)
    """
    if config is None:
        from .config import load_config_from_env
        config = load_config_from_env()

    log_level = getattr(logging, LogLevel(config.log_level).value, logging.INFO)
    if json_format is None:
        json_format = config.log_json

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(
        HubFormatter(json_format=json_format, redact_secrets=redact_secrets)
    )
    root_logger.addHandler(console_handler)


def get_hub_logger(name: str, user_id: Optional[int] = None) -> HubLoggerAdapter:
    """Get a logger adapter bound to an optional user.

    Example:
        logger = get_hub_logger(__name__, user_id=1)
        logger.info("Request approved", request_id=7, permission_id=12)
    """
    return HubLoggerAdapter(logging.getLogger(name), user_id=user_id)


__all__ = [
    "safe_preview",
    "redact_secrets",
    "HubFormatter",
    "HubLoggerAdapter",
    "setup_logging",
    "get_hub_logger",
]
