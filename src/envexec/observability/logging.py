"""Structured logging setup for envexec on top of ``structlog``.

Events are rendered as JSON lines (or console text) with an ISO timestamp and
the log level. A redaction processor masks secret-looking values, both under
sensitive keys and inside ``KEY=VALUE`` strings such as command arguments.
"""

from __future__ import annotations

import logging
import re
import sys
from collections.abc import Mapping, MutableMapping
from typing import Any, Final, TextIO

import structlog

_REDACTED_VALUE: Final[str] = "***REDACTED***"

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
    "client_secret",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b([A-Z0-9_]*(?:api[_-]?key|token|password|secret|authorization)[A-Z0-9_]*)"
    r"\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")


def setup_logging(
    logging_config: Mapping[str, object] | None = None,
    *,
    stream: TextIO | None = None,
) -> None:
    """Configure structlog from the ``[logging]`` section of ``envexec.toml``."""

    cfg = dict(logging_config or {})
    raw_level = cfg.get("level", "INFO")
    level_name = raw_level.upper() if isinstance(raw_level, str) else "INFO"
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]
    if bool(cfg.get("redact_secrets", True)):
        processors.append(redact_event)
    if bool(cfg.get("json", True)):
        processors.append(structlog.processors.dict_tracebacks)
        processors.append(structlog.processors.JSONRenderer(sort_keys=True))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=stream or sys.stderr),
        cache_logger_on_first_use=False,
    )


def redact_event(
    _logger: object, _method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor applying :func:`redact_value` to every field except ``event``."""

    for key in list(event_dict):
        if key == "event":
            continue
        event_dict[key] = redact_value(event_dict[key], key_context=key)
    return event_dict


def redact_value(value: Any, *, key_context: str | None = None) -> Any:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return _REDACTED_VALUE

    if isinstance(value, str):
        return _redact_string(value)

    if isinstance(value, (list, tuple)):
        return [redact_value(item) for item in value]

    if isinstance(value, Mapping):
        return {key: redact_value(item, key_context=str(key)) for key, item in value.items()}

    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def _redact_string(text: str) -> str:
    # Bearer tokens first so "Authorization: Bearer x" does not leave x behind.
    redacted = _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", text)
    return _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", redacted
    )


__all__ = ["redact_event", "redact_value", "setup_logging"]
