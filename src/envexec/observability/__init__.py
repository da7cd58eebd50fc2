"""Public observability primitives: structured logging and secret redaction."""

from envexec.observability.logging import redact_event, redact_value, setup_logging

__all__ = ["redact_event", "redact_value", "setup_logging"]
