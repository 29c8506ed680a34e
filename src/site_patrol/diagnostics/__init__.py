"""Run events and error-message redaction."""

from .events import (
    RUN_EVENT_SCHEMA_VERSION,
    JsonlEventLogger,
    RunEventType,
    build_run_event,
    read_run_events,
    validate_run_event,
)
from .redaction import MAX_ERROR_CHARS, REDACTED, redact_text, redact_value, sanitize_error_message

__all__ = [
    "MAX_ERROR_CHARS",
    "REDACTED",
    "RUN_EVENT_SCHEMA_VERSION",
    "JsonlEventLogger",
    "RunEventType",
    "build_run_event",
    "read_run_events",
    "redact_text",
    "redact_value",
    "sanitize_error_message",
    "validate_run_event",
]
