"""Redaction helpers for persisted run errors and diagnostic payloads."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import re
from typing import Any

MAX_ERROR_CHARS = 100
REDACTED = "[REDACTED]"

_SECRET_WORD_RE = re.compile(r"api[ _-]?key|password|token|secret|key", re.IGNORECASE)
_SENSITIVE_KEY_MARKERS = (
    "cookie",
    "token",
    "authorization",
    "password",
    "secret",
    "api_key",
    "apikey",
)
_SENSITIVE_VALUE_PATTERNS = (
    re.compile(r"(?i)(authorization\s*[:=]\s*)(bearer\s+[a-z0-9._~+/-]+)"),
    re.compile(r"(?i)(set-cookie\s*[:=]\s*)([^;\n]+)"),
)


def sanitize_error_message(raw: object, *, max_chars: int = MAX_ERROR_CHARS) -> str:
    """Redact secret-like words and clip to ``max_chars`` before persisting."""
    text = redact_text(_message_text(raw))
    text = _SECRET_WORD_RE.sub(REDACTED, text)
    return text[:max_chars]


def redact_text(value: str) -> str:
    """Redact credential-bearing header values from free-form text."""
    redacted = value
    for pattern in _SENSITIVE_VALUE_PATTERNS:
        redacted = pattern.sub(lambda match: f"{match.group(1)}{REDACTED}", redacted)
    return redacted


def redact_value(value: Any) -> Any:
    """Recursively redact mapping/list/scalar values for safe diagnostics output."""
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, Mapping):
        sanitized: dict[str, Any] = {}
        for key, child in value.items():
            key_str = str(key)
            if _is_sensitive_key(key_str):
                sanitized[key_str] = REDACTED
            else:
                sanitized[key_str] = redact_value(child)
        return sanitized
    if isinstance(value, tuple):
        return tuple(redact_value(child) for child in value)
    if isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
        return [redact_value(child) for child in value]
    return value


def _message_text(raw: object) -> str:
    if isinstance(raw, BaseException):
        text = str(raw)
        return text or type(raw).__name__
    return str(raw)


def _is_sensitive_key(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SENSITIVE_KEY_MARKERS)
