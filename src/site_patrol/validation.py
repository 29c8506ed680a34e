"""Input validation shared by config loading, target editing and submission."""

from __future__ import annotations

import re
from urllib.parse import urlsplit

from .errors import StoreError, SubmissionValidationError

ALLOWED_ENDPOINT_SCHEMES = frozenset({"http", "https"})
MIN_TIMEOUT_SECONDS = 1
MAX_TIMEOUT_SECONDS = 300
TARGET_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._:-]{0,63}$")


def validate_endpoint(url: object) -> str:
    """Return the stripped endpoint URL or raise when its scheme is not http(s)."""
    if not isinstance(url, str) or not url.strip():
        raise SubmissionValidationError("Submission endpoint is empty.")
    candidate = url.strip()
    try:
        parts = urlsplit(candidate)
        # Port parsing is lazy; touching it surfaces malformed netlocs.
        parts.port
    except ValueError as exc:
        raise SubmissionValidationError(f"Invalid submission endpoint format: {candidate}") from exc
    if parts.scheme.lower() not in ALLOWED_ENDPOINT_SCHEMES:
        raise SubmissionValidationError(f"Invalid submission endpoint protocol: {candidate}")
    if not parts.hostname:
        raise SubmissionValidationError(f"Invalid submission endpoint format: {candidate}")
    return candidate


def is_allowed_endpoint(url: object) -> bool:
    try:
        validate_endpoint(url)
    except SubmissionValidationError:
        return False
    return True


def validate_target_id(target_id: object) -> str:
    if not isinstance(target_id, str) or not TARGET_ID_RE.fullmatch(target_id.strip()):
        raise StoreError(
            f"Invalid target id '{target_id}'. Use 1-64 characters from [A-Za-z0-9._:-], "
            "starting with a letter or digit."
        )
    return target_id.strip()


def validate_target_url(target_id: str, url: object) -> str:
    if not isinstance(url, str) or not url.strip():
        raise StoreError(f"Target '{target_id}' has no url.")
    candidate = url.strip()
    try:
        parts = urlsplit(candidate)
    except ValueError as exc:
        raise StoreError(f"Target '{target_id}' has an invalid url: {candidate}") from exc
    if not parts.scheme or not (parts.netloc or parts.path):
        raise StoreError(f"Target '{target_id}' has an invalid url: {candidate}")
    return candidate


def validate_timeout_seconds(target_id: str, value: object) -> int:
    if (
        isinstance(value, bool)
        or not isinstance(value, int)
        or not MIN_TIMEOUT_SECONDS <= value <= MAX_TIMEOUT_SECONDS
    ):
        raise StoreError(
            f"Target '{target_id}' timeout_seconds must be an integer between "
            f"{MIN_TIMEOUT_SECONDS} and {MAX_TIMEOUT_SECONDS}."
        )
    return value
