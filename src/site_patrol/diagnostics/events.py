"""JSONL run events written by wake cycles.

Two event kinds exist. ``target_run`` is written once per executed target and
always names it; ``wake_cycle`` closes every cycle and never does. Each line
carries ``schema_version`` so readers can refuse files from an incompatible
major version.
"""

from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timezone
from enum import Enum
import json
from pathlib import Path
import re
from typing import Any

from site_patrol.diagnostics.redaction import redact_value
from site_patrol.errors import DiagnosticsError

RUN_EVENT_SCHEMA_VERSION = "v1"

_EVENT_FIELDS = ("schema_version", "event_type", "occurred_at", "cycle_id", "target_id", "payload")
_SCHEMA_PATTERN = re.compile(r"^v?(?P<major>\d+)(?:[._-]\d+)?$")


class RunEventType(str, Enum):
    TARGET_RUN = "target_run"
    WAKE_CYCLE = "wake_cycle"


class JsonlEventLogger:
    """Append validated run events to a JSONL file, one object per line."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)
        self._path.parent.mkdir(parents=True, exist_ok=True)

    @property
    def path(self) -> Path:
        return self._path

    def append(
        self,
        event_type: str | RunEventType,
        *,
        cycle_id: str,
        target_id: str | None = None,
        payload: dict[str, Any] | None = None,
        occurred_at: datetime | None = None,
    ) -> dict[str, Any]:
        event = build_run_event(
            event_type,
            cycle_id=cycle_id,
            target_id=target_id,
            payload=payload,
            occurred_at=occurred_at,
        )
        try:
            with self._path.open("a", encoding="utf-8") as stream:
                stream.write(json.dumps(event, sort_keys=True, default=str) + "\n")
        except OSError as exc:
            raise DiagnosticsError(f"Could not append run event to '{self._path}': {exc}") from exc
        return event


def build_run_event(
    event_type: str | RunEventType,
    *,
    cycle_id: str,
    target_id: str | None = None,
    payload: dict[str, Any] | None = None,
    occurred_at: datetime | None = None,
) -> dict[str, Any]:
    """Return a redacted event dict, rejecting events that would not validate."""
    if payload is not None and not isinstance(payload, dict):
        raise DiagnosticsError("payload must be a dictionary.")
    moment = occurred_at or datetime.now(timezone.utc)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)

    event = {
        "schema_version": RUN_EVENT_SCHEMA_VERSION,
        "event_type": _event_type_value(event_type),
        "occurred_at": moment.isoformat(),
        "cycle_id": cycle_id.strip(),
        "target_id": (target_id or "").strip() or None,
        "payload": redact_value(payload or {}),
    }
    validate_run_event(event)
    return event


def validate_run_event(event: dict[str, Any]) -> None:
    missing = [name for name in _EVENT_FIELDS if name not in event]
    if missing:
        raise DiagnosticsError(f"Run event missing required field '{missing[0]}'.")

    ensure_schema_compatible(event["schema_version"])
    kind = _event_type_value(event["event_type"])
    cycle_id = event["cycle_id"]
    if not isinstance(cycle_id, str) or not cycle_id.strip():
        raise DiagnosticsError("cycle_id must be a non-empty string.")

    target_id = event["target_id"]
    if target_id is not None and not isinstance(target_id, str):
        raise DiagnosticsError("target_id must be a string or null.")
    if kind == RunEventType.TARGET_RUN.value and not target_id:
        raise DiagnosticsError("target_run events must name a target_id.")
    if kind == RunEventType.WAKE_CYCLE.value and target_id is not None:
        raise DiagnosticsError("wake_cycle events cover the whole cycle; target_id must be null.")

    if not isinstance(event["payload"], dict):
        raise DiagnosticsError("payload must be an object.")


def read_run_events(path: str | Path) -> Iterator[dict[str, Any]]:
    """Yield validated events from a JSONL file; a bad line names its line number."""
    with Path(path).open("r", encoding="utf-8") as stream:
        for number, line in enumerate(stream, start=1):
            if not line.strip():
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError as exc:
                raise DiagnosticsError(f"Line {number} of '{path}' is not valid JSON: {exc}") from exc
            if not isinstance(event, dict):
                raise DiagnosticsError(f"Line {number} of '{path}' is not a JSON object.")
            try:
                validate_run_event(event)
            except DiagnosticsError as exc:
                raise DiagnosticsError(f"Line {number} of '{path}': {exc}") from exc
            yield event


def ensure_schema_compatible(schema_version: object) -> None:
    """Accept any version whose major matches the one this package writes."""
    if not isinstance(schema_version, str):
        raise DiagnosticsError("schema_version must be a string.")
    expected = _schema_major(RUN_EVENT_SCHEMA_VERSION)
    if _schema_major(schema_version) != expected:
        raise DiagnosticsError(
            f"Incompatible run event schema '{schema_version}'. Expected major '{expected}'."
        )


def _schema_major(version: str) -> str:
    match = _SCHEMA_PATTERN.match(version.strip().lower())
    if match is None:
        raise DiagnosticsError(f"Invalid schema version '{version}'. Use forms like 'v1' or '1.0'.")
    return match.group("major")


def _event_type_value(event_type: object) -> str:
    raw = event_type.value if isinstance(event_type, RunEventType) else event_type
    if not isinstance(raw, str):
        raise DiagnosticsError("event_type must be a string.")
    try:
        return RunEventType(raw.strip()).value
    except ValueError as exc:
        known = ", ".join(kind.value for kind in RunEventType)
        raise DiagnosticsError(f"Unknown event_type '{raw}'. Expected one of: {known}.") from exc
