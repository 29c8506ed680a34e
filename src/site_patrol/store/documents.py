"""JSON document stores for targets and run state.

Each store persists one versionless document and replaces it whole on every
write (read-modify-write, last writer wins). Writes go through a temporary
file and ``os.replace`` so a crash never leaves a half-written document.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from datetime import datetime, timezone
import json
import os
from pathlib import Path
import tempfile
from typing import Any

from site_patrol.errors import SchedulerError, StoreError
from site_patrol.models import (
    DailySchedule,
    HourlySchedule,
    RunState,
    RunStatus,
    ScheduleKind,
    ScheduleSpec,
    Target,
    WeeklySchedule,
)
from site_patrol.scheduler.timing import parse_time_of_day
from site_patrol.store.base import StateStore, TargetStore
from site_patrol.validation import validate_target_id, validate_target_url, validate_timeout_seconds

DOCUMENT_KEY = "targets"


class JsonTargetStore:
    """Target configuration document: ``{"targets": {id: {...}}}``."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Target]:
        entries = _read_document(self._path)
        return {target_id: target_from_dict(target_id, raw) for target_id, raw in entries.items()}

    def save(self, targets: dict[str, Target]) -> None:
        payload = {target_id: target_to_dict(targets[target_id]) for target_id in sorted(targets)}
        _write_document(self._path, payload)


class JsonStateStore:
    """Run-state document: ``{"targets": {id: {...}}}``."""

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def exists(self) -> bool:
        return self._path.is_file()

    def load(self) -> dict[str, RunState]:
        entries = _read_document(self._path)
        return {target_id: run_state_from_dict(target_id, raw) for target_id, raw in entries.items()}

    def save(self, states: dict[str, RunState]) -> None:
        payload = {target_id: run_state_to_dict(states[target_id]) for target_id in sorted(states)}
        _write_document(self._path, payload)


def add_target(
    target_store: TargetStore,
    target: Target,
) -> Target:
    """Add a new target after validation; duplicate ids are rejected."""
    validated = validate_target(target)
    targets = target_store.load()
    if validated.target_id in targets:
        raise StoreError(f"Target '{validated.target_id}' already exists.")
    targets[validated.target_id] = validated
    target_store.save(targets)
    return validated


@dataclass(frozen=True)
class TargetRemoval:
    target_removed: bool
    state_removed: bool

    @property
    def changed(self) -> bool:
        return self.target_removed or self.state_removed


def update_target(
    target_store: TargetStore,
    target_id: str,
    *,
    url: str | None = None,
    enabled: bool | None = None,
    timeout_seconds: int | None = None,
    schedule: ScheduleSpec | None = None,
) -> Target:
    """Replace fields of an existing target.

    Run state is left alone: a new schedule takes effect after the next run,
    and an already scheduled ``next_run_at`` is never pulled in or pushed out.
    """
    targets = target_store.load()
    current = targets.get(target_id)
    if current is None:
        raise StoreError(f"Target '{target_id}' not found.")
    updated = validate_target(
        replace(
            current,
            url=url if url is not None else current.url,
            enabled=enabled if enabled is not None else current.enabled,
            timeout_seconds=timeout_seconds if timeout_seconds is not None else current.timeout_seconds,
            schedule=schedule if schedule is not None else current.schedule,
        )
    )
    if updated != current:
        targets[target_id] = updated
        target_store.save(targets)
    return updated


def remove_target(
    target_store: TargetStore,
    state_store: StateStore,
    target_id: str,
) -> TargetRemoval:
    """Delete a target and its run state together, including orphaned state."""
    targets = target_store.load()
    states = state_store.load()
    target_removed = targets.pop(target_id, None) is not None
    state_removed = states.pop(target_id, None) is not None
    if target_removed:
        target_store.save(targets)
    if state_removed:
        state_store.save(states)
    return TargetRemoval(target_removed=target_removed, state_removed=state_removed)


def validate_target(target: Target) -> Target:
    target_id = validate_target_id(target.target_id)
    url = validate_target_url(target_id, target.url)
    timeout_seconds = validate_timeout_seconds(target_id, target.timeout_seconds)
    if not isinstance(target.enabled, bool):
        raise StoreError(f"Target '{target_id}' enabled must be true or false.")
    schedule = validate_schedule(target_id, target.schedule)
    return Target(
        target_id=target_id,
        url=url,
        enabled=target.enabled,
        timeout_seconds=timeout_seconds,
        schedule=schedule,
    )


def validate_schedule(target_id: str, schedule: object) -> ScheduleSpec:
    if isinstance(schedule, HourlySchedule):
        if isinstance(schedule.minute, bool) or not isinstance(schedule.minute, int) or not 0 <= schedule.minute <= 59:
            raise StoreError(f"Target '{target_id}' hourly minute must be between 0 and 59.")
        return schedule
    if isinstance(schedule, (DailySchedule, WeeklySchedule)):
        try:
            parse_time_of_day(schedule.at)
        except SchedulerError as exc:
            raise StoreError(f"Target '{target_id}': {exc}") from exc
        if isinstance(schedule, WeeklySchedule) and (
            isinstance(schedule.day_of_week, bool)
            or not isinstance(schedule.day_of_week, int)
            or not 0 <= schedule.day_of_week <= 6
        ):
            raise StoreError(f"Target '{target_id}' day_of_week must be between 0 (Sunday) and 6.")
        return schedule
    raise StoreError(f"Target '{target_id}' has an unsupported schedule: {schedule!r}.")


def target_from_dict(target_id: str, raw: Any) -> Target:
    if not isinstance(raw, Mapping):
        raise StoreError(f"Target '{target_id}' must be an object, got {type(raw).__name__}.")
    return validate_target(
        Target(
            target_id=target_id,
            url=raw.get("url", ""),
            enabled=raw.get("enabled", True),
            timeout_seconds=raw.get("timeout_seconds", 30),
            schedule=schedule_from_dict(target_id, raw.get("schedule")),
        )
    )


def target_to_dict(target: Target) -> dict[str, Any]:
    return {
        "url": target.url,
        "enabled": target.enabled,
        "timeout_seconds": target.timeout_seconds,
        "schedule": schedule_to_dict(target.schedule),
    }


def schedule_from_dict(target_id: str, raw: Any) -> ScheduleSpec:
    if not isinstance(raw, Mapping):
        raise StoreError(f"Target '{target_id}' schedule must be an object.")
    kind = raw.get("type")
    if kind == ScheduleKind.HOURLY.value:
        return HourlySchedule(minute=raw.get("minute", 0))
    if kind == ScheduleKind.DAILY.value:
        return DailySchedule(at=raw.get("at", ""))
    if kind == ScheduleKind.WEEKLY.value:
        return WeeklySchedule(day_of_week=raw.get("day_of_week", -1), at=raw.get("at", ""))
    choices = ", ".join(kind.value for kind in ScheduleKind)
    raise StoreError(f"Target '{target_id}' schedule type must be one of [{choices}], got {kind!r}.")


def schedule_to_dict(schedule: ScheduleSpec) -> dict[str, Any]:
    if isinstance(schedule, HourlySchedule):
        return {"type": schedule.kind.value, "minute": schedule.minute}
    if isinstance(schedule, DailySchedule):
        return {"type": schedule.kind.value, "at": schedule.at}
    return {"type": schedule.kind.value, "day_of_week": schedule.day_of_week, "at": schedule.at}


def run_state_from_dict(target_id: str, raw: Any) -> RunState:
    if not isinstance(raw, Mapping):
        raise StoreError(f"State for '{target_id}' must be an object, got {type(raw).__name__}.")
    next_run_at = _parse_instant(target_id, "next_run_at", raw.get("next_run_at"))
    if next_run_at is None:
        raise StoreError(f"State for '{target_id}' is missing next_run_at.")
    status_raw = raw.get("last_status")
    try:
        last_status = RunStatus(status_raw) if status_raw is not None else None
    except ValueError as exc:
        raise StoreError(f"State for '{target_id}' has unknown last_status {status_raw!r}.") from exc
    fail_count = raw.get("fail_count", 0)
    if isinstance(fail_count, bool) or not isinstance(fail_count, int) or fail_count < 0:
        raise StoreError(f"State for '{target_id}' fail_count must be an integer >= 0.")
    last_error = raw.get("last_error")
    return RunState(
        next_run_at=next_run_at,
        last_status=last_status,
        fail_count=fail_count,
        last_run_at=_parse_instant(target_id, "last_run_at", raw.get("last_run_at")),
        last_error=str(last_error) if last_error is not None else None,
    )


def run_state_to_dict(state: RunState) -> dict[str, Any]:
    return {
        "next_run_at": state.next_run_at.isoformat(),
        "last_status": state.last_status.value if state.last_status is not None else None,
        "fail_count": state.fail_count,
        "last_run_at": state.last_run_at.isoformat() if state.last_run_at is not None else None,
        "last_error": state.last_error,
    }


def _parse_instant(target_id: str, field: str, raw: Any) -> datetime | None:
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise StoreError(f"State for '{target_id}' {field} must be an ISO timestamp string.")
    try:
        value = datetime.fromisoformat(raw)
    except ValueError as exc:
        raise StoreError(f"State for '{target_id}' {field} is not an ISO timestamp: {raw!r}.") from exc
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def _read_document(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise StoreError(f"Could not read '{path}': {exc}.") from exc
    if not text.strip():
        return {}
    try:
        document = json.loads(text)
    except json.JSONDecodeError as exc:
        raise StoreError(f"Document '{path}' is not valid JSON: {exc}.") from exc
    if not isinstance(document, dict):
        raise StoreError(f"Document '{path}' must be a JSON object.")
    entries = document.get(DOCUMENT_KEY, {})
    if not isinstance(entries, dict):
        raise StoreError(f"Document '{path}' field '{DOCUMENT_KEY}' must be an object.")
    return entries


def _write_document(path: Path, entries: dict[str, Any]) -> None:
    body = json.dumps({DOCUMENT_KEY: entries}, indent=2, sort_keys=True) + "\n"
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as stream:
                stream.write(body)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
    except OSError as exc:
        raise StoreError(f"Could not write '{path}': {exc}.") from exc
