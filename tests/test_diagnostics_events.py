"""Structured run event schema and JSONL output."""

from __future__ import annotations

from datetime import datetime, timezone
import json
from pathlib import Path

import pytest

from site_patrol.diagnostics.events import (
    RUN_EVENT_SCHEMA_VERSION,
    JsonlEventLogger,
    RunEventType,
    build_run_event,
    ensure_schema_compatible,
    read_run_events,
    validate_run_event,
)
from site_patrol.errors import DiagnosticsError


def test_build_run_event_includes_schema_version_and_redacts_payload() -> None:
    event = build_run_event(
        "target_run",
        cycle_id="wake-1",
        target_id="t1",
        payload={"ok": False, "auth_token": "secret"},
        occurred_at=datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc),
    )

    assert event["schema_version"] == RUN_EVENT_SCHEMA_VERSION
    assert event["event_type"] == "target_run"
    assert event["cycle_id"] == "wake-1"
    assert event["target_id"] == "t1"
    assert event["occurred_at"] == "2026-10-14T12:00:00+00:00"
    assert event["payload"] == {"ok": False, "auth_token": "[REDACTED]"}


def test_blank_target_id_is_stored_as_null() -> None:
    event = build_run_event("wake_cycle", cycle_id="wake-1", target_id="  ")

    assert event["target_id"] is None


@pytest.mark.parametrize(
    ("event_type", "cycle_id", "message"),
    [(" ", "wake-1", "event_type"), ("wake_cycle", "", "cycle_id")],
)
def test_build_run_event_rejects_blank_identifiers(event_type: str, cycle_id: str, message: str) -> None:
    with pytest.raises(DiagnosticsError, match=message):
        build_run_event(event_type, cycle_id=cycle_id)


def test_validate_run_event_rejects_missing_required_fields() -> None:
    with pytest.raises(DiagnosticsError, match="missing required field 'cycle_id'"):
        validate_run_event(
            {
                "schema_version": "v1",
                "event_type": "wake_cycle",
                "occurred_at": "2026-10-14T00:00:00+00:00",
                "target_id": None,
                "payload": {},
            }
        )


def test_ensure_schema_compatible_accepts_current_major_forms() -> None:
    ensure_schema_compatible("v1")
    ensure_schema_compatible("1.2")


@pytest.mark.parametrize("version", ["v2", "2.0"])
def test_ensure_schema_compatible_rejects_other_majors(version: str) -> None:
    with pytest.raises(DiagnosticsError, match="Incompatible run event schema"):
        ensure_schema_compatible(version)


def test_ensure_schema_compatible_rejects_malformed_versions() -> None:
    with pytest.raises(DiagnosticsError, match="Invalid schema version"):
        ensure_schema_compatible("latest")


def test_jsonl_event_logger_appends_one_line_per_event(tmp_path: Path) -> None:
    logger = JsonlEventLogger(tmp_path / "logs" / "run-events.jsonl")

    logger.append("target_run", cycle_id="wake-1", target_id="t1", payload={"ok": True})
    logger.append("wake_cycle", cycle_id="wake-1", payload={"succeeded": 1, "failed": 0})

    lines = logger.path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line)["event_type"] for line in lines] == ["target_run", "wake_cycle"]
    assert json.loads(lines[1])["payload"] == {"failed": 0, "succeeded": 1}


def test_unknown_event_type_is_rejected() -> None:
    with pytest.raises(DiagnosticsError, match="Unknown event_type 'target_started'"):
        build_run_event("target_started", cycle_id="wake-1", target_id="t1")


def test_target_run_requires_target_and_wake_cycle_forbids_one() -> None:
    with pytest.raises(DiagnosticsError, match="must name a target_id"):
        build_run_event(RunEventType.TARGET_RUN, cycle_id="wake-1")
    with pytest.raises(DiagnosticsError, match="target_id must be null"):
        build_run_event(RunEventType.WAKE_CYCLE, cycle_id="wake-1", target_id="t1")


def test_read_run_events_yields_validated_lines(tmp_path: Path) -> None:
    logger = JsonlEventLogger(tmp_path / "events.jsonl")
    logger.append(RunEventType.TARGET_RUN, cycle_id="wake-1", target_id="t1", payload={"ok": True})
    logger.append(RunEventType.WAKE_CYCLE, cycle_id="wake-1")

    events = list(read_run_events(logger.path))

    assert [(event["event_type"], event["target_id"]) for event in events] == [
        ("target_run", "t1"),
        ("wake_cycle", None),
    ]


def test_read_run_events_reports_line_number_of_bad_entry(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    JsonlEventLogger(path).append("wake_cycle", cycle_id="wake-1")
    with path.open("a", encoding="utf-8") as stream:
        stream.write("{not json\n")

    with pytest.raises(DiagnosticsError, match="Line 2"):
        list(read_run_events(path))
