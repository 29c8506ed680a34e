"""JSON target and state documents."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
import json
from pathlib import Path
from zoneinfo import ZoneInfo

import pytest

from site_patrol.errors import StoreError
from site_patrol.models import DailySchedule, HourlySchedule, RunState, RunStatus, Target, WeeklySchedule
from site_patrol.store.documents import (
    JsonStateStore,
    JsonTargetStore,
    add_target,
    remove_target,
    update_target,
    validate_target,
)

NOW = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)


def test_missing_documents_load_as_empty(tmp_path: Path) -> None:
    assert JsonTargetStore(tmp_path / "targets.json").load() == {}
    state_store = JsonStateStore(tmp_path / "state.json")
    assert state_store.load() == {}
    assert not state_store.exists()


def test_target_document_round_trips_every_schedule_kind(tmp_path: Path) -> None:
    store = JsonTargetStore(tmp_path / "targets.json")
    targets = {
        "hourly": Target("hourly", "https://a.example.test/", schedule=HourlySchedule(minute=15)),
        "daily": Target("daily", "https://b.example.test/", enabled=False, schedule=DailySchedule(at="09:30")),
        "weekly": Target(
            "weekly", "https://c.example.test/", timeout_seconds=90, schedule=WeeklySchedule(day_of_week=0, at="23:00")
        ),
    }

    store.save(targets)

    assert store.load() == targets
    document = json.loads(store.path.read_text(encoding="utf-8"))
    assert document["targets"]["weekly"] == {
        "url": "https://c.example.test/",
        "enabled": True,
        "timeout_seconds": 90,
        "schedule": {"type": "weekly", "day_of_week": 0, "at": "23:00"},
    }


def test_target_defaults_apply_to_sparse_entries(tmp_path: Path) -> None:
    path = tmp_path / "targets.json"
    path.write_text(
        json.dumps({"targets": {"t1": {"url": "https://t1.example.test/", "schedule": {"type": "hourly"}}}}),
        encoding="utf-8",
    )

    assert JsonTargetStore(path).load()["t1"] == Target("t1", "https://t1.example.test/")


def test_state_document_round_trips_aware_timestamps(tmp_path: Path) -> None:
    tokyo = ZoneInfo("Asia/Tokyo")
    store = JsonStateStore(tmp_path / "state.json")
    states = {
        "t1": RunState(
            next_run_at=datetime(2026, 10, 14, 22, 0, tzinfo=tokyo),
            last_status=RunStatus.FAIL,
            fail_count=2,
            last_run_at=datetime(2026, 10, 14, 21, 0, tzinfo=tokyo),
            last_error="boom",
        ),
        "t2": RunState(next_run_at=NOW),
    }

    store.save(states)
    loaded = store.load()

    assert store.exists()
    assert loaded == states
    assert loaded["t1"].next_run_at.utcoffset() == timedelta(hours=9)
    assert loaded["t2"].last_status is None


def test_naive_state_timestamps_are_read_as_utc(tmp_path: Path) -> None:
    path = tmp_path / "state.json"
    path.write_text(json.dumps({"targets": {"t1": {"next_run_at": "2026-10-14T12:00:00"}}}), encoding="utf-8")

    assert JsonStateStore(path).load()["t1"].next_run_at == NOW


@pytest.mark.parametrize(
    ("document", "message"),
    [
        ("{not json", "not valid JSON"),
        ("[]", "must be a JSON object"),
        ('{"targets": []}', "must be an object"),
        ('{"targets": {"t1": {"last_status": "ok"}}}', "missing next_run_at"),
        ('{"targets": {"t1": {"next_run_at": "yesterday"}}}', "not an ISO timestamp"),
        ('{"targets": {"t1": {"next_run_at": "2026-10-14T12:00:00+00:00", "last_status": "meh"}}}', "unknown last_status"),
        ('{"targets": {"t1": {"next_run_at": "2026-10-14T12:00:00+00:00", "fail_count": -1}}}', "fail_count"),
    ],
)
def test_invalid_state_documents_raise_store_error(tmp_path: Path, document: str, message: str) -> None:
    path = tmp_path / "state.json"
    path.write_text(document, encoding="utf-8")

    with pytest.raises(StoreError, match=message):
        JsonStateStore(path).load()


@pytest.mark.parametrize(
    ("entry", "message"),
    [
        ({"url": "https://t.example.test/", "schedule": {"type": "monthly"}}, "schedule type must be one of"),
        ({"url": "https://t.example.test/", "schedule": {"type": "hourly", "minute": 60}}, "minute"),
        ({"url": "https://t.example.test/", "schedule": {"type": "daily", "at": "9:00"}}, "Invalid time"),
        ({"url": "https://t.example.test/", "schedule": {"type": "weekly", "day_of_week": 7, "at": "09:00"}}, "day_of_week"),
        ({"url": "https://t.example.test/", "timeout_seconds": 301, "schedule": {"type": "hourly"}}, "timeout_seconds"),
        ({"url": "", "schedule": {"type": "hourly"}}, "has no url"),
        ({"url": "https://t.example.test/", "enabled": "yes", "schedule": {"type": "hourly"}}, "enabled"),
    ],
)
def test_invalid_targets_raise_store_error(tmp_path: Path, entry: dict[str, object], message: str) -> None:
    path = tmp_path / "targets.json"
    path.write_text(json.dumps({"targets": {"t1": entry}}), encoding="utf-8")

    with pytest.raises(StoreError, match=message):
        JsonTargetStore(path).load()


def test_save_replaces_document_atomically(tmp_path: Path) -> None:
    store = JsonStateStore(tmp_path / "nested" / "state.json")

    store.save({"t1": RunState(next_run_at=NOW)})
    store.save({"t2": RunState(next_run_at=NOW)})

    assert set(store.load()) == {"t2"}
    assert [path.name for path in store.path.parent.iterdir()] == ["state.json"]


def test_add_target_validates_and_rejects_duplicates(tmp_path: Path) -> None:
    store = JsonTargetStore(tmp_path / "targets.json")

    added = add_target(store, Target(" t1 ", " https://t1.example.test/ "))

    assert added == Target("t1", "https://t1.example.test/")
    assert store.load() == {"t1": added}
    with pytest.raises(StoreError, match="already exists"):
        add_target(store, Target("t1", "https://other.example.test/"))


@pytest.mark.parametrize("target_id", ["", "-leading-dash", "has space", "x" * 65])
def test_invalid_target_ids_are_rejected(target_id: str) -> None:
    with pytest.raises(StoreError, match="Invalid target id"):
        validate_target(Target(target_id, "https://t.example.test/"))


def test_remove_target_deletes_target_and_state_together(tmp_path: Path) -> None:
    target_store = JsonTargetStore(tmp_path / "targets.json")
    state_store = JsonStateStore(tmp_path / "state.json")
    target_store.save({"t1": Target("t1", "https://t1.example.test/"), "t2": Target("t2", "https://t2.example.test/")})
    state_store.save({"t1": RunState(next_run_at=NOW), "t2": RunState(next_run_at=NOW)})

    removal = remove_target(target_store, state_store, "t1")

    assert removal.target_removed and removal.state_removed

    assert set(target_store.load()) == {"t2"}
    assert set(state_store.load()) == {"t2"}


def test_remove_unknown_target_changes_nothing(tmp_path: Path) -> None:
    target_store = JsonTargetStore(tmp_path / "targets.json")
    state_store = JsonStateStore(tmp_path / "state.json")

    assert not remove_target(target_store, state_store, "nope").changed
    assert not target_store.path.exists()
    assert not state_store.exists()


def test_remove_target_clears_orphaned_state(tmp_path: Path) -> None:
    target_store = JsonTargetStore(tmp_path / "targets.json")
    state_store = JsonStateStore(tmp_path / "state.json")
    state_store.save({"gone": RunState(next_run_at=NOW), "t2": RunState(next_run_at=NOW)})

    removal = remove_target(target_store, state_store, "gone")

    assert removal.changed
    assert not removal.target_removed
    assert removal.state_removed
    assert set(state_store.load()) == {"t2"}


def test_update_target_keeps_scheduled_next_run(tmp_path: Path) -> None:
    target_store = JsonTargetStore(tmp_path / "targets.json")
    state_store = JsonStateStore(tmp_path / "state.json")
    add_target(target_store, Target("t1", "https://t1.example.test/", enabled=False))
    scheduled = RunState(next_run_at=NOW + timedelta(minutes=17), fail_count=2, last_status=RunStatus.FAIL)
    state_store.save({"t1": scheduled})
    state_before = state_store.path.read_bytes()

    updated = update_target(
        target_store,
        "t1",
        url="https://t1.example.test/v2",
        enabled=True,
        timeout_seconds=90,
        schedule=DailySchedule(at="06:15"),
    )

    assert updated == Target("t1", "https://t1.example.test/v2", True, 90, DailySchedule(at="06:15"))
    assert target_store.load()["t1"] == updated
    assert state_store.path.read_bytes() == state_before
    assert state_store.load()["t1"].next_run_at == NOW + timedelta(minutes=17)


def test_update_target_only_touches_given_fields(tmp_path: Path) -> None:
    target_store = JsonTargetStore(tmp_path / "targets.json")
    add_target(target_store, Target("t1", "https://t1.example.test/", schedule=WeeklySchedule(day_of_week=3, at="08:00")))

    updated = update_target(target_store, "t1", enabled=False)

    assert updated.enabled is False
    assert updated.url == "https://t1.example.test/"
    assert updated.schedule == WeeklySchedule(day_of_week=3, at="08:00")


def test_update_target_validates_and_rejects_unknown_ids(tmp_path: Path) -> None:
    target_store = JsonTargetStore(tmp_path / "targets.json")
    add_target(target_store, Target("t1", "https://t1.example.test/"))

    with pytest.raises(StoreError, match="not found"):
        update_target(target_store, "t9", enabled=True)
    with pytest.raises(StoreError):
        update_target(target_store, "t1", timeout_seconds=301)
    assert target_store.load()["t1"].timeout_seconds == 30
