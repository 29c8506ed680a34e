"""Execution engine: outcome recording and guaranteed session release."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from site_patrol.engine.handshake import RetryPolicy
from site_patrol.engine.runner import ExecutionEngine
from site_patrol.errors import BrowserError, StoreError, SubmissionNetworkError
from site_patrol.models import HourlySchedule, RunState, RunStatus, Target
from site_patrol.testing.fakes import (
    FakeRenderSession,
    FakeSessionFactory,
    InMemoryStateStore,
    RecordingSubmitter,
)
from site_patrol.testing.time_control import ManualClock, fixed_now

NOW = datetime(2026, 10, 14, 12, 10, tzinfo=timezone.utc)
URL = "https://t1.example.test/"
TARGET = Target(target_id="t1", url=URL, timeout_seconds=30, schedule=HourlySchedule(minute=0))
REPLY = {"targetId": "t1", "url": URL, "capturedAt": 1, "payload": {"ok": True}}


def _engine(
    session: FakeRenderSession | None,
    state_store: InMemoryStateStore,
    *,
    clock: ManualClock,
    submitter: RecordingSubmitter | None = None,
    open_error: Exception | None = None,
) -> ExecutionEngine:
    sessions = FakeSessionFactory({URL: session} if session is not None else {}, open_error=open_error)
    return ExecutionEngine(
        sessions,
        submitter or RecordingSubmitter(),
        state_store,
        retry_policy=RetryPolicy(),
        poll_interval_seconds=0.5,
        now_fn=fixed_now(NOW),
        clock=clock,
    )


def test_success_records_ok_state_and_submits_full_result() -> None:
    clock = ManualClock()
    session = FakeRenderSession(clock, url=URL, reply=REPLY)
    submitter = RecordingSubmitter()
    state_store = InMemoryStateStore(
        {"t1": RunState(next_run_at=NOW - timedelta(hours=3), last_status=RunStatus.FAIL, fail_count=2)}
    )

    outcome = _engine(session, state_store, clock=clock, submitter=submitter).execute("t1", {"t1": TARGET})

    assert outcome.ok
    assert outcome.next_run_at == datetime(2026, 10, 14, 13, 0, tzinfo=timezone.utc)
    assert state_store.states["t1"] == RunState(
        next_run_at=datetime(2026, 10, 14, 13, 0, tzinfo=timezone.utc),
        last_status=RunStatus.OK,
        fail_count=0,
        last_run_at=NOW,
        last_error=None,
    )
    assert [result.to_submission() for result in submitter.submitted] == [
        {"targetId": "t1", "url": URL, "capturedAt": 1, "payload": {"ok": True}}
    ]
    assert session.closed


def test_state_is_written_before_session_is_closed() -> None:
    clock = ManualClock()
    session = FakeRenderSession(clock, url=URL, reply=REPLY)
    state_store = InMemoryStateStore(events=session.events)

    _engine(session, state_store, clock=clock).execute("t1", {"t1": TARGET})

    assert session.events[-2:] == ["state.save", "close"]


def test_explicit_collector_error_records_failure() -> None:
    clock = ManualClock()
    session = FakeRenderSession(clock, url=URL, reply={"targetId": "t1", "error": "boom"})
    state_store = InMemoryStateStore({"t1": RunState(next_run_at=NOW, fail_count=2)})

    outcome = _engine(session, state_store, clock=clock).execute("t1", {"t1": TARGET})

    assert not outcome.ok
    assert outcome.error == "boom"
    assert state_store.states["t1"] == RunState(
        next_run_at=NOW + timedelta(hours=1),
        last_status=RunStatus.FAIL,
        fail_count=3,
        last_run_at=NOW,
        last_error="boom",
    )
    assert session.closed


def test_missing_target_is_recorded_as_config_inconsistency() -> None:
    clock = ManualClock()
    state_store = InMemoryStateStore()
    sessions = FakeSessionFactory()
    engine = ExecutionEngine(sessions, RecordingSubmitter(), state_store, now_fn=fixed_now(NOW), clock=clock)

    outcome = engine.execute("ghost", {"t1": TARGET})

    assert not outcome.ok
    assert sessions.opened == []
    assert state_store.states["ghost"].last_status is RunStatus.FAIL
    assert state_store.states["ghost"].fail_count == 1
    assert "ghost" in (state_store.states["ghost"].last_error or "")


def test_readiness_timeout_records_failure_and_closes_session() -> None:
    clock = ManualClock()
    session = FakeRenderSession(clock, url=URL, load_after=None, reply=REPLY)
    state_store = InMemoryStateStore()

    outcome = _engine(session, state_store, clock=clock).execute("t1", {"t1": TARGET})

    assert outcome.error == "Timeout after 30 seconds"
    assert session.commands == []
    assert session.closed


def test_session_open_failure_is_recorded() -> None:
    clock = ManualClock()
    state_store = InMemoryStateStore()

    outcome = _engine(
        None, state_store, clock=clock, open_error=BrowserError("net::ERR_NAME_NOT_RESOLVED")
    ).execute("t1", {"t1": TARGET})

    assert not outcome.ok
    assert state_store.states["t1"].last_error == "net::ERR_NAME_NOT_RESOLVED"


def test_submission_failure_is_sanitized_before_persisting() -> None:
    clock = ManualClock()
    session = FakeRenderSession(clock, url=URL, reply=REPLY)
    submitter = RecordingSubmitter(error=SubmissionNetworkError("API returned 401: bad api_key=abc123"))
    state_store = InMemoryStateStore()

    outcome = _engine(session, state_store, clock=clock, submitter=submitter).execute("t1", {"t1": TARGET})

    assert outcome.error == "API returned 401: bad [REDACTED]=abc123"
    assert state_store.states["t1"].last_error == outcome.error


def test_unexpected_exception_is_recorded_not_raised() -> None:
    clock = ManualClock()
    session = FakeRenderSession(clock, url=URL, reply=REPLY)
    submitter = RecordingSubmitter(error=ValueError(""))
    state_store = InMemoryStateStore()

    outcome = _engine(session, state_store, clock=clock, submitter=submitter).execute("t1", {"t1": TARGET})

    assert outcome.error == "ValueError"
    assert session.closed


def test_close_error_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    clock = ManualClock()
    session = FakeRenderSession(clock, url=URL, reply=REPLY, close_error=BrowserError("Target closed"))
    state_store = InMemoryStateStore()

    outcome = _engine(session, state_store, clock=clock).execute("t1", {"t1": TARGET})

    assert outcome.ok
    assert state_store.states["t1"].last_status is RunStatus.OK
    assert "Failed to close render session" in caplog.text


def test_state_write_failure_propagates_after_closing_session() -> None:
    clock = ManualClock()
    session = FakeRenderSession(clock, url=URL, reply=REPLY)
    state_store = InMemoryStateStore(save_error=StoreError("disk full"))

    with pytest.raises(StoreError, match="disk full"):
        _engine(session, state_store, clock=clock).execute("t1", {"t1": TARGET})

    assert session.closed
