"""Per-target execution: open, wait, extract, submit, record, release."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import time

from site_patrol.diagnostics.redaction import sanitize_error_message
from site_patrol.engine.base import RenderSession, RenderSessionFactory
from site_patrol.engine.handshake import DEFAULT_HANDSHAKE_MARGIN_SECONDS, RetryPolicy, request_extraction
from site_patrol.engine.readiness import await_ready
from site_patrol.engine.submit import Submitter
from site_patrol.errors import ConfigInconsistency, RunFailure
from site_patrol.models import RunState, RunStatus, Target
from site_patrol.scheduler.timing import next_run_after_failure, next_run_after_success
from site_patrol.store.base import StateStore

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]
ClockFn = Callable[[], float]


@dataclass(frozen=True)
class RunOutcome:
    target_id: str
    status: RunStatus
    started_at: datetime
    next_run_at: datetime
    fail_count: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is RunStatus.OK


class ExecutionEngine:
    """Run one target end to end and persist its outcome.

    Every run gets its own render session. Failures of any kind end the run,
    are written to the target's state entry, and never propagate; only a
    failed state write escapes. The session is closed after the state write
    on every path, and close errors are logged.
    """

    def __init__(
        self,
        sessions: RenderSessionFactory,
        submitter: Submitter,
        state_store: StateStore,
        *,
        retry_policy: RetryPolicy | None = None,
        handshake_margin_seconds: float = DEFAULT_HANDSHAKE_MARGIN_SECONDS,
        poll_interval_seconds: float = 0.1,
        now_fn: NowFn | None = None,
        clock: ClockFn = time.monotonic,
    ) -> None:
        self._sessions = sessions
        self._submitter = submitter
        self._state_store = state_store
        self._retry_policy = retry_policy or RetryPolicy()
        self._handshake_margin_seconds = handshake_margin_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._now = now_fn or (lambda: datetime.now(timezone.utc))
        self._clock = clock

    def execute(self, target_id: str, targets: Mapping[str, Target]) -> RunOutcome:
        now = self._now()
        target = targets.get(target_id)
        if target is None:
            return self._record_failure(
                target_id, now, ConfigInconsistency(f"Target not found in config: {target_id}")
            )

        logger.info("Running target '%s' (%s)", target.target_id, target.url)
        try:
            session = self._sessions.open_session(target.url)
        except Exception as exc:
            return self._record_failure(target.target_id, now, exc)

        try:
            return self._drive(session, target, now)
        finally:
            self._release(session, target.target_id)

    def _drive(self, session: RenderSession, target: Target, now: datetime) -> RunOutcome:
        try:
            await_ready(
                session,
                timeout_seconds=target.timeout_seconds,
                poll_interval_seconds=self._poll_interval_seconds,
                clock=self._clock,
            )
            result = request_extraction(
                session,
                target.target_id,
                timeout_seconds=target.timeout_seconds,
                policy=self._retry_policy,
                margin_seconds=self._handshake_margin_seconds,
                poll_interval_seconds=self._poll_interval_seconds,
                clock=self._clock,
            )
            self._submitter.submit(result)
        except Exception as exc:
            return self._record_failure(target.target_id, now, exc)
        return self._record_success(target, now)

    def _record_success(self, target: Target, now: datetime) -> RunOutcome:
        next_run_at = next_run_after_success(now, target.schedule)
        states = self._state_store.load()
        states[target.target_id] = RunState(
            next_run_at=next_run_at,
            last_status=RunStatus.OK,
            fail_count=0,
            last_run_at=now,
            last_error=None,
        )
        self._state_store.save(states)
        logger.info("Target '%s' succeeded; next run not before %s", target.target_id, next_run_at.isoformat())
        return RunOutcome(
            target_id=target.target_id,
            status=RunStatus.OK,
            started_at=now,
            next_run_at=next_run_at,
            fail_count=0,
        )

    def _record_failure(self, target_id: str, now: datetime, error: Exception) -> RunOutcome:
        if isinstance(error, RunFailure):
            logger.warning("Target '%s' failed: %s", target_id, error)
        else:
            logger.error("Target '%s' failed unexpectedly", target_id, exc_info=error)

        message = sanitize_error_message(error)
        next_run_at = next_run_after_failure(now)
        states = self._state_store.load()
        previous = states.get(target_id)
        fail_count = (previous.fail_count if previous is not None else 0) + 1
        states[target_id] = RunState(
            next_run_at=next_run_at,
            last_status=RunStatus.FAIL,
            fail_count=fail_count,
            last_run_at=now,
            last_error=message,
        )
        self._state_store.save(states)
        return RunOutcome(
            target_id=target_id,
            status=RunStatus.FAIL,
            started_at=now,
            next_run_at=next_run_at,
            fail_count=fail_count,
            error=message,
        )

    def _release(self, session: RenderSession, target_id: str) -> None:
        try:
            session.close()
        except Exception as exc:
            logger.warning("Failed to close render session for '%s': %s", target_id, exc)
