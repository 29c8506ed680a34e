"""Wake-cycle orchestration: reconcile, select due targets, run them in order."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
import logging
from typing import Any

from site_patrol.browser.session import PlaywrightBrowserSession
from site_patrol.config import RuntimeConfig
from site_patrol.diagnostics.events import JsonlEventLogger, RunEventType
from site_patrol.diagnostics.redaction import sanitize_error_message
from site_patrol.engine.base import RenderSessionFactory
from site_patrol.engine.handshake import RetryPolicy
from site_patrol.engine.runner import ExecutionEngine, RunOutcome
from site_patrol.engine.submit import HttpSubmitter, Submitter
from site_patrol.errors import DiagnosticsError
from site_patrol.models import RunState, Target
from site_patrol.scheduler.reconcile import reconcile
from site_patrol.scheduler.timing import is_due
from site_patrol.store.base import StateStore, TargetStore
from site_patrol.store.documents import JsonStateStore, JsonTargetStore

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]
RunTargetFn = Callable[[str, Mapping[str, Target]], RunOutcome]


@dataclass(frozen=True)
class TargetRunOutcome:
    target_id: str
    ok: bool
    next_run_at: datetime | None = None
    fail_count: int | None = None
    error: str | None = None


@dataclass(frozen=True)
class WakeCycleResult:
    cycle_id: str
    started_at: datetime
    reconciled: tuple[str, ...]
    due: tuple[str, ...]
    outcomes: tuple[TargetRunOutcome, ...]

    @property
    def succeeded(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.ok)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if not outcome.ok)


def select_due_targets(
    targets: Mapping[str, Target],
    states: Mapping[str, RunState],
    now: datetime,
) -> tuple[str, ...]:
    """Return enabled, due target ids in lexicographic order."""
    due: list[str] = []
    for target_id, target in targets.items():
        if not target.enabled:
            continue
        state = states.get(target_id)
        if is_due(state.next_run_at if state is not None else None, now):
            due.append(target_id)
    return tuple(sorted(due))


def run_wake_cycle(
    target_store: TargetStore,
    state_store: StateStore,
    run_target: RunTargetFn,
    *,
    now_fn: NowFn | None = None,
    event_logger: JsonlEventLogger | None = None,
    cycle_id: str | None = None,
) -> WakeCycleResult:
    """Run one wake cycle; targets execute strictly one after another."""
    now = (now_fn or (lambda: datetime.now(timezone.utc)))()
    resolved_cycle_id = cycle_id or new_cycle_id()

    reconciled = reconcile(target_store, state_store, now)
    targets = target_store.load()
    states = state_store.load()
    due = select_due_targets(targets, states, now)
    logger.info("Wake cycle %s: %s target(s) due", resolved_cycle_id, len(due))

    outcomes: list[TargetRunOutcome] = []
    for target_id in due:
        try:
            run_outcome = run_target(target_id, targets)
        except Exception as exc:
            # Only a failed state write gets here; the target stays due.
            logger.error("Could not record run for '%s': %s", target_id, exc)
            outcome = TargetRunOutcome(target_id=target_id, ok=False, error=sanitize_error_message(exc))
        else:
            outcome = TargetRunOutcome(
                target_id=target_id,
                ok=run_outcome.ok,
                next_run_at=run_outcome.next_run_at,
                fail_count=run_outcome.fail_count,
                error=run_outcome.error,
            )
        outcomes.append(outcome)
        _append_event(
            event_logger,
            RunEventType.TARGET_RUN,
            cycle_id=resolved_cycle_id,
            target_id=target_id,
            payload={
                "ok": outcome.ok,
                "next_run_at": outcome.next_run_at.isoformat() if outcome.next_run_at else None,
                "fail_count": outcome.fail_count,
                "error": outcome.error,
            },
        )

    result = WakeCycleResult(
        cycle_id=resolved_cycle_id,
        started_at=now,
        reconciled=reconciled.added,
        due=due,
        outcomes=tuple(outcomes),
    )
    _append_event(
        event_logger,
        RunEventType.WAKE_CYCLE,
        cycle_id=resolved_cycle_id,
        payload={
            "reconciled": list(result.reconciled),
            "due": list(result.due),
            "succeeded": result.succeeded,
            "failed": result.failed,
        },
    )
    logger.info(
        "Wake cycle %s finished: %s succeeded, %s failed",
        resolved_cycle_id,
        result.succeeded,
        result.failed,
    )
    return result


def _append_event(event_logger: JsonlEventLogger | None, event_type: RunEventType, **fields: Any) -> None:
    """Write a run event; a failed write is logged and never stops the cycle."""
    if event_logger is None:
        return
    try:
        event_logger.append(event_type, **fields)
    except DiagnosticsError as exc:
        logger.warning("Could not write %s event to %s: %s", event_type.value, event_logger.path, exc)


def build_engine(
    config: RuntimeConfig,
    sessions: RenderSessionFactory,
    submitter: Submitter,
    state_store: StateStore,
    *,
    now_fn: NowFn | None = None,
) -> ExecutionEngine:
    engine_config = config.engine
    return ExecutionEngine(
        sessions,
        submitter,
        state_store,
        retry_policy=RetryPolicy(
            max_attempts=engine_config.handshake_attempts,
            delay_seconds=engine_config.handshake_delay_ms / 1000,
        ),
        handshake_margin_seconds=engine_config.handshake_margin_seconds,
        poll_interval_seconds=engine_config.poll_interval_ms / 1000,
        now_fn=now_fn,
    )


def run_configured_cycle(
    config: RuntimeConfig,
    *,
    now_fn: NowFn | None = None,
    sessions: RenderSessionFactory | None = None,
    submitter: Submitter | None = None,
    event_logger: JsonlEventLogger | None = None,
    cycle_id: str | None = None,
) -> WakeCycleResult:
    """Run one wake cycle against the stores and services named in ``config``."""
    zone = config.app.zone()
    effective_now_fn = now_fn or (lambda: datetime.now(zone))
    target_store = JsonTargetStore(config.targets_path)
    state_store = JsonStateStore(config.state_path)

    owned_browser: PlaywrightBrowserSession | None = None
    owned_submitter: HttpSubmitter | None = None
    if sessions is None:
        owned_browser = PlaywrightBrowserSession(config)
        sessions = owned_browser
    if submitter is None:
        owned_submitter = HttpSubmitter(
            config.submission.endpoint,
            timeout_seconds=config.submission.timeout_seconds,
        )
        submitter = owned_submitter

    engine = build_engine(config, sessions, submitter, state_store, now_fn=effective_now_fn)
    try:
        return run_wake_cycle(
            target_store,
            state_store,
            engine.execute,
            now_fn=effective_now_fn,
            event_logger=event_logger,
            cycle_id=cycle_id,
        )
    finally:
        if owned_submitter is not None:
            owned_submitter.close()
        if owned_browser is not None:
            try:
                owned_browser.close()
            except Exception as exc:
                logger.warning("Browser teardown failed: %s", exc)


def new_cycle_id(prefix: str = "wake") -> str:
    stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    return f"{prefix}-{stamp}"
