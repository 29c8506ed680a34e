"""Long-running wake loop: a timer feeding a single worker through a one-slot queue."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
import logging
import queue
import threading
import time

from site_patrol.config import RuntimeConfig
from site_patrol.diagnostics.events import JsonlEventLogger
from site_patrol.errors import SchedulerError
from site_patrol.scheduler.reconcile import reconcile
from site_patrol.scheduler.wake import WakeCycleResult, run_configured_cycle
from site_patrol.store.documents import JsonStateStore, JsonTargetStore

logger = logging.getLogger(__name__)

RunCycleFn = Callable[[], WakeCycleResult]
ClockFn = Callable[[], float]

WAKE_TIMER = "timer"
WAKE_STARTUP = "startup"


class WakeQueue:
    """Hold at most one pending wake; triggers beyond that are coalesced."""

    def __init__(self) -> None:
        self._queue: queue.Queue[str] = queue.Queue(maxsize=1)
        self._lock = threading.Lock()
        self.coalesced = 0

    def trigger(self, reason: str) -> bool:
        try:
            self._queue.put_nowait(reason)
        except queue.Full:
            with self._lock:
                self.coalesced += 1
            logger.info("Wake trigger '%s' coalesced; a wake is already pending", reason)
            return False
        logger.debug("Wake trigger '%s' queued", reason)
        return True

    def next_wake(self, timeout: float | None = None) -> str | None:
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None


@dataclass(frozen=True)
class DaemonResult:
    cycles: int
    failed_cycles: int
    coalesced_triggers: int
    interrupted: bool = False


class WakeWorker(threading.Thread):
    """The only thread that runs wake cycles."""

    def __init__(
        self,
        wakes: WakeQueue,
        run_cycle: RunCycleFn,
        stop_event: threading.Event,
        *,
        max_cycles: int | None = None,
        poll_seconds: float = 0.5,
    ) -> None:
        super().__init__(name="site-patrol-wake-worker", daemon=True)
        self._wakes = wakes
        self._run_cycle = run_cycle
        self._stop_event = stop_event
        self._max_cycles = max_cycles
        self._poll_seconds = poll_seconds
        self.cycles = 0
        self.failed_cycles = 0

    def run(self) -> None:
        while not self._stop_event.is_set():
            reason = self._wakes.next_wake(timeout=self._poll_seconds)
            if reason is None:
                continue
            logger.info("Wake (%s) started", reason)
            try:
                self._run_cycle()
            except Exception:
                self.failed_cycles += 1
                logger.exception("Wake cycle failed; waiting for the next trigger")
            self.cycles += 1
            if self._max_cycles is not None and self.cycles >= self._max_cycles:
                self._stop_event.set()


def run_daemon(
    run_cycle: RunCycleFn,
    *,
    wake_interval_seconds: float,
    first_start: bool = False,
    startup_delay_seconds: float = 0.0,
    stop_event: threading.Event | None = None,
    max_cycles: int | None = None,
    clock: ClockFn = time.monotonic,
    poll_seconds: float = 0.5,
) -> DaemonResult:
    """Trigger wakes on a fixed interval until stopped.

    The calling thread only produces triggers. One worker thread consumes
    them, so two cycles never overlap; a trigger arriving while a cycle runs
    and another wake is already pending is dropped.
    """
    if wake_interval_seconds <= 0:
        raise SchedulerError("wake_interval_seconds must be > 0.")
    if startup_delay_seconds < 0:
        raise SchedulerError("startup_delay_seconds must be >= 0.")
    if max_cycles is not None and max_cycles <= 0:
        raise SchedulerError("max_cycles must be > 0 when provided.")

    stop = stop_event or threading.Event()
    wakes = WakeQueue()
    worker = WakeWorker(wakes, run_cycle, stop, max_cycles=max_cycles, poll_seconds=poll_seconds)
    worker.start()

    interrupted = False
    startup_at = clock() + startup_delay_seconds if first_start else None
    next_timer_at = clock() + wake_interval_seconds
    try:
        while not stop.is_set():
            now = clock()
            if startup_at is not None and now >= startup_at:
                wakes.trigger(WAKE_STARTUP)
                startup_at = None
            if now >= next_timer_at:
                wakes.trigger(WAKE_TIMER)
                while next_timer_at <= now:
                    next_timer_at += wake_interval_seconds
            upcoming = next_timer_at if startup_at is None else min(startup_at, next_timer_at)
            stop.wait(max(0.0, min(upcoming - clock(), poll_seconds)))
    except KeyboardInterrupt:
        interrupted = True
        logger.info("Interrupted; letting the running cycle finish")
    finally:
        stop.set()
        worker.join()

    return DaemonResult(
        cycles=worker.cycles,
        failed_cycles=worker.failed_cycles,
        coalesced_triggers=wakes.coalesced,
        interrupted=interrupted,
    )


def prepare_startup(config: RuntimeConfig, *, now: datetime | None = None) -> bool:
    """Reconcile on process start; return whether this is the first-ever start."""
    target_store = JsonTargetStore(config.targets_path)
    state_store = JsonStateStore(config.state_path)
    first_start = not state_store.exists()
    resolved_now = now or datetime.now(config.app.zone())
    reconcile(target_store, state_store, resolved_now)
    if not state_store.exists():
        state_store.save({})
    return first_start


def run_configured_daemon(
    config: RuntimeConfig,
    *,
    event_logger: JsonlEventLogger | None = None,
    stop_event: threading.Event | None = None,
    max_cycles: int | None = None,
) -> DaemonResult:
    first_start = prepare_startup(config)
    if first_start:
        logger.info("First start: running an initial wake in %ss", config.scheduler.startup_delay_seconds)
    logger.info("Waking every %ss", config.scheduler.wake_interval_seconds)
    return run_daemon(
        lambda: run_configured_cycle(config, event_logger=event_logger),
        wake_interval_seconds=config.scheduler.wake_interval_seconds,
        first_start=first_start,
        startup_delay_seconds=config.scheduler.startup_delay_seconds,
        stop_event=stop_event,
        max_cycles=max_cycles,
    )
