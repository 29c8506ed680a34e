"""Wait for a render session to report load completion."""

from __future__ import annotations

from collections.abc import Callable
import logging
import time

from site_patrol.engine.base import RenderSession
from site_patrol.engine.resolution import SingleResolution
from site_patrol.errors import SessionTimeout

logger = logging.getLogger(__name__)

ClockFn = Callable[[], float]


def await_ready(
    session: RenderSession,
    *,
    timeout_seconds: float,
    poll_interval_seconds: float = 0.1,
    clock: ClockFn = time.monotonic,
) -> None:
    """Block until the page is loaded or raise ``SessionTimeout``.

    The load subscription is registered before the status poll, so a page
    that finishes in between is caught by one channel or the other.
    """
    readiness: SingleResolution[bool] = SingleResolution()
    unsubscribe = session.subscribe_load(lambda: _mark_ready(readiness, "load event"))
    try:
        if session.load_complete():
            _mark_ready(readiness, "status poll")
        deadline = clock() + timeout_seconds
        while not readiness.done:
            remaining = deadline - clock()
            if remaining <= 0:
                readiness.reject(SessionTimeout(f"Timeout after {_format_seconds(timeout_seconds)} seconds"))
                break
            session.pump(min(poll_interval_seconds, remaining))
    finally:
        unsubscribe()
    readiness.result()


def _mark_ready(readiness: SingleResolution[bool], channel: str) -> None:
    if readiness.resolve(True):
        logger.debug("Render session ready via %s", channel)


def _format_seconds(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:g}"
