"""Collect-command handshake with the in-page collector."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass
import logging
import time
from typing import Any

from site_patrol.engine.base import RenderSession
from site_patrol.engine.resolution import SingleResolution
from site_patrol.errors import ExtractionError, HandshakeFailure, HandshakeTimeout
from site_patrol.models import ExtractionResult

logger = logging.getLogger(__name__)

COLLECT_COMMAND = "collect"
DEFAULT_HANDSHAKE_MARGIN_SECONDS = 5.0

ClockFn = Callable[[], float]
SleepFn = Callable[[float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded delivery retries for the collect command."""

    max_attempts: int = 5
    delay_seconds: float = 0.05

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            raise ValueError("max_attempts must be > 0.")
        if self.delay_seconds < 0:
            raise ValueError("delay_seconds must be >= 0.")


def handshake_deadline_seconds(
    timeout_seconds: float,
    margin_seconds: float = DEFAULT_HANDSHAKE_MARGIN_SECONDS,
) -> float:
    """Return the response deadline, always strictly shorter than the target timeout.

    Timeouts that do not exceed the margin get half of the timeout instead.
    """
    if timeout_seconds <= 0:
        raise ValueError("timeout_seconds must be > 0.")
    if timeout_seconds > margin_seconds:
        return timeout_seconds - margin_seconds
    return timeout_seconds / 2


def send_with_retry(
    send: Callable[[], None],
    policy: RetryPolicy,
    *,
    sleep_fn: SleepFn = time.sleep,
    should_stop: Callable[[], bool] | None = None,
) -> int:
    """Call ``send`` until it succeeds; return the attempt number that succeeded."""
    last_error: Exception | None = None
    for attempt in range(1, policy.max_attempts + 1):
        try:
            send()
            return attempt
        except Exception as exc:
            last_error = exc
            logger.debug("Collect command delivery attempt %s/%s failed: %s", attempt, policy.max_attempts, exc)
        if attempt < policy.max_attempts:
            if should_stop is not None and should_stop():
                break
            sleep_fn(policy.delay_seconds)
    raise HandshakeFailure(f"Failed to send message to collector: {last_error}") from last_error


def request_extraction(
    session: RenderSession,
    target_id: str,
    *,
    timeout_seconds: float,
    policy: RetryPolicy | None = None,
    margin_seconds: float = DEFAULT_HANDSHAKE_MARGIN_SECONDS,
    poll_interval_seconds: float = 0.1,
    clock: ClockFn = time.monotonic,
) -> ExtractionResult:
    """Send the collect command and wait for the collector's reply."""
    resolved_policy = policy or RetryPolicy()
    reply: SingleResolution[ExtractionResult] = SingleResolution()
    unsubscribe = session.subscribe_responses(lambda message: _on_response(reply, target_id, message))
    try:
        deadline = clock() + handshake_deadline_seconds(timeout_seconds, margin_seconds)
        command = {"command": COLLECT_COMMAND, "targetId": target_id}
        send_with_retry(
            lambda: session.send_command(command),
            resolved_policy,
            sleep_fn=session.pump,
            should_stop=lambda: reply.done,
        )
        while not reply.done:
            remaining = deadline - clock()
            if remaining <= 0:
                reply.reject(HandshakeTimeout("Collector response timeout"))
                break
            session.pump(min(poll_interval_seconds, remaining))
    except HandshakeFailure:
        # A reply that raced the final failed attempt still wins.
        if not reply.done:
            raise
    finally:
        unsubscribe()
    return reply.result()


def _on_response(reply: SingleResolution[ExtractionResult], target_id: str, message: Any) -> None:
    if not isinstance(message, Mapping):
        logger.debug("Ignoring non-object collector message: %r", message)
        return
    replied_id = message.get("targetId")
    # An error raised before the collector knew the target id carries none.
    if replied_id != target_id and not (replied_id is None and message.get("error") is not None):
        logger.debug("Ignoring collector reply for '%s' while waiting on '%s'", replied_id, target_id)
        return
    if message.get("error") is not None:
        reply.reject(ExtractionError(str(message["error"])))
        return
    reply.resolve(
        ExtractionResult(
            target_id=target_id,
            url=message.get("url"),
            captured_at=message.get("capturedAt"),
            payload=message.get("payload"),
        )
    )
