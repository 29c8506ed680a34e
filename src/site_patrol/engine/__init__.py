"""Per-target execution engine."""

from .base import RenderSession, RenderSessionFactory
from .handshake import RetryPolicy, handshake_deadline_seconds, request_extraction, send_with_retry
from .readiness import await_ready
from .resolution import SingleResolution
from .runner import ExecutionEngine, RunOutcome
from .submit import HttpSubmitter, Submitter

__all__ = [
    "ExecutionEngine",
    "HttpSubmitter",
    "RenderSession",
    "RenderSessionFactory",
    "RetryPolicy",
    "RunOutcome",
    "SingleResolution",
    "Submitter",
    "await_ready",
    "handshake_deadline_seconds",
    "request_extraction",
    "send_with_retry",
]
