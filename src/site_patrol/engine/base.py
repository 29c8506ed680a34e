"""Render-session contracts consumed by the execution engine."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol

Unsubscribe = Callable[[], None]


class RenderSession(Protocol):
    """One isolated page opened for exactly one target run."""

    def subscribe_load(self, callback: Callable[[], None]) -> Unsubscribe:
        """Call ``callback`` when the page reports load completion."""

    def load_complete(self) -> bool:
        """Return whether the page has already finished loading."""

    def subscribe_responses(self, callback: Callable[[Any], None]) -> Unsubscribe:
        """Call ``callback`` with every message the page collector sends back."""

    def send_command(self, command: dict[str, Any]) -> None:
        """Deliver a command to the page collector; raise when undeliverable."""

    def pump(self, seconds: float) -> None:
        """Wait up to ``seconds`` while dispatching pending page events."""

    def close(self) -> None:
        """Release the page and everything opened for it."""


class RenderSessionFactory(Protocol):
    def open_session(self, url: str) -> RenderSession:
        """Open a fresh session and start navigating to ``url``."""
