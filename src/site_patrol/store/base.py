"""Storage interfaces for target and run-state documents."""

from __future__ import annotations

from typing import Protocol

from site_patrol.models import RunState, Target


class TargetStore(Protocol):
    def load(self) -> dict[str, Target]:
        """Return the full target document keyed by target id."""

    def save(self, targets: dict[str, Target]) -> None:
        """Replace the whole target document."""


class StateStore(Protocol):
    def load(self) -> dict[str, RunState]:
        """Return the full run-state document keyed by target id."""

    def save(self, states: dict[str, RunState]) -> None:
        """Replace the whole run-state document."""

    def exists(self) -> bool:
        """Return whether the document has ever been written."""
