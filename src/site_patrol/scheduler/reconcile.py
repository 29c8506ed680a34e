"""Add-only reconciliation of run state against the target config."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
import logging

from site_patrol.models import RunState, Target
from site_patrol.scheduler.timing import next_run_after_success
from site_patrol.store.base import StateStore, TargetStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcileResult:
    added: tuple[str, ...]
    wrote: bool

    @property
    def changed(self) -> bool:
        return bool(self.added)


def reconcile_states(
    targets: Mapping[str, Target],
    states: Mapping[str, RunState],
    now: datetime,
) -> dict[str, RunState]:
    """Return ``states`` plus an entry for every target that lacks one.

    Existing entries are kept untouched, including entries for targets that
    are no longer configured.
    """
    merged = dict(states)
    for target_id in sorted(targets):
        if target_id not in merged:
            merged[target_id] = RunState(next_run_at=next_run_after_success(now, targets[target_id].schedule))
    return merged


def reconcile(target_store: TargetStore, state_store: StateStore, now: datetime) -> ReconcileResult:
    """Persist missing state entries; writes nothing when nothing is missing."""
    targets = target_store.load()
    states = state_store.load()
    merged = reconcile_states(targets, states, now)
    added = tuple(target_id for target_id in sorted(merged) if target_id not in states)
    if not added:
        return ReconcileResult(added=(), wrote=False)

    state_store.save(merged)
    for target_id in added:
        logger.info("Scheduled new target '%s' not before %s", target_id, merged[target_id].next_run_at.isoformat())
    return ReconcileResult(added=added, wrote=True)
