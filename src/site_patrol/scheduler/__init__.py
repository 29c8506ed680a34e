"""Scheduler contracts and helpers.

Wake-cycle and daemon orchestration live in ``site_patrol.scheduler.wake``
and ``site_patrol.scheduler.daemon``; they depend on the engine, which in
turn depends on the timing helpers exported here.
"""

from .timing import (
    FAILURE_RETRY_DELAY,
    is_due,
    is_valid_time_of_day,
    next_run_after_failure,
    next_run_after_success,
    parse_time_of_day,
    sunday_based_weekday,
)
from .reconcile import ReconcileResult, reconcile, reconcile_states

__all__ = [
    "FAILURE_RETRY_DELAY",
    "ReconcileResult",
    "is_due",
    "is_valid_time_of_day",
    "next_run_after_failure",
    "next_run_after_success",
    "parse_time_of_day",
    "reconcile",
    "reconcile_states",
    "sunday_based_weekday",
]
