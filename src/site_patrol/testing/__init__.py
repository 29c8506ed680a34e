"""Fakes and clocks for exercising the engine and scheduler without a browser."""

from .fakes import (
    FakeRenderSession,
    FakeSessionFactory,
    InMemoryStateStore,
    InMemoryTargetStore,
    RecordingSubmitter,
)
from .time_control import ManualClock, SleepRecorder, assert_local_day_delta, fixed_now

__all__ = [
    "FakeRenderSession",
    "FakeSessionFactory",
    "InMemoryStateStore",
    "InMemoryTargetStore",
    "ManualClock",
    "RecordingSubmitter",
    "SleepRecorder",
    "assert_local_day_delta",
    "fixed_now",
]
