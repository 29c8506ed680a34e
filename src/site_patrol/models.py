"""Data model contracts for cross-module use."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Union


class RunStatus(str, Enum):
    OK = "ok"
    FAIL = "fail"


class ScheduleKind(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"
    WEEKLY = "weekly"


@dataclass(frozen=True)
class HourlySchedule:
    minute: int = 0

    @property
    def kind(self) -> ScheduleKind:
        return ScheduleKind.HOURLY


@dataclass(frozen=True)
class DailySchedule:
    at: str

    @property
    def kind(self) -> ScheduleKind:
        return ScheduleKind.DAILY


@dataclass(frozen=True)
class WeeklySchedule:
    day_of_week: int
    at: str

    @property
    def kind(self) -> ScheduleKind:
        return ScheduleKind.WEEKLY


ScheduleSpec = Union[HourlySchedule, DailySchedule, WeeklySchedule]


@dataclass(frozen=True)
class Target:
    target_id: str
    url: str
    enabled: bool = True
    timeout_seconds: int = 30
    schedule: ScheduleSpec = field(default_factory=HourlySchedule)


@dataclass(frozen=True)
class RunState:
    next_run_at: datetime
    last_status: RunStatus | None = None
    fail_count: int = 0
    last_run_at: datetime | None = None
    last_error: str | None = None


@dataclass(frozen=True)
class ExtractionResult:
    """One successful collector reply, submitted verbatim as the POST body."""

    target_id: str
    url: str | None
    captured_at: Any
    payload: Any

    def to_submission(self) -> dict[str, Any]:
        return {
            "targetId": self.target_id,
            "url": self.url,
            "capturedAt": self.captured_at,
            "payload": self.payload,
        }
