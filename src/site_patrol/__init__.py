"""site_patrol package."""

from .config import (
    AppConfig,
    BrowserConfig,
    EngineConfig,
    RuntimeConfig,
    SchedulerConfig,
    StorageConfig,
    SubmissionConfig,
    config_to_dict,
    default_config,
    init_default_config,
    load_runtime_config,
    resolve_config_path,
)
from .models import (
    DailySchedule,
    ExtractionResult,
    HourlySchedule,
    RunState,
    RunStatus,
    ScheduleSpec,
    Target,
    WeeklySchedule,
)

__all__ = [
    "AppConfig",
    "BrowserConfig",
    "DailySchedule",
    "EngineConfig",
    "ExtractionResult",
    "HourlySchedule",
    "RunState",
    "RunStatus",
    "RuntimeConfig",
    "ScheduleSpec",
    "SchedulerConfig",
    "StorageConfig",
    "SubmissionConfig",
    "Target",
    "WeeklySchedule",
    "config_to_dict",
    "default_config",
    "init_default_config",
    "load_runtime_config",
    "resolve_config_path",
]

__version__ = "0.1.0"
