"""Shared configuration contracts and validation helpers for site-patrol."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import os
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from platformdirs import user_config_dir

from .errors import ConfigError, SubmissionValidationError
from .validation import validate_endpoint

VALID_BROWSER_ENGINES = {"chromium", "firefox", "webkit"}
DEFAULT_CONFIG_FILENAME = "config.toml"
DEFAULT_TARGETS_FILENAME = "targets.json"
DEFAULT_STATE_FILENAME = "state.json"
DEFAULT_EVENTS_FILENAME = "logs/run-events.jsonl"
CONFIG_ENV_VAR = "PATROL_CONFIG"

DEFAULT_CONFIG_TEMPLATE = """[app]
timezone = "UTC"
debug = false

[browser]
engine = "chromium"
headless = true
locale = "en-US"
viewport_width = 1280
viewport_height = 720
navigation_timeout_ms = 30000
# Optional path to a page collector script; the bundled collector is used when empty.
collector_script = ""

[submission]
endpoint = "http://localhost:3000/collect"
timeout_seconds = 30

[engine]
handshake_attempts = 5
handshake_delay_ms = 50
handshake_margin_seconds = 5
poll_interval_ms = 100

[scheduler]
wake_interval_seconds = 3600
startup_delay_seconds = 2

[storage]
# Relative paths resolve against the directory holding this file.
targets_path = "targets.json"
state_path = "state.json"
events_path = "logs/run-events.jsonl"
"""


@dataclass(frozen=True)
class AppConfig:
    timezone: str = "UTC"
    debug: bool = False

    def zone(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ConfigError(
                f"Invalid app.timezone '{self.timezone}'. Use an IANA timezone like 'UTC' or 'Europe/Berlin'."
            ) from exc


@dataclass(frozen=True)
class BrowserConfig:
    engine: str = "chromium"
    headless: bool = True
    locale: str = "en-US"
    viewport_width: int = 1280
    viewport_height: int = 720
    navigation_timeout_ms: int = 30_000
    collector_script: str | None = None


@dataclass(frozen=True)
class SubmissionConfig:
    endpoint: str = "http://localhost:3000/collect"
    timeout_seconds: int = 30


@dataclass(frozen=True)
class EngineConfig:
    handshake_attempts: int = 5
    handshake_delay_ms: int = 50
    handshake_margin_seconds: int = 5
    poll_interval_ms: int = 100


@dataclass(frozen=True)
class SchedulerConfig:
    wake_interval_seconds: int = 3600
    startup_delay_seconds: int = 2


@dataclass(frozen=True)
class StorageConfig:
    targets_path: str = DEFAULT_TARGETS_FILENAME
    state_path: str = DEFAULT_STATE_FILENAME
    events_path: str = DEFAULT_EVENTS_FILENAME


@dataclass(frozen=True)
class RuntimeConfig:
    app: AppConfig = field(default_factory=AppConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    submission: SubmissionConfig = field(default_factory=SubmissionConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    base_dir: Path = field(default_factory=Path.cwd)

    def resolve_storage_path(self, raw: str) -> Path:
        path = Path(raw).expanduser()
        if path.is_absolute():
            return path
        return self.base_dir / path

    @property
    def targets_path(self) -> Path:
        return self.resolve_storage_path(self.storage.targets_path)

    @property
    def state_path(self) -> Path:
        return self.resolve_storage_path(self.storage.state_path)

    @property
    def events_path(self) -> Path:
        return self.resolve_storage_path(self.storage.events_path)


def default_config() -> RuntimeConfig:
    return RuntimeConfig()


def default_config_toml() -> str:
    return DEFAULT_CONFIG_TEMPLATE


def resolve_config_path(config_path: str | Path | None = None) -> Path:
    if config_path:
        return Path(config_path).expanduser()

    env_value = os.getenv(CONFIG_ENV_VAR)
    if env_value:
        return Path(env_value).expanduser()

    config_dir = Path(user_config_dir("site-patrol", appauthor=False))
    return config_dir / DEFAULT_CONFIG_FILENAME


def init_default_config(config_path: str | Path | None = None, force: bool = False) -> Path:
    path = resolve_config_path(config_path)
    if path.exists() and path.is_dir():
        raise ConfigError(
            f"Config path '{path}' is a directory; expected a TOML file path (for example '{path / DEFAULT_CONFIG_FILENAME}')."
        )
    if path.exists() and not force:
        raise ConfigError(
            f"Config file already exists at '{path}'. Re-run with --force to overwrite."
        )

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(default_config_toml(), encoding="utf-8")
    except OSError as exc:
        raise ConfigError(
            f"Could not write config file at '{path}': {exc}. "
            "Check path permissions or choose a writable location with `--path`."
        ) from exc
    return path


def load_runtime_config(config_path: str | Path | None = None) -> RuntimeConfig:
    path = resolve_config_path(config_path)
    if not path.exists():
        raise ConfigError(
            f"Config file not found at '{path}'. Run `patrol config init --path \"{path}\"` to generate defaults."
        )
    if path.is_dir():
        raise ConfigError(
            f"Config path '{path}' is a directory; pass a file path ending in '{DEFAULT_CONFIG_FILENAME}'."
        )

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(
            f"Could not read config file '{path}': {exc}. "
            "Check file permissions and that the path points to a readable TOML file."
        ) from exc
    raw = _load_toml(text, path)
    return _parse_runtime_config(raw, base_dir=path.parent)


def config_to_dict(config: RuntimeConfig) -> dict[str, Any]:
    payload = asdict(config)
    payload["base_dir"] = str(config.base_dir)
    return payload


def _load_toml(text: str, path: Path) -> dict[str, Any]:
    try:
        import tomllib  # Python 3.11+
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"Config file '{path}' contains invalid TOML: {exc}. "
            "Fix the syntax or regenerate defaults with `patrol config init --force`."
        ) from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must parse to a TOML table.")
    return data


def _parse_runtime_config(data: dict[str, Any], *, base_dir: Path) -> RuntimeConfig:
    app_raw = _expect_table(data, "app", default={})
    browser_raw = _expect_table(data, "browser", default={})
    submission_raw = _expect_table(data, "submission", default={})
    engine_raw = _expect_table(data, "engine", default={})
    scheduler_raw = _expect_table(data, "scheduler", default={})
    storage_raw = _expect_table(data, "storage", default={})

    app_config = AppConfig(
        timezone=_expect_non_empty_string(app_raw, "app.timezone", "UTC"),
        debug=_expect_bool(app_raw, "app.debug", default=False),
    )
    app_config.zone()

    collector_script = browser_raw.get("collector_script", "")
    if not isinstance(collector_script, str):
        raise ConfigError("Invalid value for 'browser.collector_script': expected string path.")

    browser_config = BrowserConfig(
        engine=_expect_choice(
            browser_raw,
            "browser.engine",
            default="chromium",
            valid_values=VALID_BROWSER_ENGINES,
        ),
        headless=_expect_bool(browser_raw, "browser.headless", default=True),
        locale=_expect_non_empty_string(browser_raw, "browser.locale", "en-US"),
        viewport_width=_expect_positive_int(browser_raw, "browser.viewport_width", default=1280),
        viewport_height=_expect_positive_int(browser_raw, "browser.viewport_height", default=720),
        navigation_timeout_ms=_expect_positive_int(
            browser_raw, "browser.navigation_timeout_ms", default=30_000
        ),
        collector_script=collector_script.strip() or None,
    )

    endpoint = _expect_non_empty_string(
        submission_raw, "submission.endpoint", "http://localhost:3000/collect"
    ).strip()
    try:
        validate_endpoint(endpoint)
    except SubmissionValidationError as exc:
        raise ConfigError(
            f"Invalid value for 'submission.endpoint': {exc}. Use an http:// or https:// URL."
        ) from exc
    submission_config = SubmissionConfig(
        endpoint=endpoint,
        timeout_seconds=_expect_positive_int(submission_raw, "submission.timeout_seconds", default=30),
    )

    engine_config = EngineConfig(
        handshake_attempts=_expect_positive_int(engine_raw, "engine.handshake_attempts", default=5),
        handshake_delay_ms=_expect_positive_int(engine_raw, "engine.handshake_delay_ms", default=50),
        handshake_margin_seconds=_expect_positive_int(
            engine_raw, "engine.handshake_margin_seconds", default=5
        ),
        poll_interval_ms=_expect_positive_int(engine_raw, "engine.poll_interval_ms", default=100),
    )

    scheduler_config = SchedulerConfig(
        wake_interval_seconds=_expect_positive_int(
            scheduler_raw, "scheduler.wake_interval_seconds", default=3600
        ),
        startup_delay_seconds=_expect_non_negative_int(
            scheduler_raw, "scheduler.startup_delay_seconds", default=2
        ),
    )

    storage_config = StorageConfig(
        targets_path=_expect_non_empty_string(
            storage_raw, "storage.targets_path", DEFAULT_TARGETS_FILENAME
        ),
        state_path=_expect_non_empty_string(storage_raw, "storage.state_path", DEFAULT_STATE_FILENAME),
        events_path=_expect_non_empty_string(storage_raw, "storage.events_path", DEFAULT_EVENTS_FILENAME),
    )

    return RuntimeConfig(
        app=app_config,
        browser=browser_config,
        submission=submission_config,
        engine=engine_config,
        scheduler=scheduler_config,
        storage=storage_config,
        base_dir=base_dir,
    )


def _expect_table(data: dict[str, Any], key: str, default: dict[str, Any]) -> dict[str, Any]:
    value = data.get(key, default)
    if not isinstance(value, dict):
        raise ConfigError(f"Invalid [{key}] table: expected table, got {type(value).__name__}.")
    return value


def _expect_non_empty_string(
    data: dict[str, Any], key: str, default: str | None
) -> str:
    field = key.split(".")[-1]
    if field in data:
        value = data[field]
    else:
        if default is None:
            raise ConfigError(f"Missing required value '{key}'.")
        value = default

    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"Invalid value for '{key}': expected non-empty string.")
    return value


def _expect_positive_int(data: dict[str, Any], key: str, default: int) -> int:
    field = key.split(".")[-1]
    value = data.get(field, default)
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ConfigError(f"Invalid value for '{key}': expected positive integer.")
    return value


def _expect_non_negative_int(data: dict[str, Any], key: str, default: int) -> int:
    field = key.split(".")[-1]
    value = data.get(field, default)
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ConfigError(f"Invalid value for '{key}': expected integer >= 0.")
    return value


def _expect_bool(data: dict[str, Any], key: str, default: bool) -> bool:
    field = key.split(".")[-1]
    value = data.get(field, default)
    if not isinstance(value, bool):
        raise ConfigError(f"Invalid value for '{key}': expected boolean true/false.")
    return value


def _expect_choice(
    data: dict[str, Any],
    key: str,
    default: str | None,
    valid_values: set[str],
) -> str:
    field = key.split(".")[-1]
    if field in data:
        value = data[field]
    else:
        if default is None:
            raise ConfigError(f"Missing required value '{key}'.")
        value = default

    if not isinstance(value, str) or value not in valid_values:
        choices = ", ".join(sorted(valid_values))
        raise ConfigError(f"Invalid value for '{key}': expected one of [{choices}].")
    return value
