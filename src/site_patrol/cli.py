"""Typer CLI for site-patrol workflows."""

from __future__ import annotations

from datetime import datetime
import json
from typing import Any

import typer

from . import __version__
from .config import (
    RuntimeConfig,
    config_to_dict,
    init_default_config,
    load_runtime_config,
    resolve_config_path,
)
from .diagnostics.events import JsonlEventLogger
from .errors import (
    BrowserError,
    ConfigError,
    DiagnosticsError,
    SchedulerError,
    StoreError,
)
from .logging import configure_logging
from .models import DailySchedule, HourlySchedule, RunState, ScheduleSpec, Target, WeeklySchedule
from .scheduler.daemon import run_configured_daemon
from .scheduler.reconcile import reconcile
from .scheduler.wake import WakeCycleResult, run_configured_cycle
from .store.documents import (
    JsonStateStore,
    JsonTargetStore,
    add_target,
    remove_target,
    target_to_dict,
    update_target,
)

app = typer.Typer(help="Visit configured sites on a schedule and ship what they collect.")

config_app = typer.Typer(help="Config commands.")
targets_app = typer.Typer(help="Target management commands.")

app.add_typer(config_app, name="config")
app.add_typer(targets_app, name="targets")

PATH_OPTION_HELP = "Optional config TOML path (defaults to platform config dir)."


@config_app.command("init")
def config_init(
    path: str | None = typer.Option(None, "--path", help=PATH_OPTION_HELP),
    force: bool = typer.Option(False, "--force", help="Overwrite existing config file."),
) -> None:
    try:
        written_path = init_default_config(path, force=force)
    except ConfigError as exc:
        typer.secho(f"Config init failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    typer.echo(f"Wrote default config to {written_path}")


@config_app.command("show")
def config_show(
    path: str | None = typer.Option(None, "--path", help=PATH_OPTION_HELP),
    as_json: bool = typer.Option(False, "--json", help="Render resolved config as JSON."),
) -> None:
    resolved_path = resolve_config_path(path)
    try:
        config = load_runtime_config(path)
    except ConfigError as exc:
        typer.secho(f"Config show failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    payload = {
        "path": str(resolved_path),
        "config": config_to_dict(config),
    }
    if as_json:
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    typer.echo(f"Resolved config path: {payload['path']}")
    typer.echo(f"Timezone: {config.app.timezone}")
    typer.echo(f"Submission endpoint: {config.submission.endpoint}")
    typer.echo(f"Targets file: {config.targets_path}")
    typer.echo(f"State file: {config.state_path}")


@targets_app.command("list")
def targets_list(
    path: str | None = typer.Option(None, "--path", help=PATH_OPTION_HELP),
    as_json: bool = typer.Option(False, "--json", help="Render targets as JSON."),
) -> None:
    try:
        config = load_runtime_config(path)
        targets = JsonTargetStore(config.targets_path).load()
    except (ConfigError, StoreError) as exc:
        typer.secho(f"Targets list failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    if as_json:
        payload = {target_id: target_to_dict(target) for target_id, target in sorted(targets.items())}
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return
    if not targets:
        typer.echo("No targets configured.")
        return
    for target_id, target in sorted(targets.items()):
        state = "enabled" if target.enabled else "disabled"
        typer.echo(
            f"{target_id}\t{state}\t{_describe_schedule(target.schedule)}\t"
            f"{target.timeout_seconds}s\t{target.url}"
        )


@targets_app.command("add")
def targets_add(
    target_id: str = typer.Argument(..., help="Unique target id."),
    url: str = typer.Option(..., "--url", help="Page to open for this target."),
    timeout: int = typer.Option(30, "--timeout", help="Seconds allowed per run (1-300)."),
    hourly: int | None = typer.Option(None, "--hourly", help="Run every hour at this minute (0-59)."),
    daily: str | None = typer.Option(None, "--daily", help="Run every day at HH:MM."),
    weekly: str | None = typer.Option(
        None, "--weekly", help="Run weekly at DOW@HH:MM, with DOW 0 (Sunday) to 6."
    ),
    disabled: bool = typer.Option(False, "--disabled", help="Add the target without scheduling it."),
    path: str | None = typer.Option(None, "--path", help=PATH_OPTION_HELP),
) -> None:
    try:
        schedule = _schedule_from_options(hourly=hourly, daily=daily, weekly=weekly)
        config = load_runtime_config(path)
        target_store = JsonTargetStore(config.targets_path)
        target = add_target(
            target_store,
            Target(
                target_id=target_id,
                url=url,
                enabled=not disabled,
                timeout_seconds=timeout,
                schedule=schedule,
            ),
        )
        result = reconcile(target_store, JsonStateStore(config.state_path), _now(config))
    except (ConfigError, StoreError) as exc:
        typer.secho(f"Targets add failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    typer.echo(f"Added target '{target.target_id}' ({_describe_schedule(target.schedule)})")
    if target.target_id in result.added:
        states = JsonStateStore(config.state_path).load()
        typer.echo(f"First run not before {states[target.target_id].next_run_at.isoformat()}")


@targets_app.command("remove")
def targets_remove(
    target_id: str = typer.Argument(..., help="Target id to remove."),
    path: str | None = typer.Option(None, "--path", help=PATH_OPTION_HELP),
) -> None:
    try:
        config = load_runtime_config(path)
        removed = remove_target(
            JsonTargetStore(config.targets_path),
            JsonStateStore(config.state_path),
            target_id,
        )
    except (ConfigError, StoreError) as exc:
        typer.secho(f"Targets remove failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    if not removed.changed:
        typer.secho(f"Target '{target_id}' not found.", err=True, fg=typer.colors.RED)
        raise typer.Exit(2)
    if removed.target_removed:
        typer.echo(f"Removed target '{target_id}'")
    else:
        typer.echo(f"Removed orphaned run state for '{target_id}'")


@targets_app.command("update")
def targets_update(
    target_id: str = typer.Argument(..., help="Target id to edit."),
    url: str | None = typer.Option(None, "--url", help="New page URL."),
    timeout: int | None = typer.Option(None, "--timeout", help="New per-run timeout in seconds (1-300)."),
    hourly: int | None = typer.Option(None, "--hourly", help="Run every hour at this minute (0-59)."),
    daily: str | None = typer.Option(None, "--daily", help="Run every day at HH:MM."),
    weekly: str | None = typer.Option(
        None, "--weekly", help="Run weekly at DOW@HH:MM, with DOW 0 (Sunday) to 6."
    ),
    path: str | None = typer.Option(None, "--path", help=PATH_OPTION_HELP),
) -> None:
    """Edit a target; its next scheduled run is kept."""
    try:
        schedule = (
            _schedule_from_options(hourly=hourly, daily=daily, weekly=weekly)
            if any(option is not None for option in (hourly, daily, weekly))
            else None
        )
        config = load_runtime_config(path)
        target = update_target(
            JsonTargetStore(config.targets_path),
            target_id,
            url=url,
            timeout_seconds=timeout,
            schedule=schedule,
        )
    except (ConfigError, StoreError) as exc:
        typer.secho(f"Targets update failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    typer.echo(
        f"Updated target '{target.target_id}' ({_describe_schedule(target.schedule)}, "
        f"{target.timeout_seconds}s, {target.url})"
    )


@targets_app.command("enable")
def targets_enable(
    target_id: str = typer.Argument(..., help="Target id to schedule again."),
    path: str | None = typer.Option(None, "--path", help=PATH_OPTION_HELP),
) -> None:
    _set_enabled(target_id, True, path)


@targets_app.command("disable")
def targets_disable(
    target_id: str = typer.Argument(..., help="Target id to stop running."),
    path: str | None = typer.Option(None, "--path", help=PATH_OPTION_HELP),
) -> None:
    _set_enabled(target_id, False, path)


@targets_app.command("status")
def targets_status(
    path: str | None = typer.Option(None, "--path", help=PATH_OPTION_HELP),
    as_json: bool = typer.Option(False, "--json", help="Render run state as JSON."),
) -> None:
    try:
        config = load_runtime_config(path)
        targets = JsonTargetStore(config.targets_path).load()
        states = JsonStateStore(config.state_path).load()
    except (ConfigError, StoreError) as exc:
        typer.secho(f"Targets status failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    rows = [
        _status_row(target_id, targets.get(target_id), states.get(target_id))
        for target_id in sorted(set(targets) | set(states))
    ]
    if as_json:
        typer.echo(json.dumps(rows, indent=2, sort_keys=True))
        return
    if not rows:
        typer.echo("No targets configured.")
        return
    for row in rows:
        line = (
            f"{row['target_id']}\t{row['last_status'] or 'never'}\tfails={row['fail_count']}\t"
            f"next={row['next_run_at'] or 'unscheduled'}"
        )
        if not row["configured"]:
            line += "\t(orphaned state)"
        if row["last_error"]:
            line += f"\terror={row['last_error']}"
        typer.echo(line)


@app.command("reconcile")
def reconcile_command(
    path: str | None = typer.Option(None, "--path", help=PATH_OPTION_HELP),
) -> None:
    try:
        config = load_runtime_config(path)
        result = reconcile(
            JsonTargetStore(config.targets_path),
            JsonStateStore(config.state_path),
            _now(config),
        )
    except (ConfigError, StoreError) as exc:
        typer.secho(f"Reconcile failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    if result.added:
        typer.echo(f"Scheduled {len(result.added)} new target(s): {', '.join(result.added)}")
    else:
        typer.echo("State already up to date.")


@app.command("run")
def run_command(
    ctx: typer.Context,
    path: str | None = typer.Option(None, "--path", help=PATH_OPTION_HELP),
    as_json: bool = typer.Option(False, "--json", help="Render the cycle summary as JSON."),
) -> None:
    try:
        config = load_runtime_config(path)
        result = run_configured_cycle(config, event_logger=_event_logger(config, ctx))
    except (ConfigError, StoreError, BrowserError, SchedulerError, DiagnosticsError) as exc:
        typer.secho(f"Run failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    if as_json:
        typer.echo(json.dumps(_cycle_to_dict(result), indent=2, sort_keys=True))
    else:
        _echo_cycle(result)
    if result.failed:
        raise typer.Exit(1)


@app.command("daemon")
def daemon_command(
    ctx: typer.Context,
    path: str | None = typer.Option(None, "--path", help=PATH_OPTION_HELP),
) -> None:
    try:
        config = load_runtime_config(path)
        result = run_configured_daemon(config, event_logger=_event_logger(config, ctx))
    except (ConfigError, StoreError, SchedulerError, DiagnosticsError) as exc:
        typer.secho(f"Daemon failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    typer.echo(
        f"Daemon stopped after {result.cycles} cycle(s); "
        f"{result.coalesced_triggers} trigger(s) coalesced."
    )
    if result.interrupted:
        raise typer.Exit(130)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show site-patrol version and exit."),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging and run event logs."),
) -> None:
    ctx.obj = {"debug": debug}
    if version:
        typer.echo(__version__)
        raise typer.Exit()
    configure_logging(debug)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


def _set_enabled(target_id: str, enabled: bool, path: str | None) -> None:
    action = "enable" if enabled else "disable"
    try:
        config = load_runtime_config(path)
        target_store = JsonTargetStore(config.targets_path)
        update_target(target_store, target_id, enabled=enabled)
        # A target that never had run state gets its first slot now.
        reconcile(target_store, JsonStateStore(config.state_path), _now(config))
    except (ConfigError, StoreError) as exc:
        typer.secho(f"Targets {action} failed: {exc}", err=True, fg=typer.colors.RED)
        raise typer.Exit(2) from exc

    typer.echo(f"{action.capitalize()}d target '{target_id}'")


def _schedule_from_options(
    *,
    hourly: int | None,
    daily: str | None,
    weekly: str | None,
) -> ScheduleSpec:
    chosen = [option for option in (hourly, daily, weekly) if option is not None]
    if len(chosen) > 1:
        raise StoreError("Use only one of --hourly, --daily or --weekly.")
    if daily is not None:
        return DailySchedule(at=daily)
    if weekly is not None:
        day, separator, at = weekly.partition("@")
        if not separator or not day.strip().isdigit():
            raise StoreError(f"Invalid --weekly value '{weekly}'. Expected DOW@HH:MM, e.g. 1@09:30.")
        return WeeklySchedule(day_of_week=int(day), at=at)
    return HourlySchedule(minute=hourly if hourly is not None else 0)


def _describe_schedule(schedule: ScheduleSpec) -> str:
    if isinstance(schedule, HourlySchedule):
        return f"hourly at :{schedule.minute:02d}"
    if isinstance(schedule, DailySchedule):
        return f"daily at {schedule.at}"
    return f"weekly day {schedule.day_of_week} at {schedule.at}"


def _status_row(target_id: str, target: Target | None, state: RunState | None) -> dict[str, Any]:
    return {
        "target_id": target_id,
        "configured": target is not None,
        "enabled": target.enabled if target is not None else None,
        "next_run_at": state.next_run_at.isoformat() if state is not None else None,
        "last_status": state.last_status.value if state is not None and state.last_status else None,
        "fail_count": state.fail_count if state is not None else 0,
        "last_run_at": state.last_run_at.isoformat() if state is not None and state.last_run_at else None,
        "last_error": state.last_error if state is not None else None,
    }


def _cycle_to_dict(result: WakeCycleResult) -> dict[str, Any]:
    return {
        "cycle_id": result.cycle_id,
        "started_at": result.started_at.isoformat(),
        "reconciled": list(result.reconciled),
        "due": list(result.due),
        "succeeded": result.succeeded,
        "failed": result.failed,
        "outcomes": [
            {
                "target_id": outcome.target_id,
                "ok": outcome.ok,
                "next_run_at": outcome.next_run_at.isoformat() if outcome.next_run_at else None,
                "fail_count": outcome.fail_count,
                "error": outcome.error,
            }
            for outcome in result.outcomes
        ],
    }


def _echo_cycle(result: WakeCycleResult) -> None:
    if not result.due:
        typer.echo("No targets due.")
        return
    for outcome in result.outcomes:
        if outcome.ok:
            next_run = outcome.next_run_at.isoformat() if outcome.next_run_at else "?"
            typer.echo(f"ok\t{outcome.target_id}\tnext={next_run}")
        else:
            typer.echo(f"fail\t{outcome.target_id}\t{outcome.error or 'unknown error'}")
    typer.echo(f"{result.succeeded} succeeded, {result.failed} failed")


def _resolve_debug(ctx: typer.Context | None) -> bool:
    if ctx is None or not isinstance(ctx.obj, dict):
        return False
    return bool(ctx.obj.get("debug", False))


def _event_logger(config: RuntimeConfig, ctx: typer.Context | None) -> JsonlEventLogger | None:
    if not (_resolve_debug(ctx) or config.app.debug):
        return None
    return JsonlEventLogger(config.events_path)


def _now(config: RuntimeConfig) -> datetime:
    return datetime.now(config.app.zone())

