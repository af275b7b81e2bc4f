"""CLI entry point for runwatch."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Awaitable, Callable

import click

from . import __version__
from .exceptions import RunwatchError
from .rules.models import AlertType

logger = logging.getLogger("runwatch")


# ── Helpers ──────────────────────────────────────────────


def _configure_logging(verbose: bool = False) -> None:
    """Console logging plus a best-effort rotating file log."""
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter(log_format, datefmt=date_format))

    handlers: list[logging.Handler] = [console]
    file_error: OSError | None = None
    log_dir = Path("~/.runwatch/logs").expanduser()
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        from logging.handlers import RotatingFileHandler

        file_handler = RotatingFileHandler(
            log_dir / "runwatch.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=2,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(log_format, datefmt=date_format))
        handlers.append(file_handler)
    except OSError as e:
        file_error = e

    logging.basicConfig(level=logging.DEBUG, handlers=handlers, force=True)
    if file_error is not None:
        logger.debug(f"File logging disabled: {file_error}")
    for noisy in ("aiohttp", "apscheduler", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def _with_engine(ctx: click.Context, action: Callable[[Any], Awaitable[Any]]) -> Any:
    """Build an engine from the --config option, run ``action``, close it."""
    from .config import load_config
    from .engine import AlertEngine

    async def _main() -> Any:
        engine = AlertEngine.from_config(load_config(ctx.obj["config_path"]))
        try:
            return await action(engine)
        finally:
            await engine.close()

    try:
        return asyncio.run(_main())
    except RunwatchError as e:
        raise click.ClickException(str(e)) from e


def _fmt_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "never"


# ── CLI Commands ─────────────────────────────────────────


@click.group()
@click.version_option(version=__version__, prog_name="runwatch")
@click.option("--config", "config_path", default=None, help="Config file path")
@click.option("-v", "--verbose", is_flag=True, help="Log to stderr")
@click.pass_context
def main(ctx: click.Context, config_path: str | None, verbose: bool) -> None:
    """runwatch — alerts for failed (and finished) job runs."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    _configure_logging(verbose)


@main.command()
@click.pass_context
def serve(ctx: click.Context) -> None:
    """Run the scheduled evaluation pass until interrupted."""
    from .config import load_config
    from .engine import AlertEngine
    from .scheduler import APSchedulerPort

    try:
        config = load_config(ctx.obj["config_path"])
    except RunwatchError as e:
        raise click.ClickException(str(e)) from e

    async def _serve() -> None:
        engine = AlertEngine.from_config(config)
        port = engine.scheduler.port
        try:
            if not await engine.scheduler.restore():
                await engine.register_scheduled_pass()
            if isinstance(port, APSchedulerPort):
                port.start()
            minutes = config.scheduler.minimum_interval_minutes
            click.echo(f"Watching runs every {minutes:g} min. Ctrl+C to stop.")
            await asyncio.Event().wait()
        finally:
            if isinstance(port, APSchedulerPort):
                port.shutdown()
            await engine.close()

    try:
        asyncio.run(_serve())
    except KeyboardInterrupt:
        click.echo("\nStopped.")
    except RunwatchError as e:
        raise click.ClickException(str(e)) from e


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Run one evaluation pass now and report the result."""
    result = _with_engine(ctx, lambda engine: engine.manual_trigger())
    click.echo(f"Triggered: {result.triggered_count}")
    click.echo(f"Errors: {len(result.errors)}")
    for error in result.errors:
        click.echo(f"  - {error}")


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show scheduler, rule and checkpoint diagnostics."""
    info = _with_engine(ctx, lambda engine: engine.status())
    if as_json:
        click.echo(json.dumps(info, indent=2))
        return

    click.echo("runwatch status")
    click.echo("=" * 40)
    click.echo(f"Scheduler:  {info['scheduler_status']}")
    click.echo(f"Registered: {'yes' if info['registration_recorded'] else 'no'}")
    click.echo(f"Alerts:     {info['enabled_alerts']} enabled / {info['total_alerts']} total")
    if info["last_check_time"]:
        click.echo(
            f"Last check: {info['last_check_time']} "
            f"({info['minutes_since_last_check']} minutes ago)"
        )
    else:
        click.echo("Last check: never")
    click.echo(f"Unread:     {info['unread_notifications']}")


@main.command()
@click.option("--limit", default=10, type=int, help="Runs to fetch")
@click.pass_context
def runs(ctx: click.Context, limit: int) -> None:
    """Show recent runs as the evaluator would see them."""
    info = _with_engine(ctx, lambda engine: engine.recent_runs(limit))
    click.echo(f"{info['count']} run(s), {info['recent_failures']} recent failure(s)")
    click.echo(f"Recent = started since {info['since']}")
    for run in info["runs"]:
        marker = "*" if run["is_recent"] else " "
        click.echo(
            f" {marker} {run['status']:<10} {run['job_name']:<30} "
            f"{run['start_time'] or 'N/A'}  {run['id']}"
        )


@main.command()
@click.pass_context
def register(ctx: click.Context) -> None:
    """Record the background pass so 'runwatch serve' schedules it."""
    added = _with_engine(ctx, lambda engine: engine.register_scheduled_pass())
    click.echo("Background pass registered." if added else "Already registered.")


@main.command()
@click.pass_context
def unregister(ctx: click.Context) -> None:
    """Remove the background pass registration."""
    _with_engine(ctx, lambda engine: engine.unregister_scheduled_pass())
    click.echo("Background pass unregistered.")


# ── Rules ────────────────────────────────────────────────


@main.group()
def rules() -> None:
    """Manage alert rules."""


@rules.command("list")
@click.pass_context
def rules_list(ctx: click.Context) -> None:
    """List alert rules."""
    items = _with_engine(ctx, lambda engine: engine.list_rules())
    if not items:
        click.echo("No alerts configured.")
        return
    for rule in items:
        state = "on " if rule.enabled else "off"
        alert_type = getattr(rule.type, "value", rule.type)
        target = f" → {rule.display_target}" if rule.display_target else ""
        click.echo(f"[{state}] {rule.id}  {rule.name} ({alert_type}{target})")
        click.echo(
            f"       checked {_fmt_time(rule.last_checked)}, "
            f"triggered {_fmt_time(rule.last_triggered)}"
        )


@rules.command("add")
@click.argument(
    "alert_type",
    type=click.Choice([t.value for t in AlertType], case_sensitive=False),
)
@click.option("--target", "target_id", default=None, help="Job name or asset key path")
@click.option("--target-name", default=None, help="Display name for the target")
@click.option("--name", default=None, help="Rule name (generated when omitted)")
@click.pass_context
def rules_add(
    ctx: click.Context,
    alert_type: str,
    target_id: str | None,
    target_name: str | None,
    name: str | None,
) -> None:
    """Create an alert rule of ALERT_TYPE."""
    rule = _with_engine(
        ctx,
        lambda engine: engine.create_rule(
            alert_type.upper(), target_id=target_id, target_name=target_name, name=name
        ),
    )
    click.echo(f"Created {rule.id}: {rule.name}")


@rules.command("toggle")
@click.argument("rule_id")
@click.pass_context
def rules_toggle(ctx: click.Context, rule_id: str) -> None:
    """Enable or disable a rule."""
    rule = _with_engine(ctx, lambda engine: engine.toggle_rule(rule_id))
    click.echo(f"{rule.name}: {'enabled' if rule.enabled else 'disabled'}")


@rules.command("rename")
@click.argument("rule_id")
@click.argument("name")
@click.pass_context
def rules_rename(ctx: click.Context, rule_id: str, name: str) -> None:
    """Change a rule's display name."""
    if not name.strip():
        raise click.BadParameter("name must not be empty")
    rule = _with_engine(ctx, lambda engine: engine.update_rule(rule_id, name=name.strip()))
    click.echo(f"Renamed {rule.id}: {rule.name}")


@rules.command("delete")
@click.argument("rule_id")
@click.pass_context
def rules_delete(ctx: click.Context, rule_id: str) -> None:
    """Delete a rule (no-op if it does not exist)."""
    removed = _with_engine(ctx, lambda engine: engine.delete_rule(rule_id))
    click.echo("Deleted." if removed else "No such alert.")


# ── Notifications ────────────────────────────────────────


@main.group()
def notifications() -> None:
    """Browse fired notifications."""


@notifications.command("list")
@click.option("--unread", is_flag=True, help="Only unread notifications")
@click.pass_context
def notifications_list(ctx: click.Context, unread: bool) -> None:
    """List notification history, newest first."""
    items = _with_engine(ctx, lambda engine: engine.list_notifications())
    if unread:
        items = [n for n in items if not n.read]
    if not items:
        click.echo("No notifications.")
        return
    for n in items:
        marker = " " if n.read else "•"
        click.echo(f"{marker} {n.id}  {_fmt_time(n.triggered_at)}  {n.alert_name}: {n.message}")


@notifications.command("read")
@click.argument("notification_id")
@click.pass_context
def notifications_read(ctx: click.Context, notification_id: str) -> None:
    """Mark one notification read."""
    found = _with_engine(ctx, lambda engine: engine.mark_read(notification_id))
    click.echo("Marked read." if found else "No such notification.")


@notifications.command("read-all")
@click.pass_context
def notifications_read_all(ctx: click.Context) -> None:
    """Mark every notification read."""
    changed = _with_engine(ctx, lambda engine: engine.mark_all_read())
    click.echo(f"Marked {changed} notification(s) read.")


@notifications.command("prune")
@click.option("--days", default=7, type=float, help="Keep this many days")
@click.pass_context
def notifications_prune(ctx: click.Context, days: float) -> None:
    """Delete notifications older than --days."""
    removed = _with_engine(ctx, lambda engine: engine.prune_notifications(days))
    click.echo(f"Removed {removed} notification(s).")


@notifications.command("clear")
@click.confirmation_option(prompt="Delete all notification history?")
@click.pass_context
def notifications_clear(ctx: click.Context) -> None:
    """Delete all notification history."""
    _with_engine(ctx, lambda engine: engine.clear_notifications())
    click.echo("Notification history cleared.")


if __name__ == "__main__":
    main()
