"""Main CLI application."""

import asyncio
import json
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, TypeVar

import click
from rich.console import Console
from rich.live import Live
from rich.panel import Panel
from rich.table import Table

from worktime import __version__
from worktime.cli.config_commands import config
from worktime.core.clock import SessionClock
from worktime.core.config import ConfigManager
from worktime.core.context import TrackingContext
from worktime.core.log import setup_logging
from worktime.core.models import ClockState, format_elapsed
from worktime.core.notifier import Notice, NoticeLevel, Notifier
from worktime.core.store import SessionStore
from worktime.gateway.base import Gateway, GatewayError
from worktime.gateway.models import Actor
from worktime.gateway.rest import RestGateway

console = Console()
error_console = Console(stderr=True)

T = TypeVar("T")

GatewayFactory = Callable[[ConfigManager], Gateway]


NOT_SIGNED_IN = "Not signed in. Run: worktime login EMAIL"


class NotSignedInError(Exception):
    """Command needs an authenticated actor."""

    pass


def signed_in_actor(tracking: TrackingContext) -> Actor:
    """Return the authenticated actor, raising NotSignedInError if there is none."""
    actor = tracking.actor
    if actor is None:
        raise NotSignedInError(NOT_SIGNED_IN)
    return actor


def get_config(ctx: click.Context) -> ConfigManager:
    """Get the ConfigManager for this invocation, loading it once."""
    if ctx.obj.get("config") is None:
        config_path = ctx.obj.get("config_path")
        ctx.obj["config"] = ConfigManager(Path(config_path) if config_path else None)
    return ctx.obj["config"]  # type: ignore[no-any-return]


def default_gateway(config_mgr: ConfigManager) -> Gateway:
    """Create the REST gateway from configuration."""
    return RestGateway(**config_mgr.gateway_settings())


def print_notice(notice: Notice) -> None:
    """Print a notice to the console."""
    if notice.level is NoticeLevel.ERROR:
        error_console.print(f"[red]{notice.title}:[/red] {notice.message}")
    elif notice.level is NoticeLevel.SUCCESS:
        console.print(f"[green]✓[/green] {notice.title}: {notice.message}")
    else:
        console.print(f"[cyan]ℹ[/cyan] {notice.title}: {notice.message}")


def build_context(ctx: click.Context) -> TrackingContext:
    """Assemble gateway, clock, notifier and store from configuration."""
    config_mgr = get_config(ctx)
    factory: GatewayFactory = ctx.obj.get("gateway_factory") or default_gateway
    gateway = factory(config_mgr)

    notifier = Notifier(
        enabled=config_mgr.get("notifications.enabled", False),
        backend=config_mgr.get("notifications.backend", "auto"),
    )
    notifier.add_listener(print_notice)

    clock = SessionClock(
        gateway,
        notifier=notifier,
        tick_interval=config_mgr.get("tracking.tick_interval", 1),
        placeholder_description=config_mgr.get(
            "tracking.placeholder_description", "Active session"
        ),
    )

    state_dir = ctx.obj.get("state_dir")
    store = SessionStore(Path(state_dir) if state_dir else config_mgr.state_dir())

    return TrackingContext(
        gateway,
        clock=clock,
        notifier=notifier,
        store=store,
        auto_start=config_mgr.get("tracking.auto_start", True),
    )


def run_tracking(
    ctx: click.Context,
    action: Callable[[TrackingContext], Awaitable[T]],
    require_auth: bool = True,
) -> T:
    """Run an async action inside a loaded tracking context.

    Configuration, gateway and sign-in errors are printed and exit with 1.
    """

    async def runner() -> T:
        tracking = build_context(ctx)
        async with tracking:
            await tracking.load()
            if require_auth and not tracking.is_authenticated:
                raise NotSignedInError(NOT_SIGNED_IN)
            return await action(tracking)

    try:
        return asyncio.run(runner())
    except (ValueError, GatewayError, NotSignedInError) as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)


def status_panel(clock: SessionClock, email: Optional[str] = None) -> Panel:
    """Render the clock state as a panel."""
    if clock.session_id is None:
        content = "[yellow]No session is being tracked[/yellow]"
        if email:
            content += f"\n[dim]Actor:[/dim] {email}"
        return Panel(content, title="Time Tracking", border_style="yellow")

    style = "green" if clock.state is ClockState.RUNNING else "yellow"
    icon = "▶" if clock.state is ClockState.RUNNING else "⏸"
    content = f"""[bold]{icon} {format_elapsed(clock.elapsed_seconds)}[/bold]

[dim]State:[/dim] {clock.state.value}
[dim]Session:[/dim] {clock.session_id}"""
    if email:
        content += f"\n[dim]Actor:[/dim] {email}"
    return Panel(content, title="Time Tracking", border_style=style)


@click.group()
@click.version_option(version=__version__)
@click.option("--config", "config_path", help="Path to config file", type=click.Path())
@click.option("--state-dir", help="Custom state directory", type=click.Path())
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
@click.option("--no-color", is_flag=True, help="Disable colored output")
@click.pass_context
def cli(
    ctx: click.Context,
    config_path: Optional[str],
    state_dir: Optional[str],
    verbose: bool,
    no_color: bool,
) -> None:
    """worktime - Track work sessions against your hosted workspace.

    Sign in, and a tracking session starts automatically. Pause, resume
    and stop it from any terminal.
    """
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    ctx.obj["state_dir"] = state_dir

    if no_color:
        console.no_color = True
        error_console.no_color = True

    try:
        config_mgr = get_config(ctx)
    except ValueError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    log_file = config_mgr.get("advanced.log_file")
    setup_logging(
        "DEBUG" if verbose else config_mgr.get("advanced.log_level", "WARNING"),
        Path(log_file).expanduser() if log_file else None,
    )


cli.add_command(config)


@cli.command()
@click.argument("email")
@click.option("--password", prompt=True, hide_input=True, help="Account password")
@click.pass_context
def login(ctx: click.Context, email: str, password: str) -> None:
    """Sign in and start tracking.

    Example:
        worktime login me@example.com
    """

    async def action(tracking: TrackingContext) -> None:
        auth = await tracking.sign_in(email, password)
        console.print(f"[green]✓[/green] Signed in as {auth.actor.email or auth.actor.id}")
        if tracking.clock.is_tracking:
            console.print("  Tracking started")

    run_tracking(ctx, action, require_auth=False)


@cli.command()
@click.pass_context
def logout(ctx: click.Context) -> None:
    """Stop the current session and sign out.

    Example:
        worktime logout
    """

    async def action(tracking: TrackingContext) -> None:
        if not tracking.is_authenticated:
            console.print("[yellow]Not signed in[/yellow]")
            return
        await tracking.sign_out()
        console.print("[green]✓[/green] Signed out")

    run_tracking(ctx, action, require_auth=False)


@cli.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """Start a new tracking session.

    Example:
        worktime start
    """

    async def action(tracking: TrackingContext) -> bool:
        clock = tracking.clock
        if clock.session_id is not None:
            console.print(f"[yellow]Session already open[/yellow] ({clock.state.value})")
            return True
        if not await clock.start():
            return False
        console.print("[green]▶[/green]  Started tracking")
        console.print(f"  Session: {clock.session_id}")
        return True

    if not run_tracking(ctx, action):
        sys.exit(1)


@cli.command()
@click.pass_context
def pause(ctx: click.Context) -> None:
    """Pause the running session.

    Example:
        worktime pause
    """

    async def action(tracking: TrackingContext) -> None:
        clock = tracking.clock
        if clock.pause():
            console.print(f"[yellow]⏸[/yellow]  Paused at {format_elapsed(clock.accumulated_seconds)}")
        else:
            console.print("[yellow]No running session to pause[/yellow]")

    run_tracking(ctx, action)


@cli.command()
@click.pass_context
def resume(ctx: click.Context) -> None:
    """Resume the paused session.

    Example:
        worktime resume
    """

    async def action(tracking: TrackingContext) -> None:
        clock = tracking.clock
        if clock.resume():
            console.print(f"[green]▶[/green]  Resumed at {format_elapsed(clock.accumulated_seconds)}")
        else:
            console.print("[yellow]No paused session to resume[/yellow]")

    run_tracking(ctx, action)


@cli.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop the session and save the tracked time.

    Example:
        worktime stop
    """

    async def action(tracking: TrackingContext) -> None:
        elapsed = await tracking.clock.stop()
        if elapsed is None:
            console.print("[yellow]No session is being tracked[/yellow]")
            return
        console.print(f"[yellow]⏹[/yellow]  Stopped after {format_elapsed(elapsed)}")

    run_tracking(ctx, action)


@cli.command()
@click.pass_context
def toggle(ctx: click.Context) -> None:
    """Pause, resume or start depending on the current state.

    Example:
        worktime toggle
    """

    async def action(tracking: TrackingContext) -> None:
        await tracking.clock.toggle()
        console.print(status_panel(tracking.clock))

    run_tracking(ctx, action)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show current tracking status.

    Example:
        worktime status
        worktime status --json
    """

    async def action(tracking: TrackingContext) -> None:
        clock = tracking.clock
        if as_json:
            data: dict[str, Any] = tracking.clock.snapshot().to_dict()
            data["elapsed"] = format_elapsed(data["accumulated_seconds"])
            data["actor_email"] = tracking.actor.email if tracking.actor else None
            print(json.dumps(data, indent=2))
            return
        console.print(status_panel(clock, tracking.actor.email if tracking.actor else None))

    run_tracking(ctx, action)


@cli.command()
@click.option("--stop-on-exit", is_flag=True, help="Stop and save the session on Ctrl+C")
@click.pass_context
def watch(ctx: click.Context, stop_on_exit: bool) -> None:
    """Show a live clock until interrupted.

    Example:
        worktime watch
        worktime watch --stop-on-exit
    """

    async def action(tracking: TrackingContext) -> None:
        clock = tracking.clock
        email = tracking.actor.email if tracking.actor else None
        with Live(status_panel(clock, email), console=console, refresh_per_second=4) as live:
            clock.subscribe(lambda event: live.update(status_panel(clock, email)))
            try:
                while True:
                    await asyncio.sleep(3600)
            except asyncio.CancelledError:
                if stop_on_exit:
                    await clock.stop()
                raise

    try:
        run_tracking(ctx, action)
    except KeyboardInterrupt:
        console.print("\nStopped watching")


@cli.command()
@click.option("-n", "--count", type=int, help="Number of records to show")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def log(ctx: click.Context, count: Optional[int], as_json: bool) -> None:
    """List recent timesheet records.

    Example:
        worktime log
        worktime log -n 20
    """
    limit = count or get_config(ctx).get("display.log_count", 10)

    async def action(tracking: TrackingContext) -> None:
        actor = signed_in_actor(tracking)
        records = await tracking.gateway.list_session_records(actor.id, limit=limit)

        if not records:
            console.print("[yellow]No records found[/yellow]")
            return

        if as_json:
            print(json.dumps([r.model_dump(mode="json") for r in records], indent=2))
            return

        table = Table(title=f"Timesheets (showing {len(records)})")
        table.add_column("Date", style="cyan")
        table.add_column("Duration", style="magenta")
        table.add_column("Description", style="bold")

        for record in records:
            marker = "▶ " if record.id == tracking.clock.session_id else ""
            table.add_row(
                record.date.isoformat(),
                format_elapsed(record.seconds),
                f"{marker}{record.description or '-'}",
            )

        console.print(table)

    run_tracking(ctx, action)


@cli.command()
@click.argument("hours", type=float)
@click.option("-d", "--date", "day", help="Date (YYYY-MM-DD, default today)")
@click.option("-m", "--description", help="What the time was spent on")
@click.pass_context
def add(ctx: click.Context, hours: float, day: Optional[str], description: Optional[str]) -> None:
    """Add a manual timesheet record.

    Example:
        worktime add 1.5 -m "Client call"
        worktime add 2 -d 2026-10-01 -m "Invoicing"
    """
    try:
        if hours <= 0:
            raise ValueError("hours must be positive")
        entry_date = datetime.strptime(day, "%Y-%m-%d").date() if day else date.today()
    except ValueError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    async def action(tracking: TrackingContext) -> None:
        actor = signed_in_actor(tracking)
        record = await tracking.gateway.create_timesheet(
            actor.id, hours, entry_date, description
        )
        console.print(f"[green]✓[/green] Added {format_elapsed(record.seconds)} on {record.date}")

    run_tracking(ctx, action)


if __name__ == "__main__":
    cli(obj={})
