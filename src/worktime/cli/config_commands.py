"""CLI commands for configuration management."""

import json
import shutil
import sys
from pathlib import Path
from typing import Any, NoReturn

import click  # type: ignore[import-not-found]
from rich.console import Console  # type: ignore[import-not-found]
from rich.table import Table  # type: ignore[import-not-found]

from worktime.core.config import ConfigManager

console = Console()
error_console = Console(stderr=True)


def _fail(message: str) -> NoReturn:
    error_console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


def _manager(ctx: click.Context) -> ConfigManager:
    """Load the config file given to the root command (or the default one)."""
    path = (ctx.obj or {}).get("config_path")
    try:
        return ConfigManager(Path(path) if path else None)
    except ValueError as e:
        _fail(str(e))


def _display(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@click.group()  # type: ignore[misc]
def config() -> None:
    """Manage worktime configuration.

    Configuration is stored in ~/.worktime/config.yml unless --config is given.
    The gateway URL and key can also come from WORKTIME_GATEWAY_URL and
    WORKTIME_GATEWAY_KEY.
    """
    pass


@config.command("show")  # type: ignore[misc]
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def config_show(ctx: click.Context, as_json: bool) -> None:
    """Show all settings, with the gateway key masked.

    Example:
        worktime config show
        worktime config show --json
    """
    config_mgr = _manager(ctx)
    data = config_mgr.to_display_dict()

    if as_json:
        print(json.dumps(data, indent=2))
        return

    table = Table(title="worktime Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    table.add_column("Type", style="dim")

    for key in config_mgr.get_all_keys():
        value: Any = data
        for k in key.split("."):
            value = value[k]
        schema = config_mgr.schema_for(key) or {}
        declared = schema.get("type", "-")
        table.add_row(
            key,
            _display(value),
            "/".join(declared) if isinstance(declared, list) else declared,
        )

    console.print(table)
    console.print(f"\nConfig file: {config_mgr.config_path}")


@config.command("get")  # type: ignore[misc]
@click.argument("key")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def config_get(ctx: click.Context, key: str) -> None:
    """Print one setting.

    Example:
        worktime config get tracking.auto_start
    """
    config_mgr = _manager(ctx)
    if config_mgr.schema_for(key) is None:
        _fail(f"Unknown configuration key '{key}'")

    value = config_mgr.get(key)
    if isinstance(value, dict):
        console.print(json.dumps(value, indent=2))
    else:
        console.print(_display(value))


@config.command("set")  # type: ignore[misc]
@click.argument("key")  # type: ignore[misc]
@click.argument("value")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def config_set(ctx: click.Context, key: str, value: str) -> None:
    """Set one setting, converted to the type the setting declares.

    Booleans accept true/false, yes/no or on/off. Nullable settings accept null.

    Example:
        worktime config set tracking.auto_start false
        worktime config set tracking.tick_interval 2
        worktime config set gateway.url https://project.supabase.co
    """
    config_mgr = _manager(ctx)
    try:
        converted = config_mgr.coerce(key, value)
        config_mgr.set(key, converted)
    except ValueError as e:
        _fail(str(e))

    if key in config_mgr.SECRET_KEYS:
        console.print(f"[green]✓[/green] Set {key}")
    else:
        console.print(f"[green]✓[/green] Set {key} = {_display(converted)}")


@config.command("reset")  # type: ignore[misc]
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def config_reset(ctx: click.Context, yes: bool) -> None:
    """Restore the default settings, keeping a backup of the current file.

    Example:
        worktime config reset --yes
    """
    config_mgr = _manager(ctx)

    if not yes and not click.confirm("Reset all settings to defaults?"):
        console.print("Cancelled")
        return

    if config_mgr.config_path.exists():
        backup_path = config_mgr.config_path.with_suffix(".yml.backup")
        shutil.copy(config_mgr.config_path, backup_path)
        console.print(f"Backed up current config to {backup_path}")

    config_mgr.reset()
    console.print("[green]✓[/green] Configuration reset to defaults")


@config.command("validate")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def config_validate(ctx: click.Context) -> None:
    """Check the config file against the schema."""
    config_mgr = _manager(ctx)
    try:
        config_mgr.validate()
    except ValueError as e:
        _fail(str(e))
    console.print("[green]✓[/green] Configuration is valid")


@config.command("path")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def config_path(ctx: click.Context) -> None:
    """Print the config file location."""
    console.print(str(_manager(ctx).config_path))
