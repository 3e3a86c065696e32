"""``vouchsafe config show|get|set`` — read and edit the user configuration."""

from __future__ import annotations

import typer
from rich.console import Console

from vouchsafe.cli.common import fail, workspace
from vouchsafe.cli.render import Renderer

console = Console()

config_app = typer.Typer(
    help="Show or change configuration (outgoing repository, check policy).",
    no_args_is_help=True,
    add_completion=False,
)


@config_app.command(name="show")
def show_cmd(ctx: typer.Context) -> None:
    """Show every configuration value."""
    Renderer(console).config(workspace(ctx).config)


@config_app.command(name="get")
def get_cmd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Dotted name, e.g. check.trusted_min."),
) -> None:
    """Print one configuration value."""
    try:
        value = workspace(ctx).config.get(name)
    except KeyError as exc:
        raise fail(f"Unknown configuration name: {name}") from exc
    console.print(",".join(value) if isinstance(value, list) else str(value))


@config_app.command(name="set")
def set_cmd(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Dotted name, e.g. check.trusted_min."),
    value: str = typer.Argument(..., help="New value; lists are comma-separated."),
) -> None:
    """Change one configuration value."""
    ws = workspace(ctx)
    try:
        updated = ws.config.with_value(name, value)
    except KeyError as exc:
        raise fail(f"Unknown configuration name: {name}") from exc
    except ValueError as exc:
        raise fail(str(exc)) from exc
    ws.save_config(updated)
    console.print(f"{name} = {value}")
