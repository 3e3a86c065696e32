"""``vouchsafe extension add|list|remove`` — manage ecosystem extensions."""

from __future__ import annotations

import typer
from rich.console import Console

from vouchsafe.cli.common import command_errors, fail, workspace
from vouchsafe.cli.render import Renderer
from vouchsafe.extensions.protocol import ExtensionError

console = Console()

extension_app = typer.Typer(
    help="Manage ecosystem extensions.",
    no_args_is_help=True,
    add_completion=False,
)


@extension_app.command(name="add")
def add_cmd(
    ctx: typer.Context,
    source: str = typer.Argument(
        ...,
        help="Built-in id (npm, pypi), a local executable path, or an http(s) URL.",
    ),
) -> None:
    """Install an extension and verify it answers the handshake."""
    ws = workspace(ctx)
    with command_errors():
        try:
            entry = ws.registry.add(source)
        except (ExtensionError, ValueError) as exc:
            raise fail(str(exc)) from exc
    console.print(
        f"[green]Installed extension[/green] [bold]{entry.ecosystem_id}[/bold] from {entry.source}"
    )


@extension_app.command(name="list")
def list_cmd(ctx: typer.Context) -> None:
    """List installed extensions."""
    ws = workspace(ctx)
    Renderer(console).extensions(ws.registry.list_entries())


@extension_app.command(name="remove")
def remove_cmd(
    ctx: typer.Context,
    ecosystem: str = typer.Argument(..., help="Ecosystem id of the extension to remove."),
) -> None:
    """Uninstall an extension."""
    ws = workspace(ctx)
    if not ws.registry.remove(ecosystem):
        raise fail(f"No extension installed for ecosystem '{ecosystem}'")
    console.print(f"Removed extension [bold]{ecosystem}[/bold]")
