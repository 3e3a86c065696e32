"""``vouchsafe peer add|list|remove`` — manage subscribed peer repositories."""

from __future__ import annotations

import typer
from rich.console import Console

from vouchsafe.cli.common import command_errors, fail, workspace
from vouchsafe.cli.render import Renderer

console = Console()

peer_app = typer.Typer(
    help="Manage peers whose reviews you import.",
    no_args_is_help=True,
    add_completion=False,
)


@peer_app.command(name="add")
def add_cmd(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Git URL of the peer's review repository."),
    weight: float = typer.Option(
        1.0, "--weight", "-w", min=0.0, max=1.0,
        help="How much this peer's reviews count, from 0.0 to 1.0.",
    ),
    name: str = typer.Option("", "--name", "-n", help="Display name for the peer."),
) -> None:
    """Subscribe to a peer (or update its weight and name)."""
    ws = workspace(ctx)
    with command_errors():
        try:
            peer = ws.peers.add(url, name=name, trust_weight=weight)
        except ValueError as exc:
            raise fail(str(exc)) from exc
    console.print(
        f"[green]Peer[/green] [bold]{peer.display_name}[/bold] "
        f"[green]saved with weight {peer.trust_weight:.2f}[/green]"
    )


@peer_app.command(name="list")
def list_cmd(ctx: typer.Context) -> None:
    """List peers with their weights and sync watermarks."""
    with command_errors():
        peers = workspace(ctx).peers.list_peers()
    Renderer(console).peers(peers)


@peer_app.command(name="remove")
def remove_cmd(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="URL of the peer to remove."),
) -> None:
    """Unsubscribe from a peer.  Its imported reviews then count for nothing."""
    ws = workspace(ctx)
    with command_errors():
        removed = ws.peers.remove(url)
    if not removed:
        raise fail(f"No peer with URL {url}")
    console.print(f"Removed peer [bold]{url}[/bold]")
