"""``vouchsafe setup [REPO_URL]`` — create the data directory, identity and store.

With a repository URL, records it as the outgoing repository and pushes
the layout marker so peers can subscribe right away.
"""

from __future__ import annotations

import typer
from rich.console import Console
from rich.panel import Panel

from vouchsafe.cli.common import command_errors, workspace
from vouchsafe.sync.engine import PublishError

console = Console()


def setup_cmd(
    ctx: typer.Context,
    repo_url: str = typer.Argument(
        None,
        help="Git URL of your own review repository (where your reviews are published).",
    ),
) -> None:
    """Initialize vouchsafe for this user."""
    ws = workspace(ctx)
    with command_errors():
        identity, created = ws.setup(repo_url)

        published = ""
        if repo_url:
            try:
                result = ws.sync_engine().publish()
                published = f"{result.published} record(s) published"
            except PublishError as exc:
                published = f"[yellow]not yet published: {exc}[/yellow]"

    console.print(
        Panel(
            "\n".join([
                "[bold green]Identity created.[/bold green]" if created
                else "[bold]Existing identity kept.[/bold]",
                "",
                f"[bold]Fingerprint:[/bold]  {identity.fingerprint}",
                f"[bold]Public key:[/bold]   {identity.public_key}",
                f"[bold]Data dir:[/bold]     {ws.settings.data_dir}",
                f"[bold]Outgoing repo:[/bold] {ws.config.outgoing_repo_url or '[dim]none[/dim]'}",
                *([f"[bold]Publish:[/bold]      {published}"] if published else []),
            ]),
            title="[bold]vouchsafe[/bold]",
            border_style="green",
            padding=(1, 2),
        )
    )
