"""``vouchsafe sync`` — import reviews from every peer, then publish your own."""

from __future__ import annotations

import typer
from rich.console import Console

from vouchsafe.cli.common import command_errors, workspace
from vouchsafe.cli.render import Renderer

console = Console()


def sync_cmd(
    ctx: typer.Context,
    publish: bool = typer.Option(
        True,
        "--publish/--no-publish",
        help="Push your reviews to the outgoing repository after fetching.",
    ),
) -> None:
    """Fetch all peers concurrently and publish local reviews.

    A failing peer is reported and skipped; it never stops the others.
    """
    ws = workspace(ctx)
    with command_errors():
        summary = ws.sync_engine().sync(publish=publish)
    Renderer(console).sync_summary(summary)
