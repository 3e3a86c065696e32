"""Main Typer application — imports and registers all CLI commands.

Entry point: ``vouchsafe`` (configured via pyproject.toml scripts).
"""

from __future__ import annotations

from pathlib import Path

import typer

from vouchsafe.cli.commands.check import check_cmd
from vouchsafe.cli.commands.config import config_app
from vouchsafe.cli.commands.extension import extension_app
from vouchsafe.cli.commands.peer import peer_app
from vouchsafe.cli.commands.review import review_cmd
from vouchsafe.cli.commands.setup import setup_cmd
from vouchsafe.cli.commands.sync import sync_cmd
from vouchsafe.cli.common import configure_logging, fail
from vouchsafe.config import settings
from vouchsafe.core.workspace import Workspace

app = typer.Typer(
    name="vouchsafe",
    help="vouchsafe: peer-reviewed trust for your dependencies.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    data_dir: Path = typer.Option(
        None,
        "--data-dir",
        envvar="VOUCHSAFE_DATA_DIR",
        help="Where identity, store, peers and extensions live.",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log at DEBUG level."),
) -> None:
    """Configure logging and open the workspace for this invocation."""
    configure_logging("DEBUG" if verbose else settings.log_level)
    base = settings if data_dir is None else settings.model_copy(update={"data_dir": data_dir})
    try:
        ctx.obj = Workspace(base)
    except ValueError as exc:
        raise fail(f"Cannot read configuration: {exc}") from exc


# Register subcommands
app.command(name="setup", help="Create your identity and review store.")(setup_cmd)
app.command(name="review", help="Sign and store a review of a package version.")(review_cmd)
app.command(name="sync", help="Import peer reviews and publish your own.")(sync_cmd)
app.command(name="check", help="Score a project's dependencies.")(check_cmd)
app.add_typer(extension_app, name="extension")
app.add_typer(peer_app, name="peer")
app.add_typer(config_app, name="config")


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
