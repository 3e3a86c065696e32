"""``vouchsafe check [PATH]`` — score a project's dependencies.

Exit code 0 when no dependency falls in a class listed in
``check.fail_on``, 1 otherwise.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from vouchsafe.cli.common import EXIT_POLICY, command_errors, workspace
from vouchsafe.cli.render import Renderer

console = Console()


def check_cmd(
    ctx: typer.Context,
    path: Path = typer.Argument(
        Path("."),
        exists=True,
        file_okay=False,
        resolve_path=True,
        help="Project root to check.",
    ),
    as_json: bool = typer.Option(False, "--json", help="Print the report as JSON."),
) -> None:
    """Discover dependencies with every extension and classify each one."""
    ws = workspace(ctx)
    with command_errors():
        report = ws.orchestrator().check(path)

    if as_json:
        console.print_json(report.model_dump_json())
    else:
        Renderer(console).report(report)

    if not report.passed:
        raise typer.Exit(code=EXIT_POLICY)
