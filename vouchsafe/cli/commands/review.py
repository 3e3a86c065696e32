"""``vouchsafe review PACKAGE VERSION`` — sign and store a review."""

from __future__ import annotations

import typer
from pydantic import ValidationError
from rich.console import Console

from vouchsafe.cli.common import command_errors, fail, workspace
from vouchsafe.cli.render import Renderer
from vouchsafe.models.review import PackageSecurity, ReviewConfidence, ReviewPayload

console = Console()


def review_cmd(
    ctx: typer.Context,
    package: str = typer.Argument(..., help="Package name."),
    version: str = typer.Argument(..., help="Package version."),
    ecosystem: str = typer.Option(..., "--ecosystem", "-e", help="Ecosystem id, e.g. npm."),
    rating: float = typer.Option(
        ..., "--rating", "-r", min=-1.0, max=1.0,
        help="Rating from -1.0 (avoid) to +1.0 (endorse).",
    ),
    comment: str = typer.Option("", "--comment", "-c", help="Free-text comment."),
    confidence: ReviewConfidence = typer.Option(
        ReviewConfidence.MEDIUM, "--confidence", help="How thoroughly you reviewed it.",
    ),
    security: PackageSecurity = typer.Option(
        PackageSecurity.NONE, "--security", help="Worst security concern found.",
    ),
    supersedes: str = typer.Option(
        None, "--supersedes", help="Id of your earlier review of this package version.",
    ),
) -> None:
    """Write a review of one package version with your identity."""
    ws = workspace(ctx)
    with command_errors():
        try:
            identity = ws.canonical_package(ecosystem, package, version)
            payload = ReviewPayload(
                rating=rating, comment=comment, confidence=confidence, security=security
            )
            record = ws.author_review(identity, payload, supersedes=supersedes)
        except (ValidationError, ValueError) as exc:
            raise fail(str(exc)) from exc
    Renderer(console).review(record)
