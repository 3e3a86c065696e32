"""Shared CLI plumbing: logging setup, the per-invocation workspace, error exits."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import typer
from rich.console import Console
from rich.logging import RichHandler

from vouchsafe.core.identity import IdentityError
from vouchsafe.core.review_store import StoreError
from vouchsafe.core.workspace import Workspace

# Exit codes
EXIT_OK = 0
EXIT_POLICY = 1
EXIT_FAILURE = 2

err_console = Console(stderr=True)


def configure_logging(level: str) -> None:
    """Route all vouchsafe logging through Rich on stderr."""
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False, rich_tracebacks=True)],
        force=True,
    )


def workspace(ctx: typer.Context) -> Workspace:
    ws = ctx.find_root().obj
    if not isinstance(ws, Workspace):
        ws = Workspace()
        ctx.find_root().obj = ws
    return ws


def fail(message: str, code: int = EXIT_FAILURE) -> typer.Exit:
    err_console.print(f"[bold red]Error:[/bold red] {message}")
    return typer.Exit(code=code)


@contextmanager
def command_errors() -> Iterator[None]:
    """Turn unrecoverable local failures into exit code 2."""
    try:
        yield
    except StoreError as exc:
        raise fail(f"review store: {exc}") from exc
    except IdentityError as exc:
        raise fail(str(exc)) from exc
