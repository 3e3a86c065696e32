"""vouchsafe CLI — Typer-based command-line interface.

Provides the ``vouchsafe`` command with subcommands for setting up an
identity, managing extensions and peers, writing reviews, syncing, and
checking a project's dependencies.

All output uses Rich for formatted terminal display.
"""
