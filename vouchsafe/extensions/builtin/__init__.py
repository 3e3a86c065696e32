"""Built-in ecosystem adapters, each runnable as ``python -m``."""

from __future__ import annotations

from pathlib import Path


def find_manifest_dir(start: Path, patterns: tuple[str, ...]) -> Path | None:
    """Walk up from *start* to the first directory holding a manifest.

    Returns ``None`` when the filesystem root is reached without a match.
    """
    current = start.resolve()
    while True:
        for pattern in patterns:
            if any(p.is_file() for p in current.glob(pattern)):
                return current
        if current.parent == current:
            return None
        current = current.parent
