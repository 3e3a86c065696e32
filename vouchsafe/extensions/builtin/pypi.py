"""PyPI adapter — pinned requirements files, metadata from pypi.org.

Only ``name==version`` (or ``===``) lines identify a single release; any
other requirement is skipped.  ``-r`` includes are followed.

Run as ``python -m vouchsafe.extensions.builtin.pypi``.
"""

from __future__ import annotations

import logging
import re
import sys
from pathlib import Path
from typing import Any

import requests

from vouchsafe.config import settings
from vouchsafe.extensions.builtin import find_manifest_dir
from vouchsafe.extensions.server import ExtensionServer

logger = logging.getLogger(__name__)

PYPI_URL = "https://pypi.org"
REGISTRY_HOST = "pypi.org"

_PINNED = re.compile(
    r"^(?P<name>[A-Za-z0-9][A-Za-z0-9._-]*)\s*(?:\[[^\]]*\])?\s*={2,3}\s*(?P<version>[^\s;,#]+)\s*(?:;.*)?$"
)


def normalize_name(name: str) -> str:
    """PEP 503 normalization: lowercase, runs of ``-_.`` become ``-``."""
    return re.sub(r"[-_.]+", "-", name).lower()


def parse_requirements(path: Path, _seen: set[Path] | None = None) -> set[tuple[str, str]]:
    """Collect pinned ``(name, version)`` pairs from a requirements file."""
    seen = _seen if _seen is not None else set()
    path = path.resolve()
    if path in seen or not path.is_file():
        return set()
    seen.add(path)

    found: set[tuple[str, str]] = set()
    for raw in path.read_text(encoding="utf-8").splitlines():
        line = raw.split(" #", 1)[0].strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith(("-r ", "--requirement ")):
            include = line.split(None, 1)[1].strip()
            found |= parse_requirements(path.parent / include, seen)
            continue
        if line.startswith("-"):
            continue
        match = _PINNED.match(line)
        if match is None:
            logger.debug("Skipping unpinned requirement %r in %s", line, path.name)
            continue
        found.add((normalize_name(match.group("name")), match.group("version")))
    return found


class PypiExtension(ExtensionServer):
    ecosystem_id = "pypi"
    manifest_patterns = ("requirements*.txt",)
    case_insensitive_names = True
    extension_version = "1.0.0"

    def canonical_name(self, name: str) -> str:
        return normalize_name(name)

    def discover(self, root: Path) -> list[tuple[str, str]]:
        project = find_manifest_dir(root, self.manifest_patterns)
        if project is None:
            return []
        found: set[tuple[str, str]] = set()
        seen: set[Path] = set()
        for requirements in sorted(project.glob("requirements*.txt")):
            found |= parse_requirements(requirements, seen)
        return sorted(found)

    def describe(self, name: str, version: str, root: Path | None = None) -> dict[str, Any]:
        found_locally = (
            root is not None and find_manifest_dir(root, self.manifest_patterns) is not None
        )
        response = requests.get(
            f"{PYPI_URL}/pypi/{name}/{version}/json",
            timeout=settings.http_timeout_seconds,
        )
        response.raise_for_status()
        urls = response.json().get("urls", [])
        sdist = next((u for u in urls if u.get("packagetype") == "sdist"), None)
        chosen = sdist or (urls[0] if urls else None)
        digest = (chosen or {}).get("digests", {}).get("sha256")
        return {
            "registry_host": REGISTRY_HOST,
            "package_url": f"{PYPI_URL}/project/{name}/",
            "version_url": f"{PYPI_URL}/project/{name}/{version}/",
            "source_url": (chosen or {}).get("url"),
            "source_digest": f"sha256:{digest}" if digest else None,
            "found_locally": found_locally,
        }


if __name__ == "__main__":
    sys.exit(PypiExtension().run())
