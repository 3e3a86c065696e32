"""npm adapter — reads package-lock.json or package.json, queries registry.npmjs.org.

Run as ``python -m vouchsafe.extensions.builtin.npm``.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from pathlib import Path
from typing import Any
from urllib.parse import quote

import requests

from vouchsafe.config import settings
from vouchsafe.extensions.builtin import find_manifest_dir
from vouchsafe.extensions.server import ExtensionServer

logger = logging.getLogger(__name__)

REGISTRY_URL = "https://registry.npmjs.org"
REGISTRY_HOST = "npmjs.com"
PACKAGE_URL = "https://www.npmjs.com/package/{name}/"
VERSION_URL = "https://www.npmjs.com/package/{name}/v/{version}"

_DEPENDENCY_SECTIONS = (
    "dependencies",
    "devDependencies",
    "optionalDependencies",
    "peerDependencies",
)
# Exact versions, optionally behind one of = v ^ ~.  Ranges, tags, URLs and
# workspace references have no single version and are skipped.
_SIMPLE_SPEC = re.compile(r"^[=v^~]*(\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.+-]+)?)$")


def parse_lockfile(data: dict[str, Any]) -> set[tuple[str, str]]:
    """Extract resolved ``(name, version)`` pairs from a package-lock.json."""
    found: set[tuple[str, str]] = set()
    packages = data.get("packages")
    if isinstance(packages, dict):
        # lockfileVersion 2 and 3
        for key, entry in packages.items():
            if not key or not isinstance(entry, dict) or entry.get("link"):
                continue
            version = entry.get("version")
            if not isinstance(version, str):
                continue
            name = entry.get("name") or key.rsplit("node_modules/", 1)[-1]
            found.add((name, version))
        return found

    def walk(deps: Any) -> None:
        if not isinstance(deps, dict):
            return
        for name, entry in deps.items():
            if not isinstance(entry, dict):
                continue
            version = entry.get("version")
            if isinstance(version, str) and _SIMPLE_SPEC.match(version):
                found.add((name, version))
            walk(entry.get("dependencies"))

    # lockfileVersion 1
    walk(data.get("dependencies"))
    return found


def parse_package_json(data: dict[str, Any]) -> set[tuple[str, str]]:
    """Extract ``(name, version)`` pairs from declared dependency specs."""
    found: set[tuple[str, str]] = set()
    for section in _DEPENDENCY_SECTIONS:
        deps = data.get(section)
        if not isinstance(deps, dict):
            continue
        for name, spec in deps.items():
            match = _SIMPLE_SPEC.match(spec.strip()) if isinstance(spec, str) else None
            if match is None:
                logger.debug("Skipping %s: unpinned spec %r", name, spec)
                continue
            found.add((name, match.group(1)))
    return found


class NpmExtension(ExtensionServer):
    ecosystem_id = "npm"
    manifest_patterns = ("package.json", "package-lock.json")
    case_insensitive_names = False
    extension_version = "1.0.0"

    def discover(self, root: Path) -> list[tuple[str, str]]:
        project = find_manifest_dir(root, self.manifest_patterns)
        if project is None:
            return []
        lockfile = project / "package-lock.json"
        if lockfile.is_file():
            return sorted(parse_lockfile(_read_json(lockfile)))
        return sorted(parse_package_json(_read_json(project / "package.json")))

    def describe(self, name: str, version: str, root: Path | None = None) -> dict[str, Any]:
        found_locally = (
            root is not None and find_manifest_dir(root, self.manifest_patterns) is not None
        )
        metadata: dict[str, Any] = {
            "registry_host": REGISTRY_HOST,
            "package_url": PACKAGE_URL.format(name=name),
            "version_url": VERSION_URL.format(name=name, version=version),
            "source_url": None,
            "source_digest": None,
            "found_locally": found_locally,
        }
        response = requests.get(
            f"{REGISTRY_URL}/{quote(name, safe='@')}",
            timeout=settings.http_timeout_seconds,
            headers={"Accept": "application/json"},
        )
        response.raise_for_status()
        dist = response.json().get("versions", {}).get(version, {}).get("dist", {})
        metadata["source_url"] = dist.get("tarball")
        if dist.get("shasum"):
            metadata["source_digest"] = f"sha1:{dist['shasum']}"
        return metadata


def _read_json(path: Path) -> dict[str, Any]:
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} is not a JSON object")
    return data


if __name__ == "__main__":
    sys.exit(NpmExtension().run())
