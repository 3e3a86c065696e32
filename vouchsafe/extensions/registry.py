"""Extension registry — installed ecosystem adapters and dispatch to them.

The registry is a local JSON file (``extensions.json`` in the data
directory) listing every installed adapter and how to launch it.  Each
``discover``, ``describe`` or ``canonicalize`` call runs in a fresh,
isolated subprocess session; a failing adapter costs only its own ecosystem.

Install sources accepted by ``add``:

* a built-in id (``npm``, ``pypi``), launched as ``python -m``;
* a local executable path, pinned by SHA-256 at install time
  (``.py`` files are launched with the current interpreter);
* an ``http(s)://`` URL, downloaded into the extensions directory and
  pinned the same way.
"""

from __future__ import annotations

import json
import logging
import os
import stat
import sys
import threading
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from pathlib import Path
from urllib.parse import urlparse

import requests
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vouchsafe.core.hasher import sha256_hex
from vouchsafe.extensions.client import ExtensionSession
from vouchsafe.extensions.protocol import (
    CAPABILITY_CANONICALIZE,
    CAPABILITY_DESCRIBE,
    CanonicalizeResult,
    DescribeResult,
    DiscoverResult,
    ExtensionError,
    HandshakeResponse,
)
from vouchsafe.models.extension import ExtensionDescriptor, ExtensionEntry, ExtensionFailure
from vouchsafe.models.package import PackageIdentity, PackageMetadata

logger = logging.getLogger(__name__)

BUILTIN_EXTENSIONS: dict[str, str] = {
    "npm": "vouchsafe.extensions.builtin.npm",
    "pypi": "vouchsafe.extensions.builtin.pypi",
}


class DiscoveryOutcome(BaseModel):
    """Identities found per ecosystem, plus the ecosystems that were skipped."""

    model_config = ConfigDict(frozen=True)

    packages: dict[str, list[PackageIdentity]] = Field(default_factory=dict)
    failures: list[ExtensionFailure] = Field(default_factory=list)

    def all_packages(self) -> list[PackageIdentity]:
        """Every unique identity, ordered by ``(ecosystem, name, version)``."""
        unique = {p for found in self.packages.values() for p in found}
        return sorted(unique, key=lambda p: p.sort_key)


class ExtensionRegistry:
    """Manages installed extensions and runs them.

    Parameters
    ----------
    registry_path:
        JSON file listing installed extensions.
    bin_dir:
        Where downloaded executables are stored.
    timeout:
        Seconds allowed for each handshake and each call.
    max_workers:
        Upper bound on concurrently running extension processes.
    http_timeout:
        Seconds allowed for an extension download.

    Examples
    --------
    >>> registry = ExtensionRegistry(Path("/tmp/vs/extensions.json"),
    ...                              bin_dir=Path("/tmp/vs/extensions"))
    >>> entry = registry.add("npm")  # doctest: +SKIP
    >>> entry.command[-1]  # doctest: +SKIP
    'vouchsafe.extensions.builtin.npm'
    """

    def __init__(
        self,
        registry_path: Path,
        *,
        bin_dir: Path,
        timeout: float = 20.0,
        max_workers: int = 4,
        http_timeout: float = 15.0,
    ) -> None:
        self._registry_path = registry_path
        self._bin_dir = bin_dir
        self._timeout = timeout
        self._max_workers = max(1, max_workers)
        self._http_timeout = http_timeout
        self._entries: dict[str, ExtensionEntry] = {}
        self._descriptors: dict[str, ExtensionDescriptor] = {}
        self._live: set[ExtensionSession] = set()
        self._lock = threading.Lock()
        self.load()

    # -- Installation -------------------------------------------------------

    def add(self, id_or_url: str) -> ExtensionEntry:
        """Install an extension and persist the registry.

        The adapter is launched once to learn its ecosystem id.

        Raises
        ------
        ExtensionError
            If the source cannot be resolved, downloaded, or launched, or
            if its handshake is invalid.
        ValueError
            If another source already serves the same ecosystem.
        """
        command, source, path = self._resolve_source(id_or_url)
        digest = _file_sha256(path) if path is not None else ""
        candidate = ExtensionEntry(
            ecosystem_id="",
            command=command,
            source=source,
            executable_path=str(path) if path is not None else "",
            executable_sha256=digest,
        )
        with self._session(candidate, installing=True) as session:
            handshake = session.handshake
        assert handshake is not None

        if source.startswith("builtin:") and handshake.ecosystem_id != source.split(":", 1)[1]:
            raise ExtensionError(
                f"Built-in {source} announced ecosystem '{handshake.ecosystem_id}'"
            )
        existing = self._entries.get(handshake.ecosystem_id)
        if existing is not None and existing.source != source:
            raise ValueError(
                f"Ecosystem '{handshake.ecosystem_id}' is already served by "
                f"{existing.source}.  Remove it before installing {source}."
            )

        entry = candidate.model_copy(update={"ecosystem_id": handshake.ecosystem_id})
        self._entries[entry.ecosystem_id] = entry
        self._descriptors[entry.ecosystem_id] = _descriptor(entry, handshake)
        self.persist()
        logger.info("Registered extension %s from %s", entry.ecosystem_id, source)
        return entry

    def remove(self, ecosystem_id: str) -> bool:
        """Remove an extension.  Returns ``False`` if it was not installed."""
        if ecosystem_id not in self._entries:
            logger.warning("Cannot remove '%s': not installed.", ecosystem_id)
            return False
        del self._entries[ecosystem_id]
        self._descriptors.pop(ecosystem_id, None)
        self.persist()
        logger.info("Removed extension '%s'.", ecosystem_id)
        return True

    # -- Lookup -------------------------------------------------------------

    def get(self, ecosystem_id: str) -> ExtensionEntry | None:
        return self._entries.get(ecosystem_id)

    def list_entries(self, enabled_only: bool = False) -> list[ExtensionEntry]:
        """Installed extensions sorted by ecosystem id."""
        entries = [e for e in self._entries.values() if e.enabled or not enabled_only]
        return sorted(entries, key=lambda e: e.ecosystem_id)

    def describe_extension(self, ecosystem_id: str) -> ExtensionDescriptor:
        """Handshake with an extension; cached for the registry's lifetime."""
        cached = self._descriptors.get(ecosystem_id)
        if cached is not None:
            return cached
        entry = self._require(ecosystem_id)
        with self._session(entry):
            pass
        return self._descriptors[ecosystem_id]

    # -- Dispatch -----------------------------------------------------------

    def discover(self, ecosystem_id: str, root: Path) -> list[PackageIdentity]:
        """Ask one extension for the dependencies of the project at *root*.

        Raises
        ------
        ExtensionError
            On any launch, timeout, protocol, or schema failure.
        """
        entry = self._require(ecosystem_id)
        with self._session(entry) as session:
            raw = session.call("discover", {"root": str(root.resolve())})
        descriptor = self._descriptors[ecosystem_id]
        try:
            result = DiscoverResult.model_validate(raw)
            identities = {
                PackageIdentity.canonical(
                    ecosystem_id,
                    pkg.name,
                    pkg.version,
                    case_insensitive_names=descriptor.case_insensitive_names,
                )
                for pkg in result.packages
            }
        except ValidationError as exc:
            raise ExtensionError(
                f"Invalid discover result from '{ecosystem_id}': {exc.error_count()} schema error(s)"
            ) from exc
        logger.info("Extension %s discovered %d package(s)", ecosystem_id, len(identities))
        return sorted(identities, key=lambda p: p.sort_key)

    def discover_all(self, root: Path) -> DiscoveryOutcome:
        """Run ``discover`` on every enabled extension concurrently.

        A failing extension is recorded in ``failures`` and never aborts
        the others.  An interrupt kills every live extension process.
        """
        entries = self.list_entries(enabled_only=True)
        packages: dict[str, list[PackageIdentity]] = {}
        failures: list[ExtensionFailure] = []
        if not entries:
            return DiscoveryOutcome()

        pool = ThreadPoolExecutor(
            max_workers=min(self._max_workers, len(entries)),
            thread_name_prefix="vouchsafe-ext",
        )
        try:
            futures = {
                pool.submit(self.discover, entry.ecosystem_id, root): entry.ecosystem_id
                for entry in entries
            }
            for future in as_completed(futures):
                ecosystem_id = futures[future]
                try:
                    packages[ecosystem_id] = future.result()
                except ExtensionError as exc:
                    logger.warning("Skipping ecosystem %s: %s", ecosystem_id, exc)
                    failures.append(ExtensionFailure(ecosystem_id=ecosystem_id, reason=str(exc)))
        except BaseException:
            self.cancel_all()
            raise
        finally:
            pool.shutdown(wait=True, cancel_futures=True)

        return DiscoveryOutcome(
            packages=dict(sorted(packages.items())),
            failures=sorted(failures, key=lambda f: f.ecosystem_id),
        )

    def describe(self, identity: PackageIdentity, root: Path | None = None) -> PackageMetadata:
        """Fetch registry metadata for one package through its extension.

        Raises
        ------
        ExtensionError
            If no extension serves the ecosystem, it lacks ``describe``, or
            the call fails.
        """
        entry = self._require(identity.ecosystem)
        with self._session(entry) as session:
            descriptor = self._descriptors[identity.ecosystem]
            if not descriptor.supports(CAPABILITY_DESCRIBE):
                raise ExtensionError(f"Extension '{identity.ecosystem}' does not support describe")
            params: dict[str, str] = {"name": identity.name, "version": identity.version}
            if root is not None:
                params["root"] = str(root.resolve())
            raw = session.call("describe", params)
        try:
            result = DescribeResult.model_validate(raw)
        except ValidationError as exc:
            raise ExtensionError(
                f"Invalid describe result from '{identity.ecosystem}': {exc.error_count()} schema error(s)"
            ) from exc
        return PackageMetadata(package=identity, **result.model_dump())

    def canonicalize(self, ecosystem_id: str, name: str, version: str) -> PackageIdentity:
        """Build the identity the owning extension would discover for *name*.

        Extensions that predate ``canonicalize`` fall back to their declared
        case rule.

        Raises
        ------
        ExtensionError
            If no extension serves the ecosystem or the call fails.
        """
        entry = self._require(ecosystem_id)
        with self._session(entry) as session:
            descriptor = self._descriptors[ecosystem_id]
            if descriptor.supports(CAPABILITY_CANONICALIZE):
                raw = session.call("canonicalize", {"name": name, "version": version})
                try:
                    result = CanonicalizeResult.model_validate(raw)
                except ValidationError as exc:
                    raise ExtensionError(
                        f"Invalid canonicalize result from '{ecosystem_id}': "
                        f"{exc.error_count()} schema error(s)"
                    ) from exc
                name, version = result.name, result.version
        return PackageIdentity.canonical(
            ecosystem_id, name, version,
            case_insensitive_names=descriptor.case_insensitive_names,
        )

    def cancel_all(self) -> None:
        """Kill every extension process currently running."""
        with self._lock:
            live = list(self._live)
        for session in live:
            session.kill()
        if live:
            logger.warning("Cancelled %d running extension(s).", len(live))

    # -- Persistence --------------------------------------------------------

    def persist(self) -> None:
        """Write the registry to its JSON file."""
        self._registry_path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            eco: json.loads(entry.model_dump_json())
            for eco, entry in self._entries.items()
        }
        tmp = self._registry_path.with_suffix(".tmp")
        tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
        os.replace(tmp, self._registry_path)
        logger.debug("Persisted extension registry to %s.", self._registry_path)

    def load(self) -> None:
        """Load the registry from its JSON file, if it exists."""
        if not self._registry_path.exists():
            logger.debug("No extension registry at %s; starting fresh.", self._registry_path)
            return
        try:
            raw = json.loads(self._registry_path.read_text(encoding="utf-8"))
            for eco, entry_data in raw.items():
                self._entries[eco] = ExtensionEntry(**entry_data)
        except (OSError, ValueError, TypeError):
            logger.exception("Failed to load extension registry from %s.", self._registry_path)
            return
        logger.debug("Loaded %d extension(s) from registry.", len(self._entries))

    # -- Internals ----------------------------------------------------------

    def _require(self, ecosystem_id: str) -> ExtensionEntry:
        entry = self._entries.get(ecosystem_id)
        if entry is None:
            raise ExtensionError(f"No extension installed for ecosystem '{ecosystem_id}'")
        if not entry.enabled:
            raise ExtensionError(f"Extension '{ecosystem_id}' is disabled")
        return entry

    @contextmanager
    def _session(self, entry: ExtensionEntry, *, installing: bool = False) -> Iterator[ExtensionSession]:
        if entry.executable_sha256:
            path = Path(entry.executable_path)
            try:
                current = _file_sha256(path)
            except OSError as exc:
                raise ExtensionError(f"Extension executable {path} is unreadable: {exc}") from exc
            if current != entry.executable_sha256:
                raise ExtensionError(
                    f"Extension executable {path} changed since install; refusing to run it"
                )

        session = ExtensionSession(entry.command, timeout=self._timeout)
        with self._lock:
            self._live.add(session)
        try:
            handshake = session.open()
            if not installing:
                if handshake.ecosystem_id != entry.ecosystem_id:
                    raise ExtensionError(
                        f"Extension installed as '{entry.ecosystem_id}' now announces "
                        f"'{handshake.ecosystem_id}'"
                    )
                with self._lock:
                    self._descriptors.setdefault(entry.ecosystem_id, _descriptor(entry, handshake))
            yield session
        finally:
            session.close()
            with self._lock:
                self._live.discard(session)

    def _resolve_source(self, id_or_url: str) -> tuple[list[str], str, Path | None]:
        if id_or_url in BUILTIN_EXTENSIONS:
            module = BUILTIN_EXTENSIONS[id_or_url]
            return [sys.executable, "-m", module], f"builtin:{id_or_url}", None

        parsed = urlparse(id_or_url)
        if parsed.scheme in ("http", "https"):
            path = self._download(id_or_url)
            return _command_for(path), id_or_url, path

        path = Path(parsed.path if parsed.scheme == "file" else id_or_url).expanduser()
        if not path.is_file():
            raise ExtensionError(
                f"'{id_or_url}' is neither a built-in extension "
                f"({', '.join(sorted(BUILTIN_EXTENSIONS))}), a URL, nor an existing file"
            )
        path = path.resolve()
        return _command_for(path), str(path), path

    def _download(self, url: str) -> Path:
        try:
            response = requests.get(url, timeout=self._http_timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise ExtensionError(f"Cannot download extension from {url}: {exc}") from exc

        content = response.content
        basename = Path(urlparse(url).path).name or "extension"
        self._bin_dir.mkdir(parents=True, exist_ok=True)
        path = self._bin_dir / f"{sha256_hex(content)[:12]}-{basename}"
        path.write_bytes(content)
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        logger.info("Downloaded extension %s to %s (%d bytes)", url, path, len(content))
        return path


def _command_for(path: Path) -> list[str]:
    if path.suffix == ".py":
        return [sys.executable, str(path)]
    return [str(path)]


def _file_sha256(path: Path) -> str:
    return sha256_hex(path.read_bytes())


def _descriptor(entry: ExtensionEntry, handshake: HandshakeResponse) -> ExtensionDescriptor:
    return ExtensionDescriptor(
        ecosystem_id=handshake.ecosystem_id,
        manifest_patterns=frozenset(handshake.manifest_patterns),
        transport_handle=" ".join(entry.command),
        protocol_version=handshake.protocol_version,
        capabilities=frozenset(handshake.capabilities),
        case_insensitive_names=handshake.case_insensitive_names,
        extension_version=handshake.extension_version,
    )
