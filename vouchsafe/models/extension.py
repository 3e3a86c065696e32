"""Extension models — persisted install entries and per-session descriptors."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field


class ExtensionEntry(BaseModel):
    """Immutable record of an installed ecosystem extension.

    ``command`` is the argv used to launch the adapter process.  For
    downloaded or local executables, ``executable_sha256`` pins the content
    of ``executable_path`` at install time; a changed file is refused at
    launch.

    Examples
    --------
    >>> entry = ExtensionEntry(
    ...     ecosystem_id="npm",
    ...     command=["python", "-m", "vouchsafe.extensions.builtin.npm"],
    ...     source="builtin:npm",
    ... )
    >>> entry.enabled
    True
    """

    model_config = ConfigDict(frozen=True)

    ecosystem_id: str
    command: list[str]
    source: str
    executable_path: str = ""
    executable_sha256: str = ""
    installed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    enabled: bool = True


class ExtensionDescriptor(BaseModel):
    """What an extension declared in its handshake.

    Built once per registry lifetime and never persisted.
    ``transport_handle`` identifies how the process is reached (the
    launch command, space-joined).
    """

    model_config = ConfigDict(frozen=True)

    ecosystem_id: str
    manifest_patterns: frozenset[str] = frozenset()
    transport_handle: str
    protocol_version: int
    capabilities: frozenset[str] = frozenset()
    case_insensitive_names: bool = False
    extension_version: str = ""

    def supports(self, capability: str) -> bool:
        return capability in self.capabilities


class ExtensionFailure(BaseModel):
    """One ecosystem skipped during an operation, and why."""

    model_config = ConfigDict(frozen=True)

    ecosystem_id: str
    reason: str
