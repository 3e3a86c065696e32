"""Package identity models — the aggregation key for every review."""

from __future__ import annotations

import re

from pydantic import BaseModel, ConfigDict, field_validator

_ECOSYSTEM_RE = re.compile(r"^[a-z0-9][a-z0-9_.-]*$")


class PackageIdentity(BaseModel):
    """Canonical ``{ecosystem, name, version}`` triple.

    Case rules belong to the owning extension; use ``canonical()`` to build
    an identity from raw manifest values.

    Examples
    --------
    >>> PackageIdentity.canonical("NPM", " d3 ", "4.10.0")
    PackageIdentity(ecosystem='npm', name='d3', version='4.10.0')
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    ecosystem: str
    name: str
    version: str

    @field_validator("ecosystem")
    @classmethod
    def _check_ecosystem(cls, value: str) -> str:
        if not _ECOSYSTEM_RE.match(value):
            raise ValueError(f"invalid ecosystem id: {value!r}")
        return value

    @field_validator("name", "version")
    @classmethod
    def _check_text(cls, value: str) -> str:
        if not value or value != value.strip():
            raise ValueError("must be non-empty without surrounding whitespace")
        if any(ord(ch) < 0x20 for ch in value):
            raise ValueError("control characters are not allowed")
        if value in (".", ".."):
            raise ValueError("relative path segments are not allowed")
        return value

    @classmethod
    def canonical(
        cls,
        ecosystem: str,
        name: str,
        version: str,
        *,
        case_insensitive_names: bool = False,
    ) -> PackageIdentity:
        """Normalize raw values into a canonical identity."""
        name = name.strip()
        if case_insensitive_names:
            name = name.lower()
        return cls(ecosystem=ecosystem.strip().lower(), name=name, version=version.strip())

    @property
    def sort_key(self) -> tuple[str, str, str]:
        return (self.ecosystem, self.name, self.version)

    def __str__(self) -> str:
        return f"{self.ecosystem}:{self.name}@{self.version}"


class PackageMetadata(BaseModel):
    """Registry metadata returned by an extension's ``describe`` call."""

    model_config = ConfigDict(frozen=True)

    package: PackageIdentity
    registry_host: str | None = None
    package_url: str | None = None
    version_url: str | None = None
    source_url: str | None = None
    source_digest: str | None = None
    found_locally: bool = False
