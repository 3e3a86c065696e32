"""Review record models — immutable, signed, content-addressed.

A record's ``id`` is the SHA-256 of the canonical serialization of every
field except ``id`` and ``signature``.  The signature covers the same
bytes.  Amendments never edit a record; they create a new one whose
``supersedes`` names the prior id.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from vouchsafe.core.hasher import canonical_json_bytes, canonical_timestamp, compute_record_id
from vouchsafe.models.package import PackageIdentity

RATING_MIN = -1.0
RATING_MAX = 1.0


class ReviewConfidence(str, Enum):
    """How thoroughly the reviewer inspected the package."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class PackageSecurity(str, Enum):
    """Severity of security concerns the reviewer found."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ReviewPayload(BaseModel):
    """Reviewer opinion: free text plus a rating in ``[-1.0, +1.0]``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    rating: float = Field(ge=RATING_MIN, le=RATING_MAX)
    comment: str = ""
    confidence: ReviewConfidence = ReviewConfidence.MEDIUM
    security: PackageSecurity = PackageSecurity.NONE

    @field_validator("rating", mode="before")
    @classmethod
    def _as_float(cls, value: Any) -> Any:
        # Ints must hash as floats, otherwise 1 and 1.0 produce different ids.
        if isinstance(value, bool):
            raise ValueError("rating must be a number")
        if isinstance(value, int):
            return float(value)
        return value


class ReviewRecord(BaseModel):
    """A single signed review of one package version.

    Examples
    --------
    >>> from vouchsafe.models.package import PackageIdentity
    >>> rec = ReviewRecord(
    ...     author_key="ab" * 32,
    ...     package=PackageIdentity(ecosystem="npm", name="d3", version="4.10.0"),
    ...     payload=ReviewPayload(rating=1.0),
    ... )
    >>> len(rec.computed_id())
    64
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = ""
    author_key: str
    package: PackageIdentity
    payload: ReviewPayload
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    supersedes: str | None = None
    signature: str = ""

    @field_validator("created_at")
    @classmethod
    def _utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    # ------------------------------------------------------------------
    # Canonical forms
    # ------------------------------------------------------------------

    def signable_dict(self) -> dict[str, Any]:
        """Every field except ``id`` and ``signature``, in wire form."""
        return {
            "author_key": self.author_key,
            "package": self.package.model_dump(mode="json"),
            "payload": self.payload.model_dump(mode="json"),
            "created_at": canonical_timestamp(self.created_at),
            "supersedes": self.supersedes,
        }

    def signable_bytes(self) -> bytes:
        return canonical_json_bytes(self.signable_dict())

    def computed_id(self) -> str:
        """Recompute the content hash from the record's fields."""
        return compute_record_id(self.signable_dict())

    def to_wire(self) -> dict[str, Any]:
        """Full record including ``id`` and ``signature``."""
        wire = self.signable_dict()
        wire["id"] = self.id
        wire["signature"] = self.signature
        return wire

    def to_bytes(self) -> bytes:
        """Canonical JSON bytes of the full record, as stored in peer repos."""
        return canonical_json_bytes(self.to_wire())

    @classmethod
    def from_bytes(cls, data: bytes) -> ReviewRecord:
        """Parse a record from its stored JSON form.

        Raises ``pydantic.ValidationError`` or ``ValueError`` on malformed
        input; the id and signature are *not* checked here.
        """
        raw = json.loads(data.decode("utf-8"))
        if not isinstance(raw, dict):
            raise ValueError("record must be a JSON object")
        return cls.model_validate(raw)

    @property
    def rating(self) -> float:
        return self.payload.rating
