"""Trust aggregate and classification models."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict

from vouchsafe.models.package import PackageIdentity


class TrustClass(str, Enum):
    """Dependency-check classification, ordered by ``severity``."""

    TRUSTED = "trusted"
    LOW_CONFIDENCE = "low-confidence"
    UNREVIEWED = "unreviewed"
    CAUTION = "caution"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY: dict[TrustClass, int] = {
    TrustClass.TRUSTED: 0,
    TrustClass.LOW_CONFIDENCE: 1,
    TrustClass.UNREVIEWED: 2,
    TrustClass.CAUTION: 3,
}


class TrustAggregate(BaseModel):
    """Derived trust signal for one package identity.  Never persisted.

    ``score is None`` is the "unreviewed" sentinel: no record contributed,
    which is not the same as a neutral 0.0.
    """

    model_config = ConfigDict(frozen=True)

    package: PackageIdentity
    score: float | None = None
    review_count: int = 0
    distinct_author_count: int = 0
    low_confidence: bool = False

    @property
    def unreviewed(self) -> bool:
        return self.score is None

    @classmethod
    def unreviewed_for(cls, package: PackageIdentity) -> TrustAggregate:
        return cls(package=package)
