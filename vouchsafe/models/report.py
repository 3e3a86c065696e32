"""Dependency check report models."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field

from vouchsafe.models.config import CheckPolicy
from vouchsafe.models.extension import ExtensionFailure
from vouchsafe.models.package import PackageIdentity
from vouchsafe.models.trust import TrustAggregate, TrustClass


class ReportEntry(BaseModel):
    """One dependency, its aggregate, and how it was classified."""

    model_config = ConfigDict(frozen=True)

    package: PackageIdentity
    aggregate: TrustAggregate
    classification: TrustClass


class DependencyReport(BaseModel):
    """Ordered per-package results of a dependency check.

    Extension failures are listed alongside results; they never make the
    check fail on their own.
    """

    model_config = ConfigDict(frozen=True)

    root: Path
    entries: list[ReportEntry] = Field(default_factory=list)
    extension_failures: list[ExtensionFailure] = Field(default_factory=list)
    policy: CheckPolicy = CheckPolicy()
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def worst(self) -> TrustClass | None:
        """The most severe classification, or ``None`` for an empty report."""
        if not self.entries:
            return None
        return max((e.classification for e in self.entries), key=lambda c: c.severity)

    @property
    def violations(self) -> list[ReportEntry]:
        fail_on = set(self.policy.fail_on)
        return [e for e in self.entries if e.classification in fail_on]

    @property
    def passed(self) -> bool:
        return not self.violations

    def counts(self) -> dict[str, int]:
        result = {c.value: 0 for c in TrustClass}
        for entry in self.entries:
            result[entry.classification.value] += 1
        return result
