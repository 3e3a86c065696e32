"""Dependency check orchestrator — discover, score, classify, report.

For a project root:

1. every enabled extension discovers the project's dependencies
   (concurrently; a failing extension is listed, not fatal);
2. one store snapshot is taken so every score in the report is mutually
   consistent even while a sync is importing;
3. each unique identity is aggregated and classified under the
   ``CheckPolicy``;
4. entries are ordered by ``(ecosystem, name, version)``.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path

from vouchsafe.core.aggregator import TrustAggregator
from vouchsafe.core.review_store import ReviewStore
from vouchsafe.extensions.registry import ExtensionRegistry
from vouchsafe.models.config import CheckPolicy
from vouchsafe.models.report import DependencyReport, ReportEntry
from vouchsafe.models.trust import TrustAggregate, TrustClass

logger = logging.getLogger(__name__)


def classify(aggregate: TrustAggregate, policy: CheckPolicy) -> TrustClass:
    """Map an aggregate to a ``TrustClass``.

    Examples
    --------
    >>> from vouchsafe.models.package import PackageIdentity
    >>> pkg = PackageIdentity(ecosystem="npm", name="d3", version="4.10.0")
    >>> classify(TrustAggregate.unreviewed_for(pkg), CheckPolicy()).value
    'unreviewed'
    >>> agg = TrustAggregate(package=pkg, score=0.5, review_count=3, distinct_author_count=3)
    >>> classify(agg, CheckPolicy()).value
    'trusted'
    """
    if aggregate.score is None:
        return TrustClass.UNREVIEWED
    if aggregate.score < policy.caution_below:
        return TrustClass.CAUTION
    if aggregate.low_confidence:
        return TrustClass.LOW_CONFIDENCE
    if aggregate.score >= policy.trusted_min:
        return TrustClass.TRUSTED
    return TrustClass.LOW_CONFIDENCE


class DependencyCheckOrchestrator:
    """Runs a dependency check for a project.

    Parameters
    ----------
    registry:
        Dispatches ``discover`` to the installed extensions.
    store:
        Review store to score against.
    policy:
        Classification thresholds and failure policy.
    peer_weights:
        Peer URL -> trust weight, from the peer book.
    """

    def __init__(
        self,
        registry: ExtensionRegistry,
        store: ReviewStore,
        *,
        policy: CheckPolicy | None = None,
        peer_weights: Mapping[str, float] | None = None,
    ) -> None:
        self._registry = registry
        self._store = store
        self._policy = policy or CheckPolicy()
        self._peer_weights = dict(peer_weights or {})

    @property
    def policy(self) -> CheckPolicy:
        return self._policy

    def check(self, root: Path) -> DependencyReport:
        outcome = self._registry.discover_all(root)
        packages = outcome.all_packages()
        logger.info(
            "Discovered %d package(s) across %d ecosystem(s); %d extension failure(s)",
            len(packages), len(outcome.packages), len(outcome.failures),
        )

        aggregator = TrustAggregator(
            self._store.snapshot(),
            self._peer_weights,
            low_confidence_max_authors=self._policy.low_confidence_max_authors,
        )
        entries = []
        for package in packages:
            aggregate = aggregator.aggregate(package)
            entries.append(ReportEntry(
                package=package,
                aggregate=aggregate,
                classification=classify(aggregate, self._policy),
            ))

        report = DependencyReport(
            root=root,
            entries=entries,
            extension_failures=outcome.failures,
            policy=self._policy,
        )
        logger.info(
            "Check of %s: %s (worst=%s)",
            root, "passed" if report.passed else "failed",
            report.worst.value if report.worst else "none",
        )
        return report
