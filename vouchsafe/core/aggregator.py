"""Trust aggregation — deterministic, one opinion per author.

Algorithm for a package:

1. Take every record for the package from a store snapshot and drop any
   record superseded by another record from the *same author* for the
   same package.  Supersession claims across authors are ignored, so one
   reviewer cannot retract another's review.
2. Group by ``author_key`` and keep the latest (``created_at``, then
   smallest id) surviving record per author.
3. Each survivor contributes ``rating * weight``.  The weight is the
   highest ``trust_weight`` among the sources that supplied the record:
   ``local`` counts 1.0, a peer no longer in the peer book counts 0.0.
4. ``score = fsum(contributions) / distinct_author_count`` clamped to the
   rating range.

The result depends only on the set of records, never on store order.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Mapping

from vouchsafe.core.review_store import StoreSnapshot
from vouchsafe.models.package import PackageIdentity
from vouchsafe.models.peer import LOCAL_SOURCE
from vouchsafe.models.review import RATING_MAX, RATING_MIN, ReviewRecord
from vouchsafe.models.trust import TrustAggregate

logger = logging.getLogger(__name__)


def chain_tips(records: list[ReviewRecord]) -> list[ReviewRecord]:
    """Drop records superseded by a present record from the same author.

    Returns the survivors sorted by id.
    """
    superseded: set[tuple[str, str]] = set()
    for record in records:
        if record.supersedes:
            superseded.add((record.author_key, record.supersedes))
    survivors = [r for r in records if (r.author_key, r.id) not in superseded]
    return sorted(survivors, key=lambda r: r.id)


def latest_per_author(records: list[ReviewRecord]) -> dict[str, ReviewRecord]:
    """Pick each author's most recent record; ties go to the smallest id."""
    latest: dict[str, ReviewRecord] = {}
    for record in sorted(records, key=lambda r: r.id):
        current = latest.get(record.author_key)
        if current is None or record.created_at > current.created_at:
            latest[record.author_key] = record
    return latest


class TrustAggregator:
    """Computes ``TrustAggregate`` values against a fixed store snapshot.

    Parameters
    ----------
    snapshot:
        The store view to read from.  All aggregates computed by one
        aggregator are mutually consistent.
    peer_weights:
        Mapping of peer URL to ``trust_weight``.
    low_confidence_max_authors:
        Aggregates backed by this many distinct authors or fewer carry the
        low-confidence flag.
    """

    def __init__(
        self,
        snapshot: StoreSnapshot,
        peer_weights: Mapping[str, float] | None = None,
        *,
        low_confidence_max_authors: int = 1,
    ) -> None:
        self._snapshot = snapshot
        self._peer_weights = dict(peer_weights or {})
        self._low_confidence_max_authors = low_confidence_max_authors

    def weight_for(self, sources: set[str]) -> float:
        """Highest trust weight among a record's provenance sources."""
        weights = [
            1.0 if source == LOCAL_SOURCE else self._peer_weights.get(source, 0.0)
            for source in sources
        ]
        return max(weights, default=0.0)

    def aggregate(self, package: PackageIdentity) -> TrustAggregate:
        records = self._snapshot.list_for(package)
        tips = chain_tips(records)
        if not tips:
            return TrustAggregate.unreviewed_for(package)

        latest = latest_per_author(tips)
        contributing = sorted(latest.values(), key=lambda r: r.id)
        sources = self._snapshot.sources_for(r.id for r in contributing)

        contributions = [
            record.rating * self.weight_for(sources.get(record.id, set()))
            for record in contributing
        ]
        authors = len(latest)
        score = math.fsum(contributions) / authors
        score = min(RATING_MAX, max(RATING_MIN, score))

        aggregate = TrustAggregate(
            package=package,
            score=score,
            review_count=len(contributing),
            distinct_author_count=authors,
            low_confidence=authors <= self._low_confidence_max_authors,
        )
        logger.debug(
            "Aggregated %s: score=%.3f reviews=%d authors=%d",
            package, score, aggregate.review_count, authors,
        )
        return aggregate
