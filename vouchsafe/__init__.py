"""vouchsafe: decentralized, peer-reviewed trust for software dependencies.

  - Signed, content-addressed review records (Ed25519 via PyNaCl)
  - Append-only SQLite review store with snapshot-consistent reads
  - Peer sync over git as conflict-free set union
  - Deterministic, sybil-dampened trust aggregation
  - Out-of-process ecosystem extensions (npm and pypi built in)
"""

__version__ = "0.1.0"
__description__ = "Decentralized, peer-reviewed trust scores for software dependencies"

from vouchsafe.core.aggregator import TrustAggregator
from vouchsafe.core.orchestrator import DependencyCheckOrchestrator
from vouchsafe.core.review_store import ReviewStore
from vouchsafe.core.workspace import Workspace

__all__ = [
    "ReviewStore",
    "TrustAggregator",
    "DependencyCheckOrchestrator",
    "Workspace",
    "__version__",
]
