"""vouchsafe data models — all Pydantic v2, all frozen (immutable)."""

from vouchsafe.models.config import CheckPolicy, UserConfig
from vouchsafe.models.extension import ExtensionDescriptor, ExtensionEntry, ExtensionFailure
from vouchsafe.models.package import PackageIdentity, PackageMetadata
from vouchsafe.models.peer import LOCAL_SOURCE, PeerDescriptor
from vouchsafe.models.report import DependencyReport, ReportEntry
from vouchsafe.models.review import (
    PackageSecurity,
    ReviewConfidence,
    ReviewPayload,
    ReviewRecord,
)
from vouchsafe.models.sync import (
    ImportResult,
    PeerSyncResult,
    PublishResult,
    RejectedRecord,
    SyncSummary,
)
from vouchsafe.models.trust import TrustAggregate, TrustClass

__all__ = [
    # packages
    "PackageIdentity",
    "PackageMetadata",
    # reviews
    "ReviewRecord",
    "ReviewPayload",
    "ReviewConfidence",
    "PackageSecurity",
    # peers
    "PeerDescriptor",
    "LOCAL_SOURCE",
    # trust
    "TrustAggregate",
    "TrustClass",
    # extensions
    "ExtensionEntry",
    "ExtensionDescriptor",
    "ExtensionFailure",
    # reports
    "DependencyReport",
    "ReportEntry",
    # sync
    "ImportResult",
    "RejectedRecord",
    "PeerSyncResult",
    "PublishResult",
    "SyncSummary",
    # config
    "CheckPolicy",
    "UserConfig",
]
