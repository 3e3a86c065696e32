"""Results of importing, fetching and publishing review records."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RejectedRecord(BaseModel):
    """A candidate record dropped during import."""

    model_config = ConfigDict(frozen=True)

    reason: str
    record_id: str = ""
    path: str = ""


class ImportResult(BaseModel):
    """Outcome of one ``ReviewStore.import_batch`` call."""

    model_config = ConfigDict(frozen=True)

    inserted: list[str] = Field(default_factory=list)
    duplicates: list[str] = Field(default_factory=list)
    rejected: list[RejectedRecord] = Field(default_factory=list)


class PeerSyncResult(BaseModel):
    """Outcome of fetching a single peer."""

    model_config = ConfigDict(frozen=True)

    peer_url: str
    ok: bool
    error: str = ""
    inserted: int = 0
    duplicates: int = 0
    rejected: list[RejectedRecord] = Field(default_factory=list)
    watermark_before: str = ""
    watermark_after: str = ""


class PublishResult(BaseModel):
    """Outcome of pushing local records to the outgoing repository."""

    model_config = ConfigDict(frozen=True)

    ok: bool
    published: int = 0
    commit: str = ""
    attempts: int = 0
    error: str = ""


class SyncSummary(BaseModel):
    """Everything a ``sync`` run did, for display."""

    model_config = ConfigDict(frozen=True)

    peers: list[PeerSyncResult] = Field(default_factory=list)
    publish: PublishResult | None = None

    @property
    def failed_peers(self) -> list[PeerSyncResult]:
        return [p for p in self.peers if not p.ok]

    @property
    def ok(self) -> bool:
        publish_ok = self.publish is None or self.publish.ok
        return not self.failed_peers and publish_ok

    @property
    def inserted(self) -> int:
        return sum(p.inserted for p in self.peers)
