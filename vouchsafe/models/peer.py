"""Peer descriptor — a subscribed remote review repository."""

from __future__ import annotations

from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field

# Provenance source recorded for self-authored records.
LOCAL_SOURCE = "local"


class PeerDescriptor(BaseModel):
    """Persisted state for one peer.

    ``watermark`` is the remote head commit as of the last committed sync.
    It is the only piece of peer state that sync mutates, and it only
    moves after the corresponding batch is durably in the review store.
    """

    model_config = ConfigDict(frozen=True)

    url: str
    name: str = ""
    watermark: str = ""
    trust_weight: float = Field(default=1.0, ge=0.0, le=1.0)
    added_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    last_synced_at: datetime | None = None

    @property
    def display_name(self) -> str:
        return self.name or self.url
