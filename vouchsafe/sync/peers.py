"""Peer book — the persisted set of subscribed peers and their watermarks.

Stored as ``peers.json`` in the data directory and rewritten atomically
(temp file + ``os.replace``) on every change, so an interrupted sync
leaves either the old watermark or the new one, never a torn file.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from vouchsafe.core.review_store import StoreError
from vouchsafe.models.peer import LOCAL_SOURCE, PeerDescriptor

logger = logging.getLogger(__name__)


class PeerBook:
    """Thread-safe, file-backed collection of ``PeerDescriptor``s keyed by URL.

    Parameters
    ----------
    path:
        The ``peers.json`` file.  Created on first ``persist()``.
    """

    def __init__(self, path: Path) -> None:
        self._path = path
        self._peers: dict[str, PeerDescriptor] = {}
        self._lock = threading.RLock()
        self.load()

    # -- Membership ---------------------------------------------------------

    def add(self, url: str, *, name: str = "", trust_weight: float = 1.0) -> PeerDescriptor:
        """Subscribe to *url*, or update name and weight if already present.

        The watermark of an existing peer is kept.

        Raises
        ------
        ValueError
            If *url* is empty or reserved, or the weight is outside [0, 1].
        """
        url = url.strip()
        if not url or url == LOCAL_SOURCE:
            raise ValueError(f"Invalid peer URL: {url!r}")
        with self._lock:
            existing = self._peers.get(url)
            try:
                if existing is None:
                    peer = PeerDescriptor(url=url, name=name, trust_weight=trust_weight)
                else:
                    peer = PeerDescriptor.model_validate({
                        **existing.model_dump(),
                        "name": name or existing.name,
                        "trust_weight": trust_weight,
                    })
            except ValidationError as exc:
                raise ValueError(str(exc)) from exc
            self._peers[url] = peer
            self.persist()
        logger.info("%s peer %s (weight %.2f)", "Updated" if existing else "Added", url, trust_weight)
        return peer

    def remove(self, url: str) -> bool:
        with self._lock:
            if url not in self._peers:
                return False
            del self._peers[url]
            self.persist()
        logger.info("Removed peer %s", url)
        return True

    def get(self, url: str) -> PeerDescriptor | None:
        with self._lock:
            return self._peers.get(url)

    def list_peers(self) -> list[PeerDescriptor]:
        with self._lock:
            return sorted(self._peers.values(), key=lambda p: p.url)

    def weights(self) -> dict[str, float]:
        """Peer URL -> trust weight, for the aggregator."""
        with self._lock:
            return {url: p.trust_weight for url, p in self._peers.items()}

    # -- Watermarks ---------------------------------------------------------

    def advance(self, url: str, watermark: str) -> PeerDescriptor | None:
        """Record *watermark* as the peer's last committed head.

        Call only after the corresponding records are committed to the
        store.  Returns ``None`` if the peer was removed in the meantime.
        """
        with self._lock:
            peer = self._peers.get(url)
            if peer is None:
                logger.debug("Peer %s removed during sync; watermark not stored", url)
                return None
            updated = peer.model_copy(update={
                "watermark": watermark,
                "last_synced_at": datetime.now(timezone.utc),
            })
            self._peers[url] = updated
            self.persist()
        logger.debug("Advanced %s watermark to %s", url, watermark[:12])
        return updated

    # -- Persistence --------------------------------------------------------

    def persist(self) -> None:
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            data = [json.loads(p.model_dump_json()) for p in self.list_peers()]
            tmp = self._path.with_suffix(self._path.suffix + ".tmp")
            tmp.write_text(json.dumps(data, indent=2, sort_keys=True), encoding="utf-8")
            os.replace(tmp, self._path)

    def load(self) -> None:
        if not self._path.exists():
            logger.debug("No peer book at %s; starting empty.", self._path)
            return
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
            if not isinstance(raw, list):
                raise ValueError("expected a JSON list of peers")
            peers = [PeerDescriptor.model_validate(item) for item in raw]
        except (OSError, ValueError) as exc:
            raise StoreError(f"Peer book {self._path} is unreadable: {exc}") from exc
        with self._lock:
            for peer in peers:
                self._peers[peer.url] = peer
        logger.debug("Loaded %d peer(s).", len(self._peers))
