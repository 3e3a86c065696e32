"""Peer sync engine — replicate review records between git repositories.

Replication is set union over content-addressed records: every candidate
goes through ``ReviewStore.import_batch``, duplicates are no-ops, and no
conflict resolution exists.  Running sync twice, or against peers in
any order, converges to the same store contents.

Per peer, ``fetch``:

1. updates the mirror and reads the remote head;
2. checks the layout marker;
3. lists files added since the stored watermark (everything when there
   is none, or when the watermark vanished from the remote's history);
4. parses and imports the batch in one transaction;
5. only then advances the watermark.

``publish`` writes the user's own records that the outgoing repository
lacks, commits, and pushes, rebasing and retrying when the push is
rejected.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor, as_completed

from vouchsafe.core.review_store import ReviewStore
from vouchsafe.models.peer import PeerDescriptor
from vouchsafe.models.review import ReviewRecord
from vouchsafe.models.sync import PeerSyncResult, PublishResult, RejectedRecord, SyncSummary
from vouchsafe.sync.git import GitError, OutgoingRepository, PushRejected, RemoteReader
from vouchsafe.sync.layout import (
    MARKER_FILE,
    REVIEWS_DIR,
    LayoutError,
    check_marker,
    load_record,
    marker_bytes,
    path_for,
)
from vouchsafe.sync.peers import PeerBook

logger = logging.getLogger(__name__)

RemoteFactory = Callable[[PeerDescriptor], RemoteReader]


class SyncError(RuntimeError):
    """A peer could not be synced (unreachable or malformed).  Other peers continue."""


class PublishError(RuntimeError):
    """Local records could not be pushed to the outgoing repository."""


class PeerSyncEngine:
    """Fetches peers into the review store and publishes local records.

    Parameters
    ----------
    store:
        The review store shared with scoring.
    peers:
        The peer book; its watermarks advance after each committed fetch.
    remote_factory:
        Builds a ``RemoteReader`` for a peer.
    outgoing:
        The user's own repository, or ``None`` when none is configured.
    author_key:
        The local identity's public key; its records are the ones published.
    max_workers:
        Peers fetched concurrently.
    publish_max_attempts:
        Push attempts before giving up on a repeatedly rejected push.
    """

    def __init__(
        self,
        store: ReviewStore,
        peers: PeerBook,
        remote_factory: RemoteFactory,
        *,
        outgoing: OutgoingRepository | None = None,
        author_key: str | None = None,
        max_workers: int = 8,
        publish_max_attempts: int = 3,
    ) -> None:
        self._store = store
        self._peers = peers
        self._remote_factory = remote_factory
        self._outgoing = outgoing
        self._author_key = author_key
        self._max_workers = max(1, max_workers)
        self._publish_max_attempts = max(1, publish_max_attempts)

    @property
    def can_publish(self) -> bool:
        return self._outgoing is not None and bool(self._author_key)

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------

    def fetch(self, peer: PeerDescriptor) -> PeerSyncResult:
        """Import everything new from one peer.

        Raises
        ------
        SyncError
            If the peer is unreachable or its repository is malformed.
            Nothing is imported and the watermark does not move.
        """
        remote = self._remote_factory(peer)
        try:
            head = remote.fetch()
            if not remote.exists(head, MARKER_FILE):
                raise SyncError(f"{peer.url} is not a review repository: {MARKER_FILE} missing")
            check_marker(remote.read(head, MARKER_FILE))

            since = peer.watermark
            if since and not remote.has_commit(since):
                logger.warning(
                    "Watermark %s unknown to %s (history rewritten?); re-reading everything",
                    since[:12], peer.url,
                )
                since = ""
            paths = remote.added_paths(since, head)

            candidates: list[ReviewRecord] = []
            rejected: list[RejectedRecord] = []
            for path in paths:
                if not path.startswith(REVIEWS_DIR + "/"):
                    continue
                try:
                    candidates.append(load_record(path, remote.read(head, path)))
                except LayoutError as exc:
                    logger.warning("Rejecting %s from %s: %s", path, peer.url, exc)
                    rejected.append(RejectedRecord(reason=str(exc), path=path))
        except GitError as exc:
            raise SyncError(f"{peer.url}: {exc}") from exc
        except LayoutError as exc:
            raise SyncError(f"{peer.url} is malformed: {exc}") from exc

        result = self._store.import_batch(candidates, source=peer.url)
        # The batch is committed; only now may the watermark move.
        self._peers.advance(peer.url, head)

        logger.info(
            "Synced %s: %d new, %d duplicate, %d rejected",
            peer.display_name, len(result.inserted),
            len(result.duplicates), len(rejected) + len(result.rejected),
        )
        return PeerSyncResult(
            peer_url=peer.url,
            ok=True,
            inserted=len(result.inserted),
            duplicates=len(result.duplicates),
            rejected=rejected + list(result.rejected),
            watermark_before=peer.watermark,
            watermark_after=head,
        )

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(self) -> PublishResult:
        """Push locally authored records missing from the outgoing repository.

        Raises
        ------
        PublishError
            If no outgoing repository is configured, git fails, or every
            attempt was rejected.
        """
        if self._outgoing is None or not self._author_key:
            raise PublishError("No outgoing repository configured (run `vouchsafe setup <repo-url>`)")
        repo = self._outgoing
        mine = self._store.list_by_author(self._author_key)

        published = 0
        pending = False
        for attempt in range(1, self._publish_max_attempts + 1):
            try:
                repo.refresh()
                present = repo.list_paths()
                files = {
                    path_for(record): record.to_bytes()
                    for record in mine
                    if path_for(record) not in present
                }
                new_records = len(files)
                if MARKER_FILE not in present:
                    files[MARKER_FILE] = marker_bytes()
                if files:
                    repo.write_files(files)
                    if repo.commit(f"Add {new_records} review(s)") is not None:
                        published += new_records
                        pending = True
                if not pending:
                    logger.info("Outgoing repository already holds all %d local record(s)", len(mine))
                    return PublishResult(ok=True, published=0, attempts=attempt)
                commit = repo.push()
            except PushRejected:
                logger.warning(
                    "Push rejected (attempt %d/%d); rebasing onto remote",
                    attempt, self._publish_max_attempts,
                )
                continue
            except GitError as exc:
                raise PublishError(str(exc)) from exc

            logger.info("Published %d record(s) in %s", published, commit[:12])
            return PublishResult(ok=True, published=published, commit=commit, attempts=attempt)

        raise PublishError(f"Push rejected {self._publish_max_attempts} time(s)")

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def sync(
        self,
        peers: list[PeerDescriptor] | None = None,
        *,
        publish: bool = True,
    ) -> SyncSummary:
        """Fetch every peer concurrently, then publish if possible.

        A failing peer is reported in the summary; ``StoreError`` aborts.
        """
        targets = peers if peers is not None else self._peers.list_peers()
        results: dict[str, PeerSyncResult] = {}

        if targets:
            with ThreadPoolExecutor(
                max_workers=min(self._max_workers, len(targets)),
                thread_name_prefix="vouchsafe-sync",
            ) as pool:
                futures = {pool.submit(self.fetch, peer): peer for peer in targets}
                for future in as_completed(futures):
                    peer = futures[future]
                    try:
                        results[peer.url] = future.result()
                    except SyncError as exc:
                        logger.warning("Skipping peer %s: %s", peer.display_name, exc)
                        results[peer.url] = PeerSyncResult(
                            peer_url=peer.url,
                            ok=False,
                            error=str(exc),
                            watermark_before=peer.watermark,
                            watermark_after=peer.watermark,
                        )

        publish_result: PublishResult | None = None
        if publish and self.can_publish:
            try:
                publish_result = self.publish()
            except PublishError as exc:
                logger.error("Publish failed: %s", exc)
                publish_result = PublishResult(
                    ok=False, error=str(exc), attempts=self._publish_max_attempts
                )

        return SyncSummary(
            peers=[results[url] for url in sorted(results)],
            publish=publish_result,
        )
