"""Append-only, content-addressed review store backed by SQLite.

Design:
- Append-only: records enter through ``import_batch()`` (``put()`` is a
  batch of one); there is no update and no delete.
- Content-addressed: ``record_id`` is UNIQUE, so inserting a present id
  is a no-op reported as a duplicate.
- Derived indices: package -> records and (package, author) -> records.
- Provenance: a grow-only set of ``(record_id, source)`` pairs recording
  which peers (or ``local``) supplied each record.
- Snapshots pin the log sequence numbers at creation time.  A batch is
  inserted in one transaction, so a snapshot sees all of it or none.
- WAL journal mode so readers never block the writer.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path

from pydantic import ValidationError

from vouchsafe.core.records import IntegrityError, verify_record
from vouchsafe.models.package import PackageIdentity
from vouchsafe.models.peer import LOCAL_SOURCE
from vouchsafe.models.review import ReviewRecord
from vouchsafe.models.sync import ImportResult, RejectedRecord

logger = logging.getLogger(__name__)

__all__ = [
    "IntegrityError",
    "PutOutcome",
    "ReviewStore",
    "StoreError",
    "StoreSnapshot",
]


# ---------------------------------------------------------------------------
# DDL
# ---------------------------------------------------------------------------

_CREATE_LOG = """
CREATE TABLE IF NOT EXISTS review_log (
    seq          INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id    TEXT NOT NULL UNIQUE,
    ecosystem    TEXT NOT NULL,
    name         TEXT NOT NULL,
    version      TEXT NOT NULL,
    author_key   TEXT NOT NULL,
    supersedes   TEXT,
    created_at   TEXT NOT NULL,
    record_json  BLOB NOT NULL,
    imported_at  TEXT NOT NULL
);
"""

_CREATE_IDX_PACKAGE = """
CREATE INDEX IF NOT EXISTS idx_package
    ON review_log(ecosystem, name, version, seq);
"""

_CREATE_IDX_PACKAGE_AUTHOR = """
CREATE INDEX IF NOT EXISTS idx_package_author
    ON review_log(ecosystem, name, version, author_key, seq);
"""

_CREATE_IDX_AUTHOR = """
CREATE INDEX IF NOT EXISTS idx_author ON review_log(author_key, seq);
"""

_CREATE_PROVENANCE = """
CREATE TABLE IF NOT EXISTS provenance (
    seq        INTEGER PRIMARY KEY AUTOINCREMENT,
    record_id  TEXT NOT NULL,
    source     TEXT NOT NULL,
    UNIQUE(record_id, source)
);
"""


# Stay well under SQLite's bound-parameter limit.
_SQL_CHUNK = 500


class StoreError(RuntimeError):
    """Raised when local storage is unavailable or corrupt.

    This is the one failure class that aborts the current command; the
    store can be rebuilt by a full resync from peers.
    """


class PutOutcome(str, Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"


class ReviewStore:
    """Durable, verifiable, queryable set of review records.

    Parameters
    ----------
    db_path:
        Path to the SQLite database file.  Created if it does not exist.
    """

    # One writer per process; SQLite's own locking covers other processes.
    _write_lock = threading.Lock()

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StoreError(f"Cannot create store directory: {exc}") from exc
        self._init_schema()

    @property
    def path(self) -> Path:
        return self._db_path

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        try:
            conn = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                isolation_level=None,
                timeout=30.0,
            )
        except sqlite3.Error as exc:
            raise StoreError(f"Cannot open review store {self._db_path}: {exc}") from exc
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
        except sqlite3.DatabaseError as exc:
            raise StoreError(f"Review store {self._db_path} failed: {exc}") from exc
        finally:
            conn.close()

    def _init_schema(self) -> None:
        with self._connect() as conn:
            row = conn.execute("PRAGMA quick_check").fetchone()
            if row is None or row[0] != "ok":
                raise StoreError(
                    f"Review store {self._db_path} failed integrity check: "
                    f"{row[0] if row else 'no result'}"
                )
            conn.execute(_CREATE_LOG)
            conn.execute(_CREATE_IDX_PACKAGE)
            conn.execute(_CREATE_IDX_PACKAGE_AUTHOR)
            conn.execute(_CREATE_IDX_AUTHOR)
            conn.execute(_CREATE_PROVENANCE)

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def put(self, record: ReviewRecord, *, source: str = LOCAL_SOURCE) -> PutOutcome:
        """Verify and append a single record.

        Raises
        ------
        IntegrityError
            If the id or signature does not match the record's content.
        """
        verify_record(record)
        inserted = self._insert_verified([record], source)
        return PutOutcome.INSERTED if inserted else PutOutcome.DUPLICATE

    def import_batch(
        self,
        records: Iterable[ReviewRecord],
        *,
        source: str,
    ) -> ImportResult:
        """Verify a batch of candidates and append the valid ones atomically.

        Verification runs before the write lock is taken.  Records that fail
        are dropped with a logged reason and do not abort the batch.  The
        survivors are inserted in one transaction.
        """
        verified: list[ReviewRecord] = []
        rejected: list[RejectedRecord] = []
        for record in records:
            try:
                verify_record(record)
            except IntegrityError as exc:
                logger.warning("Dropping record %s from %s: %s", record.id[:16], source, exc)
                rejected.append(RejectedRecord(reason=str(exc), record_id=record.id))
                continue
            verified.append(record)

        inserted_ids = set(self._insert_verified(verified, source))
        inserted: list[str] = []
        duplicates: list[str] = []
        for record in verified:
            if record.id in inserted_ids and record.id not in inserted:
                inserted.append(record.id)
            else:
                duplicates.append(record.id)

        if inserted:
            logger.info(
                "Imported %d new record(s) from %s (%d duplicate, %d rejected).",
                len(inserted), source, len(duplicates), len(rejected),
            )
        return ImportResult(inserted=inserted, duplicates=duplicates, rejected=rejected)

    def _insert_verified(self, records: list[ReviewRecord], source: str) -> list[str]:
        """Insert already-verified records in one transaction.

        Returns the ids that were newly inserted.  Check-then-insert is a
        single ``INSERT OR IGNORE`` against the UNIQUE id, so concurrent
        imports of the same record cannot both insert it.
        """
        if not records:
            return []
        now = datetime.now(timezone.utc).isoformat()
        inserted: list[str] = []
        with self._write_lock, self._connect() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for record in records:
                    cur = conn.execute(
                        """
                        INSERT OR IGNORE INTO review_log
                            (record_id, ecosystem, name, version, author_key,
                             supersedes, created_at, record_json, imported_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            record.id,
                            record.package.ecosystem,
                            record.package.name,
                            record.package.version,
                            record.author_key,
                            record.supersedes,
                            record.signable_dict()["created_at"],
                            record.to_bytes(),
                            now,
                        ),
                    )
                    if cur.rowcount == 1:
                        inserted.append(record.id)
                    conn.execute(
                        "INSERT OR IGNORE INTO provenance (record_id, source) VALUES (?, ?)",
                        (record.id, source),
                    )
                conn.execute("COMMIT")
            except BaseException:
                # Interrupts included: the batch is either whole or absent.
                conn.execute("ROLLBACK")
                raise
        return inserted

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def snapshot(self) -> StoreSnapshot:
        """Return an immutable view pinned to the current end of the log.

        Both sequence numbers come from one read transaction, so a batch
        committed meanwhile is either wholly inside the view or wholly out.
        """
        with self._connect() as conn:
            conn.execute("BEGIN")
            try:
                record_seq = conn.execute(
                    "SELECT COALESCE(MAX(seq), 0) FROM review_log"
                ).fetchone()[0]
                prov_seq = conn.execute(
                    "SELECT COALESCE(MAX(seq), 0) FROM provenance"
                ).fetchone()[0]
            finally:
                conn.execute("COMMIT")
        return StoreSnapshot(self, record_seq, prov_seq)

    def list_for(self, package: PackageIdentity) -> list[ReviewRecord]:
        """Return every record indexed for *package*, in insertion order."""
        return self.snapshot().list_for(package)

    def get(self, record_id: str) -> ReviewRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT record_id, record_json FROM review_log WHERE record_id = ?",
                (record_id,),
            ).fetchone()
        return self._row_to_record(row) if row else None

    def contains(self, record_id: str) -> bool:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT 1 FROM review_log WHERE record_id = ?", (record_id,)
            ).fetchone()
        return row is not None

    def count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM review_log").fetchone()[0]

    def record_ids(self) -> set[str]:
        """All record ids — the store's content as a set."""
        with self._connect() as conn:
            rows = conn.execute("SELECT record_id FROM review_log").fetchall()
        return {row[0] for row in rows}

    def list_by_author(self, author_key: str) -> list[ReviewRecord]:
        """Return every record written by *author_key*, in insertion order."""
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT record_id, record_json FROM review_log "
                "WHERE author_key = ? ORDER BY seq ASC",
                (author_key,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def sources_for(self, record_id: str) -> set[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT source FROM provenance WHERE record_id = ?", (record_id,)
            ).fetchall()
        return {row[0] for row in rows}

    def packages(self) -> list[PackageIdentity]:
        """Every package with at least one record, sorted."""
        return self.snapshot().packages()

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _row_to_record(row: tuple) -> ReviewRecord:
        """Decode a stored record, treating any inconsistency as corruption."""
        record_id, record_json = row
        try:
            record = ReviewRecord.from_bytes(bytes(record_json))
        except (ValidationError, ValueError) as exc:
            raise StoreError(f"Stored record {record_id} is unreadable: {exc}") from exc
        if record.id != record_id or record.computed_id() != record_id:
            raise StoreError(f"Stored record {record_id} does not match its content hash")
        return record


class StoreSnapshot:
    """Read-only view of a ``ReviewStore`` at a fixed point in its log.

    Records and provenance appended after the snapshot was taken are
    invisible to it.
    """

    def __init__(self, store: ReviewStore, record_seq: int, provenance_seq: int) -> None:
        self._store = store
        self._record_seq = record_seq
        self._provenance_seq = provenance_seq

    @property
    def record_seq(self) -> int:
        return self._record_seq

    def list_for(self, package: PackageIdentity) -> list[ReviewRecord]:
        with self._store._connect() as conn:
            rows = conn.execute(
                """
                SELECT record_id, record_json FROM review_log
                WHERE ecosystem = ? AND name = ? AND version = ? AND seq <= ?
                ORDER BY seq ASC
                """,
                (package.ecosystem, package.name, package.version, self._record_seq),
            ).fetchall()
        return [ReviewStore._row_to_record(row) for row in rows]

    def sources_for(self, record_ids: Iterable[str]) -> dict[str, set[str]]:
        """Map each record id to the provenance sources known at snapshot time."""
        ids = list(record_ids)
        result: dict[str, set[str]] = {rid: set() for rid in ids}
        with self._store._connect() as conn:
            for start in range(0, len(ids), _SQL_CHUNK):
                chunk = ids[start:start + _SQL_CHUNK]
                placeholders = ",".join("?" for _ in chunk)
                rows = conn.execute(
                    f"SELECT record_id, source FROM provenance "
                    f"WHERE seq <= ? AND record_id IN ({placeholders})",
                    (self._provenance_seq, *chunk),
                ).fetchall()
                for record_id, source in rows:
                    result[record_id].add(source)
        return result

    def packages(self) -> list[PackageIdentity]:
        with self._store._connect() as conn:
            rows = conn.execute(
                "SELECT DISTINCT ecosystem, name, version FROM review_log WHERE seq <= ?",
                (self._record_seq,),
            ).fetchall()
        packages = [PackageIdentity(ecosystem=e, name=n, version=v) for e, n, v in rows]
        return sorted(packages, key=lambda p: p.sort_key)
