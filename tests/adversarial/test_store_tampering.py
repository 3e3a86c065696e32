"""Adversarial tests — direct edits to the review store's SQLite file.

An attacker (or a bad disk) with write access to ``store.db`` must not be
able to change what a stored record says without the store noticing.
Every read re-derives the content hash, so edits surface as StoreError.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from vouchsafe.core.review_store import ReviewStore, StoreError


def _execute(db_path: Path, sql: str, params: tuple = ()) -> None:
    conn = sqlite3.connect(str(db_path))
    conn.execute(sql, params)
    conn.commit()
    conn.close()


@pytest.fixture
def seeded(store: ReviewStore, make_record, alice, bob):
    records = [make_record(alice[0], 1.0), make_record(bob[0], 0.5)]
    for record in records:
        store.put(record)
    return store, records


class TestRecordTampering:
    def test_edited_rating_detected(self, seeded, d3):
        store, records = seeded
        target = records[0]
        tampered = target.to_bytes().replace(b'"rating":1.0', b'"rating":-1.0')
        assert tampered != target.to_bytes()
        _execute(
            store.path,
            "UPDATE review_log SET record_json = ? WHERE record_id = ?",
            (tampered, target.id),
        )

        with pytest.raises(StoreError, match="content hash"):
            store.get(target.id)
        with pytest.raises(StoreError):
            store.list_for(d3)

    def test_garbage_json_detected(self, seeded):
        store, records = seeded
        _execute(
            store.path,
            "UPDATE review_log SET record_json = ? WHERE record_id = ?",
            (b"{broken", records[1].id),
        )
        with pytest.raises(StoreError, match="unreadable"):
            store.get(records[1].id)

    def test_swapped_contents_detected(self, seeded):
        store, records = seeded
        _execute(
            store.path,
            "UPDATE review_log SET record_json = ? WHERE record_id = ?",
            (records[1].to_bytes(), records[0].id),
        )
        with pytest.raises(StoreError):
            store.get(records[0].id)

    def test_untouched_records_still_readable(self, seeded):
        store, records = seeded
        _execute(
            store.path,
            "UPDATE review_log SET record_json = ? WHERE record_id = ?",
            (b"{broken", records[1].id),
        )
        assert store.get(records[0].id) == records[0]


class TestDatabaseCorruption:
    def test_not_a_database(self, tmp_dir):
        path = tmp_dir / "store.db"
        path.write_bytes(b"this is not sqlite" * 100)
        with pytest.raises(StoreError):
            ReviewStore(path)

    def test_no_delete_api(self, store: ReviewStore):
        assert not hasattr(store, "delete")
        assert not hasattr(store, "update")
