"""Authoring and verifying review records.

``verify_record`` is the single gate every record passes before it can
enter the review store, whether it was written locally or fetched from a
peer.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from vouchsafe.core.signing import public_key_for, sign_data, verify_data
from vouchsafe.models.package import PackageIdentity
from vouchsafe.models.review import ReviewPayload, ReviewRecord

logger = logging.getLogger(__name__)


class IntegrityError(RuntimeError):
    """Raised when a record's id or signature does not match its content."""


def create_record(
    private_key: str,
    package: PackageIdentity,
    payload: ReviewPayload,
    *,
    supersedes: str | None = None,
    created_at: datetime | None = None,
) -> ReviewRecord:
    """Build, hash and sign a new review record.

    Parameters
    ----------
    private_key:
        Hex Ed25519 seed of the author.
    package:
        Canonical identity of the reviewed package.
    payload:
        Rating and comment.
    supersedes:
        Id of the author's earlier record this one amends, if any.
    created_at:
        Defaults to now (UTC).
    """
    unsigned = ReviewRecord(
        author_key=public_key_for(private_key),
        package=package,
        payload=payload,
        created_at=created_at or datetime.now(timezone.utc),
        supersedes=supersedes,
    )
    signable = unsigned.signable_bytes()
    return unsigned.model_copy(
        update={
            "id": unsigned.computed_id(),
            "signature": sign_data(signable, private_key),
        }
    )


def verify_record(record: ReviewRecord) -> None:
    """Check that *record* is internally consistent and authentic.

    Raises
    ------
    IntegrityError
        If the stored ``id`` differs from the recomputed content hash, or
        the signature does not verify under ``author_key``.
    """
    expected_id = record.computed_id()
    if record.id != expected_id:
        raise IntegrityError(
            f"Record id mismatch: stored {record.id[:16]!r}, "
            f"content hashes to {expected_id[:16]!r}"
        )
    if not verify_data(record.signable_bytes(), record.signature, record.author_key):
        raise IntegrityError(
            f"Signature on record {record.id[:16]} does not verify "
            f"under author key {record.author_key[:16]}"
        )
