"""On-disk layout of a review repository.

::

    vouchsafe.json
    reviews/<ecosystem>/<quoted-name>/<quoted-version>/<record-id>.json

Name and version are percent-quoted with no safe characters, so scoped
names such as ``@types/node`` stay one path segment.  Each file holds the
canonical JSON of one full record.  A file whose path disagrees with the
record inside it is rejected.
"""

from __future__ import annotations

import json
import re
from pathlib import PurePosixPath
from urllib.parse import quote, unquote

from pydantic import ValidationError

from vouchsafe.models.package import PackageIdentity
from vouchsafe.models.review import ReviewRecord

LAYOUT_VERSION = 1
MARKER_FILE = "vouchsafe.json"
REVIEWS_DIR = "reviews"

_RECORD_ID_RE = re.compile(r"^[0-9a-f]{64}$")


class LayoutError(ValueError):
    """A repository file that does not follow the review layout."""


def marker_bytes() -> bytes:
    return (json.dumps({"layout_version": LAYOUT_VERSION}, sort_keys=True) + "\n").encode("utf-8")


def check_marker(data: bytes) -> None:
    """Raise ``LayoutError`` unless *data* is a supported layout marker."""
    try:
        marker = json.loads(data.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise LayoutError(f"{MARKER_FILE} is not valid JSON") from exc
    if not isinstance(marker, dict) or marker.get("layout_version") != LAYOUT_VERSION:
        raise LayoutError(f"Unsupported layout in {MARKER_FILE}: {marker!r}")


def path_for(record: ReviewRecord) -> str:
    """Repository-relative POSIX path where *record* is stored."""
    pkg = record.package
    return "/".join((
        REVIEWS_DIR,
        pkg.ecosystem,
        quote(pkg.name, safe=""),
        quote(pkg.version, safe=""),
        f"{record.id}.json",
    ))


def is_record_path(path: str) -> bool:
    parts = PurePosixPath(path).parts
    return len(parts) == 5 and parts[0] == REVIEWS_DIR and parts[-1].endswith(".json")


def parse_path(path: str) -> tuple[PackageIdentity, str]:
    """Split a record path into the package identity and record id it claims.

    Raises
    ------
    LayoutError
        If the path is not a well-formed record path.
    """
    if not is_record_path(path):
        raise LayoutError(f"Not a record path: {path}")
    _, ecosystem, name, version, filename = PurePosixPath(path).parts
    record_id = filename[: -len(".json")]
    if not _RECORD_ID_RE.match(record_id):
        raise LayoutError(f"Bad record id in path: {path}")
    try:
        package = PackageIdentity(
            ecosystem=ecosystem, name=unquote(name), version=unquote(version)
        )
    except ValidationError as exc:
        raise LayoutError(f"Bad package in path {path}: {exc.error_count()} error(s)") from exc
    return package, record_id


def load_record(path: str, data: bytes) -> ReviewRecord:
    """Parse a record file and check it lives where it should.

    Signature and hash are *not* verified here; the store does that.

    Raises
    ------
    LayoutError
        On a malformed path, unparseable content, or a path that does not
        match the record.
    """
    package, record_id = parse_path(path)
    try:
        record = ReviewRecord.from_bytes(data)
    except (ValidationError, ValueError) as exc:
        raise LayoutError(f"Unparseable record at {path}") from exc
    if record.id != record_id or record.package != package or path_for(record) != path:
        raise LayoutError(f"Record at {path} does not match its path")
    return record
