"""Shared test fixtures for vouchsafe."""

from __future__ import annotations

import sys
import textwrap
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest

from vouchsafe.core.hasher import sha256_hex
from vouchsafe.core.records import create_record
from vouchsafe.core.review_store import ReviewStore
from vouchsafe.core.signing import generate_keypair
from vouchsafe.models.package import PackageIdentity
from vouchsafe.models.peer import PeerDescriptor
from vouchsafe.models.review import ReviewPayload, ReviewRecord
from vouchsafe.sync.git import GitError, PushRejected
from vouchsafe.sync.layout import MARKER_FILE, marker_bytes, path_for
from vouchsafe.sync.peers import PeerBook

BASE_TIME = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def tmp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test artifacts."""
    return tmp_path


@pytest.fixture
def store(tmp_dir: Path) -> ReviewStore:
    """Provide a fresh ReviewStore backed by a temp SQLite database."""
    return ReviewStore(tmp_dir / "store.db")


@pytest.fixture
def peer_book(tmp_dir: Path) -> PeerBook:
    return PeerBook(tmp_dir / "peers.json")


@pytest.fixture
def d3() -> PackageIdentity:
    """The package used in the worked aggregation example."""
    return PackageIdentity(ecosystem="npm", name="d3", version="4.10.0")


@pytest.fixture
def keypair() -> Callable[[], tuple[str, str]]:
    """Factory fixture: a fresh ``(private_key, public_key)`` per call."""
    return generate_keypair


@pytest.fixture
def alice() -> tuple[str, str]:
    return generate_keypair()


@pytest.fixture
def bob() -> tuple[str, str]:
    return generate_keypair()


@pytest.fixture
def carol() -> tuple[str, str]:
    return generate_keypair()


# ---------------------------------------------------------------------------
# Record factory
# ---------------------------------------------------------------------------


@pytest.fixture
def make_record(d3: PackageIdentity) -> Callable[..., ReviewRecord]:
    """Factory fixture: sign a ReviewRecord with sensible defaults.

    ``minutes`` offsets ``created_at`` from a fixed base time so ordering
    tests are deterministic.
    """

    def _factory(
        private_key: str,
        rating: float = 1.0,
        *,
        package: PackageIdentity | None = None,
        minutes: int = 0,
        supersedes: str | None = None,
        **payload_overrides: Any,
    ) -> ReviewRecord:
        return create_record(
            private_key,
            package or d3,
            ReviewPayload(rating=rating, **payload_overrides),
            supersedes=supersedes,
            created_at=BASE_TIME + timedelta(minutes=minutes),
        )

    return _factory


# ---------------------------------------------------------------------------
# In-memory git stand-ins
# ---------------------------------------------------------------------------


class FakeRemote:
    """In-memory ``RemoteReader``: a linear history of file trees."""

    def __init__(self, url: str = "https://example.test/peer.git") -> None:
        self.url = url
        self.commits: list[tuple[str, dict[str, bytes]]] = []
        self.unreachable = False
        self.fetches = 0

    # -- building history ---------------------------------------------------

    def commit(self, files: dict[str, bytes]) -> str:
        tree = dict(self.commits[-1][1]) if self.commits else {}
        tree.update(files)
        commit_id = sha256_hex(f"{self.url}:{len(self.commits)}:{sorted(tree)}".encode())
        self.commits.append((commit_id, tree))
        return commit_id

    def publish_records(self, records: list[ReviewRecord], *, marker: bool = True) -> str:
        files = {path_for(r): r.to_bytes() for r in records}
        if marker:
            files[MARKER_FILE] = marker_bytes()
        return self.commit(files)

    def rewrite_history(self) -> None:
        """Give every commit a new id, as a force-push would."""
        self.commits = [
            (sha256_hex(f"rewritten:{cid}".encode()), tree) for cid, tree in self.commits
        ]

    @property
    def head(self) -> str:
        return self.commits[-1][0]

    def _tree(self, commit: str) -> dict[str, bytes]:
        for cid, tree in self.commits:
            if cid == commit:
                return tree
        raise GitError(f"unknown commit {commit}")

    # -- RemoteReader -------------------------------------------------------

    def fetch(self) -> str:
        self.fetches += 1
        if self.unreachable:
            raise GitError(f"could not read from {self.url}")
        if not self.commits:
            raise GitError("empty repository")
        return self.head

    def has_commit(self, commit: str) -> bool:
        return any(cid == commit for cid, _ in self.commits)

    def added_paths(self, since: str, head: str) -> list[str]:
        new = self._tree(head)
        old = self._tree(since) if since else {}
        return sorted(set(new) - set(old))

    def exists(self, head: str, path: str) -> bool:
        return path in self._tree(head)

    def read(self, head: str, path: str) -> bytes:
        tree = self._tree(head)
        if path not in tree:
            raise GitError(f"{path} not in {head}")
        return tree[path]


class FakeOutgoing:
    """In-memory ``OutgoingRepository`` pushing into a ``FakeRemote``.

    ``reject_next`` pushes are refused, each after a concurrent writer
    lands an unrelated commit on the remote.
    """

    def __init__(self, remote: FakeRemote) -> None:
        self.remote = remote
        self.tree: dict[str, bytes] = {}
        self.staged: dict[str, bytes] = {}
        self.unpushed: dict[str, bytes] = {}
        self.reject_next = 0
        self.pushes = 0

    def refresh(self) -> None:
        base = dict(self.remote.commits[-1][1]) if self.remote.commits else {}
        base.update(self.unpushed)
        self.tree = base

    def list_paths(self) -> set[str]:
        return set(self.tree)

    def write_files(self, files: dict[str, bytes]) -> None:
        self.tree.update(files)
        self.staged.update(files)

    def commit(self, message: str) -> str | None:
        if not self.staged:
            return None
        self.unpushed.update(self.staged)
        self.staged = {}
        return sha256_hex(message.encode() + repr(sorted(self.unpushed)).encode())

    def push(self) -> str:
        self.pushes += 1
        if self.reject_next:
            self.reject_next -= 1
            self.remote.commit({f"notes/concurrent-{self.pushes}.txt": b"x"})
            raise PushRejected("! [rejected] main -> main (fetch first)")
        head = self.remote.commit(self.unpushed)
        self.unpushed = {}
        return head


@pytest.fixture
def fake_remote() -> type[FakeRemote]:
    return FakeRemote


@pytest.fixture
def fake_outgoing() -> type[FakeOutgoing]:
    return FakeOutgoing


@pytest.fixture
def remotes() -> dict[str, FakeRemote]:
    """URL -> FakeRemote registry used by ``remote_factory``."""
    return {}


@pytest.fixture
def remote_factory(remotes: dict[str, FakeRemote]) -> Callable[[PeerDescriptor], FakeRemote]:
    def _factory(peer: PeerDescriptor) -> FakeRemote:
        if peer.url not in remotes:
            remote = FakeRemote(peer.url)
            remote.unreachable = True
            remotes[peer.url] = remote
        return remotes[peer.url]

    return _factory


# ---------------------------------------------------------------------------
# Extension scripts
# ---------------------------------------------------------------------------


@pytest.fixture
def write_extension(tmp_dir: Path) -> Callable[..., Path]:
    """Factory fixture: write a Python extension script built on ExtensionServer.

    ``body`` is the class body (indented by the factory); ``packages`` is
    returned by ``discover`` unless the body overrides it.
    """

    def _factory(
        name: str,
        ecosystem: str = "demo",
        *,
        packages: list[tuple[str, str]] | None = None,
        body: str = "",
        case_insensitive: bool = False,
    ) -> Path:
        pairs = packages if packages is not None else [("left-pad", "1.3.0")]
        source = textwrap.dedent(
            f"""
            import sys
            from vouchsafe.extensions.server import ExtensionServer


            class Demo(ExtensionServer):
                ecosystem_id = {ecosystem!r}
                manifest_patterns = ("demo.lock",)
                case_insensitive_names = {case_insensitive!r}
                extension_version = "9.9.9"

                def discover(self, root):
                    return {pairs!r}
            """
        )
        if body:
            source += textwrap.indent(textwrap.dedent(body), "    ")
        source += "\n\nif __name__ == '__main__':\n    sys.exit(Demo().run())\n"
        path = tmp_dir / f"{name}.py"
        path.write_text(source, encoding="utf-8")
        return path

    return _factory


@pytest.fixture
def write_raw_script(tmp_dir: Path) -> Callable[[str, str], Path]:
    """Factory fixture: write an arbitrary Python script (for misbehaving extensions)."""

    def _factory(name: str, source: str) -> Path:
        path = tmp_dir / f"{name}.py"
        path.write_text(textwrap.dedent(source), encoding="utf-8")
        return path

    return _factory


@pytest.fixture
def python() -> str:
    return sys.executable
