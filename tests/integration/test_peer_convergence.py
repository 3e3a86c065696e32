"""Integration tests — several users exchanging reviews through peer repos.

Each node has its own store, peer book and outgoing repository.  After
everyone has published and fetched everyone else, every store holds the
same records regardless of fetch order, and repeating a sync changes
nothing.  The last class runs the same exchange over real git.
"""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

import pytest

from vouchsafe.core.aggregator import TrustAggregator
from vouchsafe.core.review_store import ReviewStore
from vouchsafe.models.package import PackageIdentity
from vouchsafe.models.review import ReviewRecord
from vouchsafe.sync.engine import PeerSyncEngine
from vouchsafe.sync.git import GitOutgoing, GitRemote
from vouchsafe.sync.peers import PeerBook


@dataclass
class Node:
    name: str
    url: str
    private_key: str
    public_key: str
    store: ReviewStore
    peers: PeerBook
    engine: PeerSyncEngine

    def review(self, record: ReviewRecord) -> None:
        self.store.put(record)

    def score(self, package: PackageIdentity) -> float | None:
        return TrustAggregator(self.store.snapshot(), self.peers.weights()).aggregate(package).score


@pytest.fixture
def network(tmp_dir, remotes, remote_factory, fake_remote, fake_outgoing, keypair):
    """Factory fixture: build a node with its own outgoing FakeRemote."""

    def _node(name: str) -> Node:
        url = f"https://{name}.example/reviews.git"
        remotes[url] = fake_remote(url)
        priv, pub = keypair()
        home = tmp_dir / name
        home.mkdir()
        store = ReviewStore(home / "store.db")
        peers = PeerBook(home / "peers.json")
        engine = PeerSyncEngine(
            store, peers, remote_factory,
            outgoing=fake_outgoing(remotes[url]),
            author_key=pub,
        )
        return Node(name, url, priv, pub, store, peers, engine)

    return _node


def _subscribe_all(nodes: list[Node]) -> None:
    for node in nodes:
        for other in nodes:
            if other is not node:
                node.peers.add(other.url, name=other.name)


class TestConvergence:
    def test_three_nodes_converge(self, network, make_record):
        nodes = [network(n) for n in ("alice", "bob", "carol")]
        for rating, node in zip((1.0, 1.0, -0.5), nodes):
            node.review(make_record(node.private_key, rating))
            node.engine.publish()
        _subscribe_all(nodes)

        summaries = [node.engine.sync() for node in nodes]

        assert all(s.ok for s in summaries)
        expected = set().union(*(n.store.record_ids() for n in nodes))
        assert len(expected) == 3
        assert all(node.store.record_ids() == expected for node in nodes)

    def test_everyone_computes_the_same_score(self, network, make_record, d3):
        nodes = [network(n) for n in ("alice", "bob", "carol")]
        for rating, node in zip((1.0, 1.0, -0.5), nodes):
            node.review(make_record(node.private_key, rating))
            node.engine.publish()
        _subscribe_all(nodes)
        for node in nodes:
            node.engine.sync()

        assert [node.score(d3) for node in nodes] == [pytest.approx(0.5)] * 3

    def test_second_sync_is_a_noop(self, network, make_record):
        nodes = [network(n) for n in ("alice", "bob")]
        for node in nodes:
            node.review(make_record(node.private_key))
            node.engine.publish()
        _subscribe_all(nodes)
        for node in nodes:
            node.engine.sync()
        before = [node.store.record_ids() for node in nodes]

        again = [node.engine.sync() for node in nodes]

        assert all(s.inserted == 0 for s in again)
        assert all(s.publish is not None and s.publish.published == 0 for s in again)
        assert [node.store.record_ids() for node in nodes] == before

    def test_fetch_order_does_not_matter(self, network, make_record, d3):
        alice, bob = network("alice"), network("bob")
        alice.review(make_record(alice.private_key, 1.0))
        alice.review(make_record(alice.private_key, 0.5, minutes=5))
        bob.review(make_record(bob.private_key, -1.0))
        for node in (alice, bob):
            node.engine.publish()

        forward, backward = network("dave"), network("erin")
        for reader in (forward, backward):
            reader.peers.add(alice.url)
            reader.peers.add(bob.url)
        forward.engine.fetch(forward.peers.get(alice.url))
        forward.engine.fetch(forward.peers.get(bob.url))
        backward.engine.fetch(backward.peers.get(bob.url))
        backward.engine.fetch(backward.peers.get(alice.url))

        assert forward.store.record_ids() == backward.store.record_ids()
        assert forward.score(d3) == backward.score(d3) == pytest.approx(-0.25)

    def test_relayed_records_are_not_republished(self, network, make_record):
        alice, bob = network("alice"), network("bob")
        alice.review(make_record(alice.private_key))
        alice.engine.publish()
        bob.peers.add(alice.url)

        summary = bob.engine.sync()

        assert bob.store.count() == 1
        assert summary.publish is not None and summary.publish.published == 0

    def test_late_joiner_catches_up(self, network, make_record):
        alice = network("alice")
        for minute in range(3):
            alice.review(make_record(alice.private_key, 1.0, minutes=minute))
            alice.engine.publish()

        late = network("late")
        late.peers.add(alice.url)
        result = late.engine.fetch(late.peers.get(alice.url))

        assert result.inserted == 3
        assert late.store.record_ids() == alice.store.record_ids()


def _git(*args: str, cwd: Path | None = None) -> None:
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True)


@pytest.mark.git
@pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
class TestRealGit:
    @pytest.fixture
    def origin(self, tmp_dir: Path) -> str:
        bare = tmp_dir / "origin.git"
        _git("init", "--bare", "--quiet", str(bare))
        return str(bare)

    def test_publish_then_fetch(self, tmp_dir, origin, make_record, alice, d3):
        author_store = ReviewStore(tmp_dir / "author.db")
        author_peers = PeerBook(tmp_dir / "author-peers.json")
        author = PeerSyncEngine(
            author_store, author_peers, lambda peer: None,  # type: ignore[arg-type,return-value]
            outgoing=GitOutgoing(origin, tmp_dir / "outgoing", timeout=60.0),
            author_key=alice[1],
        )
        first = make_record(alice[0], 1.0)
        author_store.put(first)
        published = author.publish()
        assert published.ok and published.published == 1

        reader_store = ReviewStore(tmp_dir / "reader.db")
        reader_peers = PeerBook(tmp_dir / "reader-peers.json")
        reader = PeerSyncEngine(
            reader_store, reader_peers,
            lambda peer: GitRemote(peer.url, tmp_dir / "mirror.git", timeout=60.0),
        )
        reader_peers.add(origin, name="alice")

        result = reader.fetch(reader_peers.get(origin))
        assert result.inserted == 1
        assert reader_store.get(first.id) == first
        assert reader_store.sources_for(first.id) == {origin}

        second = make_record(alice[0], 0.5, minutes=10)
        author_store.put(second)
        assert author.publish().published == 1

        again = reader.fetch(reader_peers.get(origin))
        assert again.inserted == 1
        assert again.duplicates == 0
        assert again.watermark_before == result.watermark_after
        assert reader_store.record_ids() == {first.id, second.id}
        assert TrustAggregator(reader_store.snapshot(), reader_peers.weights()).aggregate(d3).score == 0.5

    def test_missing_marker_is_not_a_review_repo(self, tmp_dir, origin):
        work = tmp_dir / "plain"
        _git("clone", "--quiet", origin, str(work))
        (work / "README").write_text("not reviews\n", encoding="utf-8")
        _git("add", "README", cwd=work)
        _git("-c", "user.name=t", "-c", "user.email=t@t", "commit", "--quiet", "-m", "init", cwd=work)
        _git("push", "--quiet", "origin", "HEAD", cwd=work)

        peers = PeerBook(tmp_dir / "peers.json")
        peers.add(origin)
        engine = PeerSyncEngine(
            ReviewStore(tmp_dir / "store.db"), peers,
            lambda peer: GitRemote(peer.url, tmp_dir / "mirror.git", timeout=60.0),
        )
        summary = engine.sync()

        assert not summary.ok
        assert "vouchsafe.json" in summary.peers[0].error
        assert peers.get(origin).watermark == ""
