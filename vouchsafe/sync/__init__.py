"""Peer synchronization — git-hosted review repositories replicated by set union."""

from vouchsafe.sync.engine import PeerSyncEngine, PublishError, SyncError
from vouchsafe.sync.git import GitError, GitOutgoing, GitRemote, OutgoingRepository, RemoteReader
from vouchsafe.sync.peers import PeerBook

__all__ = [
    "PeerSyncEngine",
    "SyncError",
    "PublishError",
    "PeerBook",
    "GitError",
    "GitRemote",
    "GitOutgoing",
    "RemoteReader",
    "OutgoingRepository",
]
