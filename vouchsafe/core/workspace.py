"""Workspace — wires settings, user config, identity, store, peers and extensions.

One ``Workspace`` serves one CLI invocation.  Components are built
lazily so commands that touch only the peer book never open the store.
"""

from __future__ import annotations

import logging
from functools import cached_property

from vouchsafe.config import VouchsafeSettings, settings as default_settings
from vouchsafe.core.hasher import sha256_hex
from vouchsafe.core.identity import LocalIdentity, load_identity, load_or_create_identity
from vouchsafe.core.orchestrator import DependencyCheckOrchestrator
from vouchsafe.core.records import create_record
from vouchsafe.core.review_store import ReviewStore
from vouchsafe.extensions.protocol import ExtensionError
from vouchsafe.extensions.registry import ExtensionRegistry
from vouchsafe.models.config import UserConfig, load_user_config, save_user_config
from vouchsafe.models.package import PackageIdentity
from vouchsafe.models.peer import LOCAL_SOURCE, PeerDescriptor
from vouchsafe.models.review import ReviewPayload, ReviewRecord
from vouchsafe.sync.engine import PeerSyncEngine
from vouchsafe.sync.git import GitOutgoing, GitRemote
from vouchsafe.sync.peers import PeerBook

logger = logging.getLogger(__name__)


class Workspace:
    """Everything a command needs, rooted at ``settings.data_dir``.

    Parameters
    ----------
    settings:
        Process settings; defaults to the module singleton.
    """

    def __init__(self, settings: VouchsafeSettings | None = None) -> None:
        self.settings = settings or default_settings
        self.config: UserConfig = load_user_config(self.settings.user_config_path)

    # -- Components ---------------------------------------------------------

    @cached_property
    def store(self) -> ReviewStore:
        return ReviewStore(self.settings.store_path)

    @cached_property
    def peers(self) -> PeerBook:
        return PeerBook(self.settings.peers_path)

    @cached_property
    def registry(self) -> ExtensionRegistry:
        return ExtensionRegistry(
            self.settings.extensions_path,
            bin_dir=self.settings.extensions_bin_dir,
            timeout=self.settings.extension_timeout_seconds,
            max_workers=self.settings.max_concurrent_extensions,
            http_timeout=self.settings.http_timeout_seconds,
        )

    @cached_property
    def identity(self) -> LocalIdentity:
        return load_identity(self.settings.identity_path)

    def save_config(self, config: UserConfig) -> None:
        save_user_config(config, self.settings.user_config_path)
        self.config = config

    # -- Sync ---------------------------------------------------------------

    def remote_for(self, peer: PeerDescriptor) -> GitRemote:
        mirror = self.settings.repos_dir / "peers" / sha256_hex(peer.url.encode("utf-8"))[:16]
        return GitRemote(
            peer.url,
            mirror,
            git_binary=self.settings.git_binary,
            timeout=self.settings.git_timeout_seconds,
        )

    def outgoing(self) -> GitOutgoing | None:
        url = self.config.outgoing_repo_url
        if not url:
            return None
        return GitOutgoing(
            url,
            self.settings.repos_dir / "outgoing",
            git_binary=self.settings.git_binary,
            timeout=self.settings.git_timeout_seconds,
        )

    def sync_engine(self) -> PeerSyncEngine:
        author_key = None
        if self.settings.identity_path.exists():
            author_key = self.identity.public_key
        return PeerSyncEngine(
            self.store,
            self.peers,
            self.remote_for,
            outgoing=self.outgoing(),
            author_key=author_key,
            max_workers=self.settings.max_concurrent_peers,
            publish_max_attempts=self.settings.publish_max_attempts,
        )

    # -- Checks -------------------------------------------------------------

    def orchestrator(self) -> DependencyCheckOrchestrator:
        return DependencyCheckOrchestrator(
            self.registry,
            self.store,
            policy=self.config.check,
            peer_weights=self.peers.weights(),
        )

    # -- Operations ---------------------------------------------------------

    def setup(self, repo_url: str | None = None) -> tuple[LocalIdentity, bool]:
        """Create the data directory, identity and store; record the outgoing repo.

        Safe to re-run; an existing identity is kept.
        """
        self.settings.data_dir.mkdir(parents=True, exist_ok=True)
        identity, created = load_or_create_identity(self.settings.identity_path)
        self.__dict__["identity"] = identity
        _ = self.store
        if repo_url:
            self.save_config(self.config.model_copy(update={"outgoing_repo_url": repo_url}))
            logger.info("Outgoing repository set to %s", repo_url)
        return identity, created

    def canonical_package(self, ecosystem: str, name: str, version: str) -> PackageIdentity:
        """Build the identity the owning extension would discover.

        Without an installed extension the values are only trimmed.

        Raises
        ------
        ValueError
            If the extension is installed but the call fails.
        """
        ecosystem = ecosystem.strip().lower()
        if self.registry.get(ecosystem) is None:
            return PackageIdentity.canonical(ecosystem, name, version)
        try:
            return self.registry.canonicalize(ecosystem, name.strip(), version.strip())
        except ExtensionError as exc:
            raise ValueError(f"Extension {ecosystem} cannot canonicalize {name}: {exc}") from exc

    def author_review(
        self,
        package: PackageIdentity,
        payload: ReviewPayload,
        *,
        supersedes: str | None = None,
    ) -> ReviewRecord:
        """Sign a new review with the local identity and store it.

        Raises
        ------
        ValueError
            If *supersedes* names a record that is absent, by another
            author, or about another package.
        """
        identity = self.identity
        if supersedes:
            prior = self.store.get(supersedes)
            if prior is None:
                raise ValueError(f"No record {supersedes} in the local store")
            if prior.author_key != identity.public_key:
                raise ValueError("Only your own reviews can be superseded")
            if prior.package != package:
                raise ValueError(f"Record {supersedes[:16]} reviews {prior.package}, not {package}")
        record = create_record(identity.private_key, package, payload, supersedes=supersedes)
        self.store.put(record, source=LOCAL_SOURCE)
        logger.info("Stored review %s for %s", record.id[:16], package)
        return record
