"""Runtime settings — env-driven, one data directory per user.

Centralized settings using pydantic-settings for environment variable
support. Reads from a .env file and VOUCHSAFE_* environment variables.
User-editable preferences (outgoing repository, check policy) live in
``config.json`` inside the data directory; see
``vouchsafe.models.config.UserConfig``.
"""

from __future__ import annotations

from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class VouchsafeSettings(BaseSettings):
    """Process settings with environment variable overrides.

    Examples
    --------
    Override via environment::

        export VOUCHSAFE_DATA_DIR=/srv/vouchsafe
        export VOUCHSAFE_LOG_LEVEL=DEBUG
        export VOUCHSAFE_EXTENSION_TIMEOUT_SECONDS=30

    Or via .env file::

        VOUCHSAFE_MAX_CONCURRENT_PEERS=4
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="VOUCHSAFE_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    log_level: str = "INFO"

    # Storage root; everything else is derived from it
    data_dir: Path = Path.home() / ".vouchsafe"

    # Extension subprocesses
    extension_timeout_seconds: float = 20.0
    max_concurrent_extensions: int = 4

    # Peer sync
    max_concurrent_peers: int = 8
    git_binary: str = "git"
    git_timeout_seconds: float = 120.0
    publish_max_attempts: int = 3

    # Outbound HTTP (extension downloads, registry metadata)
    http_timeout_seconds: float = 15.0

    @property
    def store_path(self) -> Path:
        """SQLite database holding the review log."""
        return self.data_dir / "store.db"

    @property
    def peers_path(self) -> Path:
        return self.data_dir / "peers.json"

    @property
    def extensions_path(self) -> Path:
        return self.data_dir / "extensions.json"

    @property
    def extensions_bin_dir(self) -> Path:
        """Where downloaded extension executables are kept."""
        return self.data_dir / "extensions"

    @property
    def identity_path(self) -> Path:
        return self.data_dir / "identity.json"

    @property
    def user_config_path(self) -> Path:
        return self.data_dir / "config.json"

    @property
    def repos_dir(self) -> Path:
        """Checkouts of the outgoing repository and peer mirrors."""
        return self.data_dir / "repos"


# Module-level singleton; import as `from vouchsafe.config import settings`
settings = VouchsafeSettings()
