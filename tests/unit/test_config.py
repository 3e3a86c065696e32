"""Tests for process settings and the user configuration file."""

from __future__ import annotations

from pathlib import Path

import pytest

from vouchsafe.config import VouchsafeSettings
from vouchsafe.models.config import UserConfig, load_user_config, save_user_config
from vouchsafe.models.trust import TrustClass


class TestVouchsafeSettings:
    def test_defaults(self):
        config = VouchsafeSettings()
        assert config.extension_timeout_seconds == 20.0
        assert config.max_concurrent_peers == 8
        assert config.publish_max_attempts == 3

    def test_derived_paths(self, tmp_dir: Path):
        config = VouchsafeSettings(data_dir=tmp_dir)
        assert config.store_path == tmp_dir / "store.db"
        assert config.peers_path == tmp_dir / "peers.json"
        assert config.extensions_path == tmp_dir / "extensions.json"
        assert config.identity_path == tmp_dir / "identity.json"
        assert config.user_config_path == tmp_dir / "config.json"
        assert config.repos_dir == tmp_dir / "repos"

    def test_env_override(self, monkeypatch, tmp_dir: Path):
        monkeypatch.setenv("VOUCHSAFE_DATA_DIR", str(tmp_dir))
        monkeypatch.setenv("VOUCHSAFE_EXTENSION_TIMEOUT_SECONDS", "3.5")
        config = VouchsafeSettings()
        assert config.data_dir == tmp_dir
        assert config.extension_timeout_seconds == 3.5


class TestUserConfig:
    def test_dotted_get(self):
        config = UserConfig()
        assert config.get("check.trusted_min") == 0.5
        assert config.get("check.fail_on") == ["unreviewed", "caution"]
        assert config.get("outgoing_repo_url") == ""

    @pytest.mark.parametrize("name", ["nope", "check", "check.nope", "outgoing_repo_url.x"])
    def test_unknown_names(self, name):
        with pytest.raises(KeyError):
            UserConfig().get(name)

    def test_with_value_parses_text(self):
        config = UserConfig().with_value("check.trusted_min", "0.7")
        assert config.check.trusted_min == 0.7
        config = config.with_value("check.fail_on", "caution, low-confidence")
        assert config.check.fail_on == [TrustClass.CAUTION, TrustClass.LOW_CONFIDENCE]

    def test_with_value_validates(self):
        with pytest.raises(ValueError):
            UserConfig().with_value("check.trusted_min", "high")
        with pytest.raises(ValueError):
            UserConfig().with_value("check.fail_on", "bogus")
        with pytest.raises(ValueError):
            UserConfig().with_value("check.caution_below", "0.9")

    def test_save_and_load(self, tmp_dir: Path):
        path = tmp_dir / "config.json"
        assert load_user_config(path) == UserConfig()
        saved = UserConfig(outgoing_repo_url="git@example.com:me/reviews.git")
        save_user_config(saved, path)
        assert load_user_config(path) == saved
