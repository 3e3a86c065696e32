"""Tests for the local signing identity file."""

from __future__ import annotations

import json
import os
import stat

import pytest

from vouchsafe.core.identity import (
    IdentityError,
    create_identity,
    load_identity,
    load_or_create_identity,
)
from vouchsafe.core.signing import generate_keypair


class TestIdentity:
    def test_create_then_load(self, tmp_dir):
        path = tmp_dir / "identity.json"
        created = create_identity(path)
        assert load_identity(path) == created
        assert len(created.fingerprint) == 16

    @pytest.mark.skipif(os.name != "posix", reason="POSIX permissions")
    def test_owner_only_permissions(self, tmp_dir):
        path = tmp_dir / "identity.json"
        create_identity(path)
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_never_overwrites(self, tmp_dir):
        path = tmp_dir / "identity.json"
        create_identity(path)
        with pytest.raises(IdentityError, match="already exists"):
            create_identity(path)

    def test_load_or_create_is_idempotent(self, tmp_dir):
        path = tmp_dir / "identity.json"
        first, created = load_or_create_identity(path)
        again, created_again = load_or_create_identity(path)
        assert created is True and created_again is False
        assert first.public_key == again.public_key

    def test_missing(self, tmp_dir):
        with pytest.raises(IdentityError, match="setup"):
            load_identity(tmp_dir / "identity.json")

    def test_garbage(self, tmp_dir):
        path = tmp_dir / "identity.json"
        path.write_text("{not json")
        with pytest.raises(IdentityError, match="unreadable"):
            load_identity(path)

    def test_mismatched_pair(self, tmp_dir):
        path = tmp_dir / "identity.json"
        priv, _ = generate_keypair()
        _, other_pub = generate_keypair()
        path.write_text(json.dumps({"public_key": other_pub, "private_key": priv}))
        with pytest.raises(IdentityError, match="mismatch"):
            load_identity(path)

    def test_private_key_not_in_repr(self, tmp_dir):
        identity = create_identity(tmp_dir / "identity.json")
        assert identity.private_key not in repr(identity)
