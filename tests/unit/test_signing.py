"""Unit tests for Ed25519 signing via PyNaCl."""

from __future__ import annotations

from vouchsafe.core.signing import (
    generate_keypair,
    key_fingerprint,
    public_key_for,
    sign_data,
    verify_data,
)


class TestKeys:
    def test_keypair_is_hex_32_bytes_each(self):
        priv, pub = generate_keypair()
        assert len(bytes.fromhex(priv)) == 32
        assert len(bytes.fromhex(pub)) == 32

    def test_keypairs_unique(self):
        assert generate_keypair() != generate_keypair()

    def test_public_key_derivable(self):
        priv, pub = generate_keypair()
        assert public_key_for(priv) == pub

    def test_fingerprint_short_and_stable(self):
        _, pub = generate_keypair()
        assert len(key_fingerprint(pub)) == 16
        assert key_fingerprint(pub) == key_fingerprint(pub)
        assert key_fingerprint("") == ""


class TestSignVerify:
    def test_roundtrip(self):
        priv, pub = generate_keypair()
        sig = sign_data(b"review", priv)
        assert len(sig) == 128
        assert verify_data(b"review", sig, pub) is True

    def test_signing_is_deterministic(self):
        priv, _ = generate_keypair()
        assert sign_data(b"x", priv) == sign_data(b"x", priv)

    def test_tampered_data_fails(self):
        priv, pub = generate_keypair()
        sig = sign_data(b"review", priv)
        assert verify_data(b"reviews", sig, pub) is False

    def test_wrong_key_fails(self):
        priv, _ = generate_keypair()
        _, other_pub = generate_keypair()
        assert verify_data(b"review", sign_data(b"review", priv), other_pub) is False

    def test_malformed_inputs_never_raise(self):
        _, pub = generate_keypair()
        assert verify_data(b"x", "", pub) is False
        assert verify_data(b"x", "zz" * 64, pub) is False
        assert verify_data(b"x", "00" * 10, pub) is False
        assert verify_data(b"x", "00" * 64, "not-hex") is False
        assert verify_data(b"x", "00" * 64, "") is False
