"""Ed25519 review signatures via PyNaCl.

All keys and signatures cross module boundaries as hex strings so they
can be embedded in JSON records without further encoding.
"""

from __future__ import annotations

import hashlib
import logging

import nacl.signing
from nacl.exceptions import BadSignatureError

logger = logging.getLogger(__name__)


def generate_keypair() -> tuple[str, str]:
    """Return a fresh ``(private_key, public_key)`` pair, both hex."""
    sk = nacl.signing.SigningKey.generate()
    return (sk.encode().hex(), sk.verify_key.encode().hex())


def public_key_for(private_key: str) -> str:
    """Derive the hex verify key for a hex private key (seed)."""
    sk = nacl.signing.SigningKey(bytes.fromhex(private_key))
    return sk.verify_key.encode().hex()


def sign_data(data: bytes, private_key: str) -> str:
    """Detached signature over *data* (a record's canonical bytes), as 128 hex chars."""
    sk = nacl.signing.SigningKey(bytes.fromhex(private_key))
    return sk.sign(data).signature.hex()


def verify_data(data: bytes, signature: str, public_key: str) -> bool:
    """True only when *signature* verifies *data* under *public_key*.

    Returns ``False`` if the signature is empty or malformed, if the key is
    malformed, or if verification fails.  Never raises.
    """
    if not signature or not public_key:
        return False
    try:
        vk = nacl.signing.VerifyKey(bytes.fromhex(public_key))
        vk.verify(data, bytes.fromhex(signature))
        return True
    except BadSignatureError:
        return False
    except (ValueError, TypeError) as exc:
        # malformed hex or wrong byte length
        logger.debug("verify_data: malformed key or signature (%s).", exc)
        return False


def key_fingerprint(public_key: str) -> str:
    """Short display form of a public key.

    The first 16 hex characters of SHA-256(public_key).  Used for
    display; the full key remains the identity.
    """
    if not public_key:
        return ""
    return hashlib.sha256(public_key.encode("utf-8")).hexdigest()[:16]
