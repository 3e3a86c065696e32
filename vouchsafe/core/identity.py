"""Local signing identity — the user's Ed25519 keypair.

Persisted as ``identity.json`` in the data directory, readable by the
owner only.  The public key is the author identity on every record the
user writes; nothing else about the user is recorded.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from vouchsafe.core.signing import generate_keypair, key_fingerprint, public_key_for

logger = logging.getLogger(__name__)


class IdentityError(RuntimeError):
    """Raised when the identity file is missing, unreadable, or inconsistent."""


class LocalIdentity(BaseModel):
    model_config = ConfigDict(frozen=True)

    public_key: str
    private_key: str = Field(repr=False)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def fingerprint(self) -> str:
        return key_fingerprint(self.public_key)


def load_identity(path: Path) -> LocalIdentity:
    """Read and check the identity at *path*.

    Raises
    ------
    IdentityError
        If the file is absent, malformed, or its public key does not
        belong to its private key.
    """
    if not path.exists():
        raise IdentityError(f"No identity at {path}; run `vouchsafe setup` first")
    try:
        identity = LocalIdentity.model_validate(json.loads(path.read_text(encoding="utf-8")))
        derived = public_key_for(identity.private_key)
    except (OSError, ValueError, ValidationError) as exc:
        raise IdentityError(f"Identity file {path} is unreadable: {exc}") from exc
    if derived != identity.public_key:
        raise IdentityError(f"Identity file {path} is inconsistent: key pair mismatch")
    return identity


def create_identity(path: Path) -> LocalIdentity:
    """Generate a keypair and write it to *path* with mode 0600.

    Refuses to overwrite an existing identity.
    """
    private_key, public_key = generate_keypair()
    identity = LocalIdentity(public_key=public_key, private_key=private_key)
    path.parent.mkdir(parents=True, exist_ok=True)
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    except FileExistsError as exc:
        raise IdentityError(f"Identity already exists at {path}") from exc
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(identity.model_dump_json(indent=2))
    logger.info("Created identity %s at %s", identity.fingerprint, path)
    return identity


def load_or_create_identity(path: Path) -> tuple[LocalIdentity, bool]:
    """Return the identity at *path*, creating one if absent.

    The boolean is ``True`` when a new identity was generated.
    """
    if path.exists():
        return load_identity(path), False
    return create_identity(path), True
