"""User configuration — check policy and outgoing repository.

Persisted as ``config.json`` in the data directory.  Values are read and
written by dotted name (``check.trusted_min``) from the ``config`` CLI.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from vouchsafe.models.trust import TrustClass

logger = logging.getLogger(__name__)


class CheckPolicy(BaseModel):
    """Thresholds and failure policy for ``check``.

    Classification order: no score -> unreviewed; score below
    ``caution_below`` -> caution; too few authors -> low-confidence;
    score at or above ``trusted_min`` -> trusted; anything else ->
    low-confidence.
    """

    model_config = ConfigDict(frozen=True)

    trusted_min: float = Field(default=0.5, ge=-1.0, le=1.0)
    caution_below: float = Field(default=0.0, ge=-1.0, le=1.0)
    low_confidence_max_authors: int = Field(default=1, ge=0)
    fail_on: list[TrustClass] = Field(
        default_factory=lambda: [TrustClass.UNREVIEWED, TrustClass.CAUTION]
    )

    @model_validator(mode="after")
    def _ordered_thresholds(self) -> CheckPolicy:
        if self.caution_below > self.trusted_min:
            raise ValueError("caution_below must not exceed trusted_min")
        return self


class UserConfig(BaseModel):
    """Settings a user edits, as opposed to process settings from env."""

    model_config = ConfigDict(frozen=True)

    outgoing_repo_url: str = ""
    check: CheckPolicy = CheckPolicy()

    # -- dotted access ------------------------------------------------------

    def get(self, name: str) -> Any:
        """Return the value at dotted *name*.

        Raises
        ------
        KeyError
            If *name* does not address a settings field.
        """
        node: Any = self.model_dump(mode="json")
        for part in name.split("."):
            if not isinstance(node, dict) or part not in node:
                raise KeyError(f"Unknown settings field: {name}")
            node = node[part]
        if isinstance(node, dict):
            raise KeyError(f"Unknown settings field: {name}")
        return node

    def with_value(self, name: str, value: str) -> UserConfig:
        """Return a copy with the field at dotted *name* set from text.

        List fields take a comma-separated value.  Raises ``KeyError`` for
        unknown names and ``ValueError`` if the result fails validation.
        """
        current = self.get(name)
        parsed: Any = value
        if isinstance(current, list):
            parsed = [item.strip() for item in value.split(",") if item.strip()]

        data = self.model_dump(mode="json")
        node = data
        parts = name.split(".")
        for part in parts[:-1]:
            node = node[part]
        node[parts[-1]] = parsed
        try:
            return UserConfig.model_validate(data)
        except ValidationError as exc:
            raise ValueError(f"Invalid value for {name}: {value!r}") from exc


def load_user_config(path: Path) -> UserConfig:
    """Load the user config, falling back to defaults if absent."""
    if not path.exists():
        logger.debug("No user config at %s — using defaults.", path)
        return UserConfig()
    raw = json.loads(path.read_text(encoding="utf-8"))
    return UserConfig.model_validate(raw)


def save_user_config(config: UserConfig, path: Path) -> None:
    """Write the user config atomically."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(
        json.dumps(config.model_dump(mode="json"), indent=2, sort_keys=True),
        encoding="utf-8",
    )
    os.replace(tmp, path)
    logger.debug("Persisted user config to %s.", path)
