"""Adapter side of the extension protocol.

Subclass ``ExtensionServer``, fill in the declaration attributes and the
``discover`` / ``describe`` hooks (and ``canonical_name`` when the
ecosystem folds names beyond case), then call ``run()`` from the module's
``__main__`` block.  stdout carries protocol frames only; log to stderr.

Examples
--------
>>> class CargoExtension(ExtensionServer):
...     ecosystem_id = "cargo"
...     manifest_patterns = ("Cargo.toml", "Cargo.lock")
...     def discover(self, root):
...         return [("serde", "1.0.200")]
>>> CargoExtension().handshake()["ecosystem_id"]
'cargo'
"""

from __future__ import annotations

import abc
import logging
import sys
from pathlib import Path
from typing import Any, BinaryIO

from pydantic import ValidationError

from vouchsafe.extensions.protocol import (
    CAPABILITY_CANONICALIZE,
    CAPABILITY_DESCRIBE,
    CAPABILITY_DISCOVER,
    PROTOCOL_VERSION,
    ExtensionError,
    HandshakeRequest,
    Request,
    read_frame,
    write_frame,
)

logger = logging.getLogger(__name__)


class ExtensionServer(abc.ABC):
    """Base class for ecosystem adapters speaking the extension protocol."""

    ecosystem_id: str = ""
    manifest_patterns: tuple[str, ...] = ()
    case_insensitive_names: bool = False
    extension_version: str = "0"

    # -- Hooks ---------------------------------------------------------------

    @abc.abstractmethod
    def discover(self, root: Path) -> list[tuple[str, str]]:
        """Return ``(name, version)`` pairs for the project at *root*."""

    def describe(self, name: str, version: str, root: Path | None = None) -> dict[str, Any]:
        """Return registry metadata for one package version.

        The default declares nothing; adapters that override it get the
        ``describe`` capability advertised automatically.
        """
        raise NotImplementedError

    def canonical_name(self, name: str) -> str:
        """Spell *name* the way this ecosystem indexes it.

        Applied to discovered names and to names typed by users, so a
        review and a manifest entry for the same package always agree.
        """
        return name.lower() if self.case_insensitive_names else name

    def capabilities(self) -> list[str]:
        caps = [CAPABILITY_DISCOVER, CAPABILITY_CANONICALIZE]
        if type(self).describe is not ExtensionServer.describe:
            caps.append(CAPABILITY_DESCRIBE)
        return caps

    # -- Protocol ------------------------------------------------------------

    def handshake(self) -> dict[str, Any]:
        return {
            "type": "handshake",
            "protocol_version": PROTOCOL_VERSION,
            "ecosystem_id": self.ecosystem_id,
            "manifest_patterns": list(self.manifest_patterns),
            "capabilities": self.capabilities(),
            "case_insensitive_names": self.case_insensitive_names,
            "extension_version": self.extension_version,
        }

    def handle(self, request: Request) -> dict[str, Any]:
        """Dispatch one request and build its response message."""
        try:
            if request.method == "discover":
                root = Path(str(request.params.get("root", ".")))
                pairs = self.discover(root)
                canonical = {(self.canonical_name(name), version) for name, version in pairs}
                packages = [
                    {"name": name, "version": version}
                    for name, version in sorted(canonical)
                ]
                result: Any = {"packages": packages}
            elif request.method == "canonicalize":
                result = {
                    "name": self.canonical_name(str(request.params["name"]).strip()),
                    "version": str(request.params["version"]).strip(),
                }
            else:
                if CAPABILITY_DESCRIBE not in self.capabilities():
                    return _error(request.id, "unsupported", "describe is not implemented")
                root_param = request.params.get("root")
                result = self.describe(
                    str(request.params["name"]),
                    str(request.params["version"]),
                    Path(str(root_param)) if root_param else None,
                )
        except KeyError as exc:
            return _error(request.id, "bad_params", f"missing parameter {exc}")
        except Exception as exc:
            logger.exception("%s failed", request.method)
            return _error(request.id, "internal", str(exc))
        return {"type": "response", "id": request.id, "result": result}

    def serve(self, stdin: BinaryIO, stdout: BinaryIO) -> int:
        """Run the session loop until ``shutdown`` or EOF.

        Returns the process exit code.
        """
        try:
            first = read_frame(stdin)
        except ExtensionError as exc:
            logger.error("Bad handshake frame: %s", exc)
            return 2
        if first is None:
            return 0
        try:
            hello = HandshakeRequest.model_validate(first)
        except ValidationError:
            logger.error("First frame was not a handshake: %r", first.get("type"))
            return 2
        if hello.protocol_version != PROTOCOL_VERSION:
            logger.warning(
                "Core speaks protocol %d, this extension speaks %d",
                hello.protocol_version, PROTOCOL_VERSION,
            )
        write_frame(stdout, self.handshake())

        while True:
            try:
                message = read_frame(stdin)
            except ExtensionError as exc:
                logger.error("Bad frame: %s", exc)
                return 2
            if message is None or message.get("type") == "shutdown":
                return 0
            try:
                request = Request.model_validate(message)
            except ValidationError as exc:
                request_id = message.get("id")
                if isinstance(request_id, int):
                    write_frame(stdout, _error(request_id, "bad_request", str(exc)))
                    continue
                logger.error("Unaddressable request: %s", exc)
                return 2
            write_frame(stdout, self.handle(request))

    def run(self) -> int:
        """Serve on the real stdio streams with logging sent to stderr."""
        logging.basicConfig(
            stream=sys.stderr,
            level=logging.WARNING,
            format="%(name)s %(levelname)s %(message)s",
        )
        return self.serve(sys.stdin.buffer, sys.stdout.buffer)


def _error(request_id: int, code: str, message: str) -> dict[str, Any]:
    return {
        "type": "response",
        "id": request_id,
        "error": {"code": code, "message": message},
    }
