"""Extension wire protocol — length-prefixed JSON frames and message schemas.

Frame layout::

    +----------------------+---------------------------+
    | length (u32, BE)     | UTF-8 JSON object         |
    +----------------------+---------------------------+

A session opens with a handshake exchanging protocol version and
capabilities, followed by any number of ``discover``, ``describe`` and
``canonicalize`` requests, and ends with ``shutdown`` or EOF.  Every
message an extension sends is validated against the models below before
the core uses it.
"""

from __future__ import annotations

import json
import struct
from typing import Any, BinaryIO, Literal

from pydantic import BaseModel, ConfigDict, Field

PROTOCOL_VERSION = 1
MAX_FRAME_BYTES = 16 * 1024 * 1024

CAPABILITY_DISCOVER = "discover"
CAPABILITY_DESCRIBE = "describe"
CAPABILITY_CANONICALIZE = "canonicalize"
CORE_CAPABILITIES = [CAPABILITY_DISCOVER, CAPABILITY_DESCRIBE, CAPABILITY_CANONICALIZE]

_HEADER = struct.Struct(">I")


class ExtensionError(RuntimeError):
    """Raised when an extension cannot be spawned, times out, or misbehaves.

    The caller skips that ecosystem for the current operation.
    """


# ---------------------------------------------------------------------------
# Framing
# ---------------------------------------------------------------------------

def encode_frame(message: dict[str, Any]) -> bytes:
    """Serialize *message* into a single length-prefixed frame."""
    body = json.dumps(message, separators=(",", ":"), ensure_ascii=True).encode("utf-8")
    if len(body) > MAX_FRAME_BYTES:
        raise ExtensionError(f"Frame of {len(body)} bytes exceeds {MAX_FRAME_BYTES}")
    return _HEADER.pack(len(body)) + body


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks: list[bytes] = []
    remaining = size
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_frame(stream: BinaryIO) -> dict[str, Any] | None:
    """Read one frame from *stream*.

    Returns ``None`` on a clean EOF between frames.

    Raises
    ------
    ExtensionError
        On a truncated frame, an oversized length, or a body that is not
        a JSON object.
    """
    header = _read_exact(stream, _HEADER.size)
    if not header:
        return None
    if len(header) < _HEADER.size:
        raise ExtensionError("Truncated frame header")
    (length,) = _HEADER.unpack(header)
    if length > MAX_FRAME_BYTES:
        raise ExtensionError(f"Frame length {length} exceeds {MAX_FRAME_BYTES}")
    body = _read_exact(stream, length)
    if len(body) < length:
        raise ExtensionError(f"Truncated frame body ({len(body)}/{length} bytes)")
    try:
        message = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ExtensionError(f"Frame is not valid JSON: {exc}") from exc
    if not isinstance(message, dict):
        raise ExtensionError("Frame is not a JSON object")
    return message


def write_frame(stream: BinaryIO, message: dict[str, Any]) -> None:
    stream.write(encode_frame(message))
    stream.flush()


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class HandshakeRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["handshake"] = "handshake"
    protocol_version: int = PROTOCOL_VERSION
    capabilities: list[str] = Field(default_factory=lambda: list(CORE_CAPABILITIES))


class HandshakeResponse(BaseModel):
    """What an extension declares about itself."""

    model_config = ConfigDict(frozen=True)

    type: Literal["handshake"]
    protocol_version: int
    ecosystem_id: str = Field(pattern=r"^[a-z0-9][a-z0-9_.-]*$")
    manifest_patterns: list[str] = Field(default_factory=list)
    capabilities: list[str] = Field(default_factory=list)
    case_insensitive_names: bool = False
    extension_version: str = ""


class Request(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["request"] = "request"
    id: int
    method: Literal["discover", "describe", "canonicalize"]
    params: dict[str, Any] = Field(default_factory=dict)


class ErrorBody(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    message: str = ""


class Response(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["response"]
    id: int
    result: Any = None
    error: ErrorBody | None = None


class ShutdownRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["shutdown"] = "shutdown"


class DiscoveredPackage(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, max_length=512)
    version: str = Field(min_length=1, max_length=256)


class DiscoverResult(BaseModel):
    """Schema of a ``discover`` result."""

    model_config = ConfigDict(frozen=True)

    packages: list[DiscoveredPackage] = Field(default_factory=list)
    manifests: list[str] = Field(default_factory=list)


class CanonicalizeResult(BaseModel):
    """Schema of a ``canonicalize`` result: the name and version as the
    ecosystem spells them canonically."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1, max_length=512)
    version: str = Field(min_length=1, max_length=256)


class DescribeResult(BaseModel):
    """Schema of a ``describe`` result."""

    model_config = ConfigDict(frozen=True)

    registry_host: str | None = None
    package_url: str | None = None
    version_url: str | None = None
    source_url: str | None = None
    source_digest: str | None = None
    found_locally: bool = False
