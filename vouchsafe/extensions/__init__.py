"""Ecosystem extensions — out-of-process adapters and the registry that runs them."""

from vouchsafe.extensions.protocol import PROTOCOL_VERSION, ExtensionError
from vouchsafe.extensions.registry import BUILTIN_EXTENSIONS, DiscoveryOutcome, ExtensionRegistry
from vouchsafe.extensions.server import ExtensionServer

__all__ = [
    "PROTOCOL_VERSION",
    "ExtensionError",
    "ExtensionRegistry",
    "DiscoveryOutcome",
    "BUILTIN_EXTENSIONS",
    "ExtensionServer",
]
