"""Trusted Merkle root registry and its backing stores."""

from .registry import (
    RootRecord,
    RootStore,
    RootRegistry,
    parse_root_bundle,
    load_root_bundle,
)
from .signing import root_signing_input, verify_root_signature, sign_root
from .source import RemoteRootRegistry

__all__ = [
    "RootRecord",
    "RootStore",
    "RootRegistry",
    "RemoteRootRegistry",
    "parse_root_bundle",
    "load_root_bundle",
    "root_signing_input",
    "verify_root_signature",
    "sign_root",
]
