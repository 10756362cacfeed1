"""Trusted Merkle root registry.

Holds the set of roots the issuer has signed and not revoked. Verification
only reads it; mutation happens through the administrative path (admin
endpoints, bundle reload, remote refresh).

Readers take no lock. Writers build a new immutable snapshot under a write
lock and publish it with one attribute assignment, so a concurrent
verification sees either the old trust set or the new one, never a mix.
"""

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from app.authn.exceptions import ConfigurationError, RootRevokedError, RootSignatureError
from .signing import verify_root_signature

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RootRecord:
    """A trusted root.

    Attributes:
        root: 0x-prefixed hex Merkle root, compared by exact string match.
        circuit_version: Circuit generation the root was built for. None
            means unversioned (development roots only).
        signature: Issuer Ed25519 signature, when one was supplied.
    """
    root: str
    circuit_version: Optional[str] = None
    signature: Optional[bytes] = None


@dataclass(frozen=True)
class _Snapshot:
    records: Mapping[str, RootRecord]
    revoked: frozenset


_EMPTY = _Snapshot(records=MappingProxyType({}), revoked=frozenset())


class RootStore(ABC):
    """Capability answering "is this root trusted?".

    Implementations may be static, signature-checked, or backed by a remote
    trust store; callers only ever see is_valid_root.
    """

    @abstractmethod
    def is_valid_root(self, root: str, circuit_version: Optional[str] = None) -> bool:
        """Return True iff root is trusted (and bound to circuit_version when given).

        Unknown roots return False. Only a broken backing store raises.
        """

    def size(self) -> int:
        return 0


class RootRegistry(RootStore):
    """In-memory, snapshot-published root registry.

    When issuer_public_key is set, every root added through add_root must
    carry a valid issuer signature.
    """

    def __init__(
        self,
        records: Iterable[RootRecord] = (),
        revoked: Iterable[str] = (),
        issuer_public_key: Optional[bytes] = None,
    ):
        self._issuer_public_key = issuer_public_key
        self._write_lock = threading.Lock()
        self._snapshot = _EMPTY
        self.replace_all(records, revoked)

    @property
    def requires_signatures(self) -> bool:
        return self._issuer_public_key is not None

    def is_valid_root(self, root: str, circuit_version: Optional[str] = None) -> bool:
        if not isinstance(root, str) or not root:
            return False

        snapshot = self._snapshot
        if root in snapshot.revoked:
            return False

        record = snapshot.records.get(root)
        if record is None:
            return False

        if (
            circuit_version is not None
            and record.circuit_version is not None
            and record.circuit_version != circuit_version
        ):
            log.info(
                f"root circuit mismatch root={root[:18]}... "
                f"root_circuit={record.circuit_version} verifier_circuit={circuit_version}"
            )
            return False
        return True

    def add_root(
        self,
        root: str,
        circuit_version: Optional[str] = None,
        signature: Optional[bytes] = None,
    ) -> RootRecord:
        """Trust a new root.

        Raises:
            RootSignatureError: Issuer key configured and signature invalid.
            RootRevokedError: Root was revoked earlier.
            ValueError: root is empty.
        """
        if not isinstance(root, str) or not root:
            raise ValueError("root must be a non-empty string")

        if self._issuer_public_key is not None:
            if circuit_version is None:
                raise RootSignatureError("Signed roots must name a circuit_version")
            verify_root_signature(root, circuit_version, signature, self._issuer_public_key)

        record = RootRecord(root=root, circuit_version=circuit_version, signature=signature)
        with self._write_lock:
            current = self._snapshot
            if root in current.revoked:
                raise RootRevokedError(root)
            records = dict(current.records)
            records[root] = record
            self._snapshot = _Snapshot(MappingProxyType(records), current.revoked)

        log.info(f"root added root={root[:18]}... circuit={circuit_version}")
        return record

    def remove_root(self, root: str) -> bool:
        """Stop trusting a root without blacklisting it. Returns True if present."""
        with self._write_lock:
            current = self._snapshot
            if root not in current.records:
                return False
            records = dict(current.records)
            del records[root]
            self._snapshot = _Snapshot(MappingProxyType(records), current.revoked)
        return True

    def revoke_root(self, root: str) -> None:
        """Permanently distrust a root; it cannot be added again."""
        with self._write_lock:
            current = self._snapshot
            records = dict(current.records)
            records.pop(root, None)
            self._snapshot = _Snapshot(MappingProxyType(records), current.revoked | {root})
        log.warning(f"root revoked root={root[:18]}...")

    def replace_all(self, records: Iterable[RootRecord], revoked: Iterable[str] = ()) -> None:
        """Atomically swap the whole trust set.

        Records are taken as already vetted (see parse_root_bundle). Earlier
        revocations are kept: the published revoked set is the union of the
        current one and `revoked`, and every revoked root is dropped.
        """
        records = list(records)
        with self._write_lock:
            revoked_set = self._snapshot.revoked | frozenset(revoked)
            table = {r.root: r for r in records if r.root not in revoked_set}
            self._snapshot = _Snapshot(MappingProxyType(table), revoked_set)

    def roots(self) -> frozenset:
        return frozenset(self._snapshot.records)

    def revoked_roots(self) -> frozenset:
        return self._snapshot.revoked

    def size(self) -> int:
        return len(self._snapshot.records)


# =============================================================================
# Trust bundles
# =============================================================================


def parse_root_bundle(
    data: Any,
    issuer_public_key: Optional[bytes] = None,
) -> Tuple[List[RootRecord], frozenset]:
    """Parse a trust bundle into vetted records and the revocation set.

    Bundle format:
        {
          "roots": [{"root": "0x..", "circuit_version": "v1", "signature": "<hex>"}],
          "revoked": ["0x.."]
        }

    Entries that are revoked, malformed, or (with an issuer key) carry a bad
    signature are excluded and logged; they do not fail the whole bundle.

    Raises:
        ConfigurationError: data is not a bundle object with a roots list.
    """
    if not isinstance(data, dict) or not isinstance(data.get("roots"), list):
        raise ConfigurationError("Trust bundle must be an object with a 'roots' list")

    revoked_raw = data.get("revoked", [])
    if not isinstance(revoked_raw, list):
        raise ConfigurationError("Trust bundle 'revoked' must be a list")
    revoked = frozenset(r for r in revoked_raw if isinstance(r, str) and r)

    records: List[RootRecord] = []
    for entry in data["roots"]:
        record = _parse_bundle_entry(entry)
        if record is None:
            log.warning(f"trust bundle entry skipped: malformed entry={str(entry)[:60]}")
            continue
        if record.root in revoked:
            log.info(f"trust bundle entry skipped: revoked root={record.root[:18]}...")
            continue
        if issuer_public_key is not None:
            if record.circuit_version is None:
                log.warning(
                    f"trust bundle entry skipped: signed root without circuit_version "
                    f"root={record.root[:18]}..."
                )
                continue
            try:
                verify_root_signature(
                    record.root, record.circuit_version, record.signature, issuer_public_key
                )
            except RootSignatureError as e:
                log.warning(f"trust bundle entry skipped: {e.message}")
                continue
        records.append(record)

    return records, revoked


def _parse_bundle_entry(entry: Any) -> Optional[RootRecord]:
    if isinstance(entry, str):
        return RootRecord(root=entry) if entry else None
    if not isinstance(entry, dict):
        return None

    root = entry.get("root")
    if not isinstance(root, str) or not root:
        return None

    signature: Optional[bytes] = None
    sig_hex = entry.get("signature")
    if sig_hex is not None:
        try:
            signature = bytes.fromhex(sig_hex)
        except (TypeError, ValueError):
            return None

    circuit_version = entry.get("circuit_version")
    if circuit_version is not None and not isinstance(circuit_version, str):
        return None

    return RootRecord(root=root, circuit_version=circuit_version, signature=signature)


def load_root_bundle(path: str, issuer_public_key: Optional[bytes] = None) -> RootRegistry:
    """Build a registry from a trust bundle file.

    Raises:
        ConfigurationError: File missing, unreadable, or not a bundle.
    """
    try:
        data: Dict[str, Any] = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise ConfigurationError(f"Cannot read trust bundle {path}: {e}")

    records, revoked = parse_root_bundle(data, issuer_public_key)
    log.info(f"trust bundle loaded path={path} roots={len(records)} revoked={len(revoked)}")
    return RootRegistry(records, revoked, issuer_public_key=issuer_public_key)
