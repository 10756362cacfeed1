"""Tests for the trusted root registry, issuer signatures and trust sources."""

import json

import httpx
import pysodium
import pytest

from app.authn.exceptions import (
    ConfigurationError,
    RootRevokedError,
    RootSignatureError,
    RootSourceUnavailableError,
)
from app.authn.roots import (
    RemoteRootRegistry,
    RootRecord,
    RootRegistry,
    load_root_bundle,
    parse_root_bundle,
    root_signing_input,
    sign_root,
    verify_root_signature,
)

from conftest import CIRCUIT_VERSION, ROOT

OTHER_ROOT = "0xabcdef0000000000000000000000000000000000000000000000000000000001"


@pytest.fixture(scope="module")
def issuer_keys():
    """Deterministic issuer keypair (pk, sk)."""
    return pysodium.crypto_sign_seed_keypair(b"\x42" * pysodium.crypto_sign_SEEDBYTES)


class TestRootMembership:
    """is_valid_root is a pure set-membership query."""

    def test_listed_root_valid(self):
        registry = RootRegistry([RootRecord(ROOT)])
        assert registry.is_valid_root(ROOT) is True

    def test_unknown_root_false(self):
        registry = RootRegistry([RootRecord(ROOT)])
        assert registry.is_valid_root(OTHER_ROOT) is False

    @pytest.mark.parametrize("bad", [None, "", 42, b"0x12"])
    def test_malformed_root_false_not_raise(self, bad):
        registry = RootRegistry([RootRecord(ROOT)])
        assert registry.is_valid_root(bad) is False

    def test_exact_string_match(self):
        registry = RootRegistry([RootRecord(ROOT)])
        assert registry.is_valid_root(ROOT.upper()) is False
        assert registry.is_valid_root(ROOT + " ") is False

    def test_add_then_remove(self):
        registry = RootRegistry()
        assert registry.is_valid_root(ROOT) is False

        registry.add_root(ROOT)
        assert registry.is_valid_root(ROOT) is True
        assert registry.is_valid_root(OTHER_ROOT) is False

        assert registry.remove_root(ROOT) is True
        assert registry.is_valid_root(ROOT) is False
        assert registry.remove_root(ROOT) is False

    def test_add_empty_root_rejected(self):
        with pytest.raises(ValueError):
            RootRegistry().add_root("")


class TestRevocation:
    """Revoked roots stay untrusted."""

    def test_revoke_removes_trust(self):
        registry = RootRegistry([RootRecord(ROOT)])
        registry.revoke_root(ROOT)
        assert registry.is_valid_root(ROOT) is False
        assert ROOT in registry.revoked_roots()

    def test_revoked_root_cannot_be_readded(self):
        registry = RootRegistry([RootRecord(ROOT)])
        registry.revoke_root(ROOT)
        with pytest.raises(RootRevokedError):
            registry.add_root(ROOT)

    def test_constructor_excludes_revoked(self):
        registry = RootRegistry([RootRecord(ROOT), RootRecord(OTHER_ROOT)], revoked=[ROOT])
        assert registry.roots() == frozenset({OTHER_ROOT})

    def test_replace_all_keeps_earlier_revocations(self):
        registry = RootRegistry([RootRecord(ROOT)])
        registry.revoke_root(ROOT)
        registry.replace_all([RootRecord(ROOT), RootRecord(OTHER_ROOT)])
        assert registry.is_valid_root(ROOT) is False
        assert registry.roots() == frozenset({OTHER_ROOT})
        assert registry.revoked_roots() == frozenset({ROOT})


class TestCircuitBinding:
    """Roots only validate against their own circuit generation."""

    def test_matching_version(self):
        registry = RootRegistry([RootRecord(ROOT, CIRCUIT_VERSION)])
        assert registry.is_valid_root(ROOT, CIRCUIT_VERSION) is True

    def test_mismatched_version(self):
        registry = RootRegistry([RootRecord(ROOT, "tlb-membership-v0")])
        assert registry.is_valid_root(ROOT, CIRCUIT_VERSION) is False

    def test_unversioned_root_accepts_any(self):
        registry = RootRegistry([RootRecord(ROOT)])
        assert registry.is_valid_root(ROOT, CIRCUIT_VERSION) is True


class TestSnapshotPublication:
    """Writers publish a new snapshot; earlier snapshots are untouched."""

    def test_snapshot_is_replaced_not_mutated(self):
        registry = RootRegistry([RootRecord(ROOT)])
        before = registry._snapshot
        registry.add_root(OTHER_ROOT)
        assert OTHER_ROOT not in before.records
        assert registry._snapshot is not before

    def test_replace_all(self):
        registry = RootRegistry([RootRecord(ROOT)])
        registry.replace_all([RootRecord(OTHER_ROOT)])
        assert registry.is_valid_root(ROOT) is False
        assert registry.is_valid_root(OTHER_ROOT) is True
        assert registry.size() == 1


class TestIssuerSignatures:
    """Ed25519 issuer signatures gate admission when an issuer key is set."""

    def test_signing_input_binds_version(self):
        assert root_signing_input(ROOT, "v1") != root_signing_input(ROOT, "v2")
        assert root_signing_input(ROOT, "v1") == f"tlb-root-v1:v1:{ROOT}".encode()

    def test_valid_signature_admitted(self, issuer_keys):
        pk, sk = issuer_keys
        registry = RootRegistry(issuer_public_key=pk)
        signature = sign_root(ROOT, CIRCUIT_VERSION, sk)

        registry.add_root(ROOT, CIRCUIT_VERSION, signature)
        assert registry.is_valid_root(ROOT, CIRCUIT_VERSION) is True
        assert registry.requires_signatures is True

    def test_missing_signature_rejected(self, issuer_keys):
        pk, _ = issuer_keys
        registry = RootRegistry(issuer_public_key=pk)
        with pytest.raises(RootSignatureError):
            registry.add_root(ROOT, CIRCUIT_VERSION)
        assert registry.is_valid_root(ROOT) is False

    def test_signature_for_other_version_rejected(self, issuer_keys):
        pk, sk = issuer_keys
        registry = RootRegistry(issuer_public_key=pk)
        signature = sign_root(ROOT, "tlb-membership-v0", sk)
        with pytest.raises(RootSignatureError):
            registry.add_root(ROOT, CIRCUIT_VERSION, signature)

    def test_signature_from_other_issuer_rejected(self, issuer_keys):
        pk, _ = issuer_keys
        _, other_sk = pysodium.crypto_sign_seed_keypair(b"\x07" * pysodium.crypto_sign_SEEDBYTES)
        with pytest.raises(RootSignatureError):
            verify_root_signature(ROOT, CIRCUIT_VERSION, sign_root(ROOT, CIRCUIT_VERSION, other_sk), pk)

    def test_signed_root_requires_version(self, issuer_keys):
        pk, sk = issuer_keys
        registry = RootRegistry(issuer_public_key=pk)
        with pytest.raises(RootSignatureError):
            registry.add_root(ROOT, None, sign_root(ROOT, "", sk))


class TestTrustBundle:
    """Trust bundle parsing and loading."""

    def test_parse_signed_bundle(self, issuer_keys):
        pk, sk = issuer_keys
        bundle = {
            "roots": [
                {"root": ROOT, "circuit_version": CIRCUIT_VERSION,
                 "signature": sign_root(ROOT, CIRCUIT_VERSION, sk).hex()},
                {"root": OTHER_ROOT, "circuit_version": CIRCUIT_VERSION, "signature": "00" * 64},
            ],
        }
        records, revoked = parse_root_bundle(bundle, pk)
        assert [r.root for r in records] == [ROOT]
        assert revoked == frozenset()

    def test_signed_entry_without_version_skipped(self, issuer_keys):
        pk, sk = issuer_keys
        bundle = {"roots": [{"root": ROOT, "signature": sign_root(ROOT, "", sk).hex()}]}
        records, _ = parse_root_bundle(bundle, pk)
        assert records == []

    def test_revoked_entries_excluded(self):
        bundle = {"roots": [ROOT, {"root": OTHER_ROOT}], "revoked": [ROOT]}
        records, revoked = parse_root_bundle(bundle)
        assert [r.root for r in records] == [OTHER_ROOT]
        assert revoked == frozenset({ROOT})

    def test_malformed_entries_skipped(self):
        bundle = {"roots": [{"root": ROOT, "signature": "zz"}, 17, {"nope": 1}, {"root": OTHER_ROOT}]}
        records, _ = parse_root_bundle(bundle)
        assert [r.root for r in records] == [OTHER_ROOT]

    @pytest.mark.parametrize("data", [[], {"roots": "0x12"}, {"roots": [], "revoked": "0x1"}])
    def test_bundle_shape_errors(self, data):
        with pytest.raises(ConfigurationError):
            parse_root_bundle(data)

    def test_load_bundle_file(self, tmp_path):
        path = tmp_path / "roots.json"
        path.write_text(json.dumps({"roots": [{"root": ROOT, "circuit_version": CIRCUIT_VERSION}]}))
        registry = load_root_bundle(str(path))
        assert registry.is_valid_root(ROOT, CIRCUIT_VERSION) is True

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError):
            load_root_bundle(str(tmp_path / "absent.json"))


def _transport(status_code=200, payload=None, exc=None):
    def handler(request: httpx.Request) -> httpx.Response:
        if exc is not None:
            raise exc
        return httpx.Response(status_code, json=payload)
    return httpx.MockTransport(handler)


class TestRemoteRootRegistry:
    """Remote trust source: unreachable source is fatal, not "unknown root"."""

    def test_unloaded_registry_raises(self):
        registry = RemoteRootRegistry("https://trust.example/roots.json", transport=_transport())
        with pytest.raises(RootSourceUnavailableError):
            registry.is_valid_root(ROOT)

    @pytest.mark.asyncio
    async def test_refresh_publishes_roots(self):
        registry = RemoteRootRegistry(
            "https://trust.example/roots.json",
            transport=_transport(payload={"roots": [ROOT], "revoked": [OTHER_ROOT]}),
        )
        count = await registry.refresh()

        assert count == 1
        assert registry.loaded is True
        assert registry.is_valid_root(ROOT) is True
        assert registry.is_valid_root(OTHER_ROOT) is False

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        registry = RemoteRootRegistry("https://trust.example/roots.json", transport=_transport(503))
        with pytest.raises(RootSourceUnavailableError):
            await registry.refresh()

    @pytest.mark.asyncio
    async def test_connection_failure(self):
        registry = RemoteRootRegistry(
            "https://trust.example/roots.json",
            transport=_transport(exc=httpx.ConnectError("refused")),
        )
        with pytest.raises(RootSourceUnavailableError):
            await registry.refresh()

    @pytest.mark.asyncio
    async def test_failed_refresh_keeps_last_snapshot(self):
        good = RemoteRootRegistry(
            "https://trust.example/roots.json", transport=_transport(payload={"roots": [ROOT]})
        )
        await good.refresh()

        good._transport = _transport(exc=httpx.ConnectError("refused"))
        with pytest.raises(RootSourceUnavailableError):
            await good.refresh()
        assert good.is_valid_root(ROOT) is True

    @pytest.mark.asyncio
    async def test_admin_revocation_survives_refresh(self):
        registry = RemoteRootRegistry(
            "https://trust.example/roots.json",
            transport=_transport(payload={"roots": [ROOT, OTHER_ROOT], "revoked": []}),
        )
        await registry.refresh()
        registry.revoke_root(ROOT)

        count = await registry.refresh()

        assert count == 1
        assert registry.is_valid_root(ROOT) is False
        assert ROOT in registry.revoked_roots()
        assert registry.is_valid_root(OTHER_ROOT) is True

    @pytest.mark.asyncio
    async def test_unusable_bundle(self):
        registry = RemoteRootRegistry(
            "https://trust.example/roots.json", transport=_transport(payload={"unexpected": True})
        )
        with pytest.raises(RootSourceUnavailableError):
            await registry.refresh()
