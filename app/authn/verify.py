"""Product verification orchestration.

Runs the three independent checks for one request and combines them:

- proof_valid: zero-knowledge Merkle membership proof
- tag_auth_valid: NFC tag challenge-response MAC
- root_valid: claimed root is signed, unrevoked, same circuit generation

All three always run (concurrently) and are always reported; nothing
short-circuits, so response timing does not reveal which check failed
first. An unexpected fault inside one check folds into False for that check
only. ConfigurationError and its subclasses propagate: they mean the
service is broken, not that the product is counterfeit.
"""

import asyncio
import logging
from typing import Callable, Optional

from app.authn.exceptions import ConfigurationError
from .models import VerificationRequest, VerificationResult
from .nfc import TagAuthenticator
from .roots import (
    RemoteRootRegistry,
    RootRecord,
    RootRegistry,
    RootStore,
    load_root_bundle,
)
from .zk import MembershipProofVerifier

log = logging.getLogger(__name__)


def _guarded(check_name: str, fn: Callable[..., bool], *args) -> bool:
    """Run a boolean check, folding unexpected faults into False."""
    try:
        return fn(*args) is True
    except ConfigurationError:
        raise
    except Exception:
        log.exception(f"{check_name} check faulted")
        return False


class ProductVerifier:
    """Combines membership proof, tag authentication and root validity."""

    def __init__(
        self,
        root_store: RootStore,
        tag_authenticator: TagAuthenticator,
        membership_verifier: MembershipProofVerifier,
        proof_timeout_seconds: Optional[float] = None,
    ):
        self.root_store = root_store
        self.tag_authenticator = tag_authenticator
        self.membership_verifier = membership_verifier
        self.proof_timeout_seconds = proof_timeout_seconds

    @property
    def circuit_version(self) -> Optional[str]:
        return getattr(self.membership_verifier, "circuit_version", None)

    async def verify(self, request: VerificationRequest) -> VerificationResult:
        """Verify one product.

        Returns:
            VerificationResult with all three flags populated.

        Raises:
            ConfigurationError: A component is misconfigured (corrupt
                verification key, unreachable trust source, ...).
        """
        await self._prepare_root_store()

        proof_valid, tag_auth_valid, root_valid = await asyncio.gather(
            self._check_proof(request),
            self._check_tag(request),
            self._check_root(request),
        )
        result = VerificationResult(
            proof_valid=proof_valid,
            tag_auth_valid=tag_auth_valid,
            root_valid=root_valid,
        )
        log.info(
            f"verification complete authentic={result.authentic} "
            f"proof={proof_valid} tag={tag_auth_valid} root={root_valid}"
        )
        return result

    async def _prepare_root_store(self) -> None:
        store = self.root_store
        if isinstance(store, RemoteRootRegistry) and not store.loaded:
            await store.refresh()

    async def _check_proof(self, request: VerificationRequest) -> bool:
        # Pairing arithmetic is CPU bound; keep it off the event loop
        call = asyncio.to_thread(
            _guarded,
            "membership proof",
            self.membership_verifier.verify_membership_proof,
            request.proof,
            request.public_inputs,
        )
        if self.proof_timeout_seconds is None:
            return await call
        try:
            return await asyncio.wait_for(call, timeout=self.proof_timeout_seconds)
        except asyncio.TimeoutError:
            log.warning(f"membership proof check timed out after {self.proof_timeout_seconds}s")
            return False

    async def _check_tag(self, request: VerificationRequest) -> bool:
        return _guarded(
            "tag auth",
            self.tag_authenticator.verify_tag_auth,
            request.tag_uid,
            request.challenge,
            request.tag_signature,
        )

    async def _check_root(self, request: VerificationRequest) -> bool:
        return _guarded(
            "root",
            self.root_store.is_valid_root,
            request.claimed_root,
            self.circuit_version,
        )


# =============================================================================
# Wiring from configuration
# =============================================================================


def build_root_store() -> RootStore:
    """Build the root store named by configuration.

    Precedence: remote trust source, then trust bundle file, then roots
    listed in TLB_TRUSTED_ROOTS (unsigned, ignored when an issuer key is
    configured).
    """
    from app.core.config import (
        CIRCUIT_VERSION,
        ROOT_ISSUER_PUBLIC_KEY,
        ROOT_SOURCE_TIMEOUT_SECONDS,
        ROOT_SOURCE_URL,
        TRUSTED_ROOTS,
        TRUSTED_ROOTS_PATH,
    )

    if ROOT_SOURCE_URL:
        return RemoteRootRegistry(
            ROOT_SOURCE_URL,
            issuer_public_key=ROOT_ISSUER_PUBLIC_KEY,
            timeout=ROOT_SOURCE_TIMEOUT_SECONDS,
        )
    if TRUSTED_ROOTS_PATH:
        return load_root_bundle(TRUSTED_ROOTS_PATH, ROOT_ISSUER_PUBLIC_KEY)

    records = [RootRecord(root=r, circuit_version=CIRCUIT_VERSION) for r in sorted(TRUSTED_ROOTS)]
    if ROOT_ISSUER_PUBLIC_KEY is not None and records:
        log.warning("TLB_TRUSTED_ROOTS ignored: issuer key configured, roots must be signed")
        records = []
    return RootRegistry(records, issuer_public_key=ROOT_ISSUER_PUBLIC_KEY)


def build_product_verifier() -> ProductVerifier:
    """Wire a ProductVerifier from app.core.config.

    Raises:
        ConfigurationError: Required key material missing or unusable.
    """
    from app.core.config import (
        PROOF_VERIFY_TIMEOUT_SECONDS,
        TAG_DIVERSIFICATION_AID,
        TAG_MASTER_KEY,
        TAG_SYSTEM_IDENTIFIER,
        VERIFICATION_KEY_PATH,
    )

    if TAG_MASTER_KEY is None:
        raise ConfigurationError.missing("TLB_TAG_MASTER_KEY")
    if not VERIFICATION_KEY_PATH:
        raise ConfigurationError.missing("TLB_VERIFICATION_KEY_PATH")

    return ProductVerifier(
        root_store=build_root_store(),
        tag_authenticator=TagAuthenticator(
            TAG_MASTER_KEY, TAG_DIVERSIFICATION_AID, TAG_SYSTEM_IDENTIFIER
        ),
        membership_verifier=MembershipProofVerifier.from_file(VERIFICATION_KEY_PATH),
        proof_timeout_seconds=PROOF_VERIFY_TIMEOUT_SECONDS,
    )


# Module-level singleton
_product_verifier: Optional[ProductVerifier] = None


def get_product_verifier() -> ProductVerifier:
    """Get or create the product verifier singleton.

    Key material is loaded on first access; failures raise
    ConfigurationError and are retried on the next call.
    """
    global _product_verifier
    if _product_verifier is None:
        _product_verifier = build_product_verifier()
    return _product_verifier


def reset_product_verifier() -> None:
    """Reset the product verifier singleton (for testing)."""
    global _product_verifier
    _product_verifier = None


async def verify_product(request: VerificationRequest) -> VerificationResult:
    """Verify a product with the process-wide verifier."""
    return await get_product_verifier().verify(request)
