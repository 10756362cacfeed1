"""Ed25519 issuer signatures over Merkle roots.

A root is only trusted once the root-of-trust issuer has signed it. The
signature binds the root to the circuit generation it was built for, so a
root cannot be replayed against a different verification key.

Note: pysodium is imported lazily inside functions so modules that only
consult an already-populated registry do not need libsodium at import time.
"""

from app.authn.exceptions import RootSignatureError

ROOT_SIGNING_DOMAIN = "tlb-root-v1"
ED25519_PUBLIC_KEY_BYTES = 32
ED25519_SIGNATURE_BYTES = 64


def root_signing_input(root: str, circuit_version: str) -> bytes:
    """Build the exact bytes the issuer signs for a root."""
    return f"{ROOT_SIGNING_DOMAIN}:{circuit_version}:{root}".encode("utf-8")


def verify_root_signature(
    root: str,
    circuit_version: str,
    signature: bytes,
    issuer_public_key: bytes,
) -> None:
    """Verify the issuer's Ed25519 signature over a root.

    Raises:
        RootSignatureError: Signature missing, wrong length, or invalid.
    """
    if not signature or len(signature) != ED25519_SIGNATURE_BYTES:
        raise RootSignatureError(f"Root signature must be {ED25519_SIGNATURE_BYTES} bytes")
    if len(issuer_public_key) != ED25519_PUBLIC_KEY_BYTES:
        raise RootSignatureError("Issuer public key must be 32 bytes")

    import pysodium
    try:
        # pysodium.crypto_sign_verify_detached raises ValueError if invalid
        pysodium.crypto_sign_verify_detached(
            signature,
            root_signing_input(root, circuit_version),
            issuer_public_key,
        )
    except Exception:
        raise RootSignatureError(f"Ed25519 root signature invalid for root={root[:18]}...")


def sign_root(root: str, circuit_version: str, issuer_secret_key: bytes) -> bytes:
    """Produce the issuer signature for a root (issuer tooling and tests)."""
    import pysodium

    return pysodium.crypto_sign_detached(root_signing_input(root, circuit_version), issuer_secret_key)
