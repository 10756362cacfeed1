"""
Last Bounce verifier configuration constants.

Constants are organized into:
- NORMATIVE: Fixed by the tag hardware and proof system, not deployment tunable
- CONFIGURABLE: Defaults that deployments may override via environment
- KEY MATERIAL: Secrets and trust anchors, always supplied by the deployment
- OPERATIONAL: Deployment-specific settings (env vars)
"""

import os
from typing import Optional

# =============================================================================
# NORMATIVE CONSTANTS
# =============================================================================

# AES-128-CMAC output width. NTAG424 DNA / DESFire EV3 responses are exactly
# one AES block.
CMAC_LENGTH_BYTES: int = 16

# NFC UIDs are 4 (single size), 7 (double size) or 10 (triple size) bytes
TAG_UID_LENGTHS: frozenset[int] = frozenset({4, 7, 10})

# publicInputs[0] = Merkle root, publicInputs[1] = nullifier hash
MIN_PUBLIC_INPUTS: int = 2

# Groth16 proof on BN254: A (G1, 64 bytes) || B (G2, 128 bytes) || C (G1, 64 bytes)
GROTH16_PROOF_LENGTH_BYTES: int = 256

# Shared bucket for callers whose network origin cannot be determined
UNKNOWN_CLIENT_ID: str = "unknown"

# =============================================================================
# CONFIGURABLE DEFAULTS
# =============================================================================

# Admission control: requests per window per client identity
RATE_LIMIT_MAX_REQUESTS: int = int(os.getenv("TLB_RATE_LIMIT_MAX_REQUESTS", "100"))

# Admission control window length
RATE_LIMIT_WINDOW_MS: int = int(os.getenv("TLB_RATE_LIMIT_WINDOW_MS", "60000"))

# Hard timeout around the pairing check. Timeout counts as "unable to verify".
PROOF_VERIFY_TIMEOUT_SECONDS: float = float(os.getenv("TLB_PROOF_TIMEOUT_SECONDS", "10.0"))

# Remote trust source fetch timeout
ROOT_SOURCE_TIMEOUT_SECONDS: float = float(os.getenv("TLB_ROOT_SOURCE_TIMEOUT_SECONDS", "5.0"))


# =============================================================================
# KEY MATERIAL AND TRUST ANCHORS
# =============================================================================


def _parse_hex(name: str) -> Optional[bytes]:
    """Parse an optional hex-encoded environment variable.

    Returns None when the variable is unset or empty. A value that is not
    valid hex also yields None; the component that needs it reports the
    missing configuration when it is built.
    """
    value = os.getenv(name, "").strip()
    if not value:
        return None
    if value.lower().startswith("0x"):
        value = value[2:]
    try:
        return bytes.fromhex(value)
    except ValueError:
        return None


# AN10922 master key the per-tag keys are diversified from (16 bytes)
TAG_MASTER_KEY: Optional[bytes] = _parse_hex("TLB_TAG_MASTER_KEY")

# Diversification inputs appended after the UID (AID is 3 bytes for DESFire)
TAG_DIVERSIFICATION_AID: bytes = _parse_hex("TLB_TAG_AID") or b""
TAG_SYSTEM_IDENTIFIER: bytes = _parse_hex("TLB_TAG_SYSTEM_ID") or b""

# snarkjs-format Groth16 verification key for the membership circuit
VERIFICATION_KEY_PATH: Optional[str] = os.getenv("TLB_VERIFICATION_KEY_PATH") or None

# Ed25519 public key of the root-of-trust issuer. When set, every root must
# carry a valid issuer signature before it is trusted.
ROOT_ISSUER_PUBLIC_KEY: Optional[bytes] = _parse_hex("TLB_ROOT_ISSUER_PUBLIC_KEY")

# Circuit generation assigned to roots listed directly in TLB_TRUSTED_ROOTS
CIRCUIT_VERSION: Optional[str] = os.getenv("TLB_CIRCUIT_VERSION") or None


def _parse_trusted_roots() -> frozenset[str]:
    """Parse comma-separated trusted Merkle roots from environment.

    Intended for development and staging, where roots are not signed.
    Production deployments load a signed trust bundle instead.

    Environment variable format:
        TLB_TRUSTED_ROOTS=0x1234...abcd,0x5678...ef01

    Returns:
        frozenset of root strings (empty if unset).
    """
    env_value = os.getenv("TLB_TRUSTED_ROOTS", "")
    return frozenset(r.strip() for r in env_value.split(",") if r.strip())


TRUSTED_ROOTS: frozenset[str] = _parse_trusted_roots()

# Signed trust bundle on local disk
TRUSTED_ROOTS_PATH: Optional[str] = os.getenv("TLB_TRUSTED_ROOTS_PATH") or None

# Signed trust bundle served by a remote trust store
ROOT_SOURCE_URL: Optional[str] = os.getenv("TLB_ROOT_SOURCE_URL") or None


# =============================================================================
# OPERATIONAL SETTINGS (deployment-specific, via environment variables)
# =============================================================================

# Admin endpoint visibility
# Default: True for dev, set to False in production deployments
ADMIN_ENDPOINT_ENABLED: bool = os.getenv("TLB_ADMIN_ENDPOINT_ENABLED", "true").lower() == "true"

# Bearer token for root add/revoke. Mutation endpoints are disabled when unset.
ADMIN_TOKEN: Optional[str] = os.getenv("TLB_ADMIN_TOKEN") or None


def _parse_cors_origins() -> list[str]:
    """Parse comma-separated CORS origins (default: any origin)."""
    env_value = os.getenv("TLB_CORS_ALLOWED_ORIGINS", "*")
    origins = [o.strip() for o in env_value.split(",") if o.strip()]
    return origins or ["*"]


CORS_ALLOWED_ORIGINS: list[str] = _parse_cors_origins()

API_VERSION: str = os.getenv("TLB_API_VERSION", "1.0.0")
