"""Groth16 (BN254) membership proof verification."""

from .vkey import VerificationKey, parse_verification_key, load_verification_key
from .groth16 import (
    Groth16Proof,
    ProofFormatError,
    decode_proof,
    encode_proof,
    verify_groth16,
)
from .membership import MembershipProofVerifier, parse_public_inputs

__all__ = [
    "VerificationKey",
    "parse_verification_key",
    "load_verification_key",
    "Groth16Proof",
    "ProofFormatError",
    "decode_proof",
    "encode_proof",
    "verify_groth16",
    "MembershipProofVerifier",
    "parse_public_inputs",
]
