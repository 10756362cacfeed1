"""Zero-knowledge Merkle membership verification.

Checks that a Groth16 proof shows some secret serial hashes to the claimed
nullifier and sits in the Merkle tree with the claimed root, without the
verifier learning the serial.

Malformed inputs return False before any curve arithmetic runs. A fault
inside the pairing check raises ProofSystemError instead: a broken verifier
must not look like a counterfeit product.
"""

import logging
import re
from typing import List, Optional, Sequence

from py_ecc.optimized_bn128 import curve_order

from app.core.config import GROTH16_PROOF_LENGTH_BYTES, MIN_PUBLIC_INPUTS
from app.authn.exceptions import ProofSystemError, VerificationKeyError
from .groth16 import ProofFormatError, decode_proof, prepare_alpha_beta, verify_groth16
from .vkey import VerificationKey, load_verification_key

log = logging.getLogger(__name__)

# 0x-prefixed, at most 256 bits of hex
_FIELD_ELEMENT = re.compile(r"0x[0-9a-fA-F]{1,64}")


def parse_public_inputs(public_inputs: Sequence[str], expected_count: int) -> Optional[List[int]]:
    """Validate and convert public inputs to field elements.

    Returns:
        List of ints, or None if the inputs are malformed: fewer than the
        minimum, a count other than expected_count, an entry that is not
        0x-prefixed hex, or a value outside the scalar field.
    """
    if public_inputs is None or isinstance(public_inputs, (str, bytes)):
        return None
    items = list(public_inputs)
    if len(items) < MIN_PUBLIC_INPUTS or len(items) != expected_count:
        return None

    values: List[int] = []
    for item in items:
        if not isinstance(item, str) or not _FIELD_ELEMENT.fullmatch(item):
            return None
        value = int(item[2:], 16)
        if value >= curve_order:
            return None
        values.append(value)
    return values


class MembershipProofVerifier:
    """Groth16 verifier bound to one compiled membership circuit."""

    def __init__(self, verification_key: VerificationKey):
        """
        Raises:
            VerificationKeyError: The key cannot be prepared for pairing.
        """
        self._vk = verification_key
        try:
            self._alpha_beta = prepare_alpha_beta(verification_key)
        except Exception as e:
            raise VerificationKeyError(f"Verification key unusable: {type(e).__name__}") from e
        log.info(
            f"membership verifier ready circuit={verification_key.circuit_version} "
            f"n_public={verification_key.n_public} vk={verification_key.fingerprint}"
        )

    @classmethod
    def from_file(cls, path: str) -> "MembershipProofVerifier":
        return cls(load_verification_key(path))

    @property
    def circuit_version(self) -> str:
        return self._vk.circuit_version

    @property
    def verification_key(self) -> VerificationKey:
        return self._vk

    def verify_membership_proof(self, proof: bytes, public_inputs: Sequence[str]) -> bool:
        """Verify the membership proof against the public inputs.

        Args:
            proof: 256-byte Groth16 proof.
            public_inputs: [root, nullifier_hash, ...] as 0x-prefixed hex.

        Returns:
            True iff the proof verifies under this circuit's key.

        Raises:
            ProofSystemError: The pairing check itself faulted.
        """
        if not isinstance(proof, (bytes, bytearray)) or len(proof) != GROTH16_PROOF_LENGTH_BYTES:
            return False

        inputs = parse_public_inputs(public_inputs, self._vk.n_public)
        if inputs is None:
            return False

        try:
            decoded = decode_proof(bytes(proof))
        except ProofFormatError:
            return False

        try:
            return verify_groth16(self._vk, decoded, inputs, self._alpha_beta)
        except Exception as e:
            log.error("groth16 pairing check faulted", exc_info=True)
            raise ProofSystemError(f"Groth16 verification faulted: {type(e).__name__}") from e
