"""Core request/result types for product verification.

Both types live for a single call: built at the API boundary, consumed by
the orchestrator, and discarded once the response is written.
"""

from dataclasses import dataclass
from typing import Dict, Optional, Tuple


@dataclass(frozen=True)
class VerificationRequest:
    """Binary verification request handed to the core.

    Attributes:
        proof: Groth16 proof artifact.
        public_inputs: Field elements; [0] is the Merkle root, [1] the
            nullifier hash.
        tag_signature: AES-128-CMAC the tag produced over the challenge.
        challenge: Nonce presented to the tag.
        tag_uid: Hex UID of the physical tag.
    """
    proof: bytes
    public_inputs: Tuple[str, ...]
    tag_signature: bytes
    challenge: bytes
    tag_uid: str

    @property
    def claimed_root(self) -> Optional[str]:
        """The Merkle root the proof claims membership in, if present."""
        if not self.public_inputs:
            return None
        return self.public_inputs[0]


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of the three independent checks.

    `authentic` is derived, never stored, so it cannot disagree with the
    individual flags.
    """
    proof_valid: bool
    tag_auth_valid: bool
    root_valid: bool

    @property
    def authentic(self) -> bool:
        return self.proof_valid and self.tag_auth_valid and self.root_valid

    def to_dict(self) -> Dict[str, bool]:
        return {
            "authentic": self.authentic,
            "proofValid": self.proof_valid,
            "tagAuthValid": self.tag_auth_valid,
            "rootValid": self.root_valid,
        }
