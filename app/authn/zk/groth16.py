"""Groth16 proof decoding and pairing check on BN254.

Proof wire format: 256 bytes of big-endian 32-byte words, in the order the
EIP-197 precompile and Solidity verifiers use:

    A.x | A.y | B.x.c1 | B.x.c0 | B.y.c1 | B.y.c0 | C.x | C.y

Verification equation:

    e(-A, B) * e(alpha, beta) * e(vk_x, gamma) * e(C, delta) == 1
    vk_x = IC[0] + sum(input_i * IC[i + 1])

The Miller loops are multiplied together and a single final exponentiation
is applied. e(alpha, beta) is input-independent and precomputed once.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    FQ12,
    add,
    b,
    b2,
    curve_order,
    field_modulus,
    final_exponentiate,
    is_inf,
    is_on_curve,
    multiply,
    neg,
    normalize,
    pairing,
)

from app.core.config import GROTH16_PROOF_LENGTH_BYTES
from .vkey import VerificationKey

WORD_BYTES = 32


class ProofFormatError(ValueError):
    """Proof bytes do not encode three valid curve points."""


@dataclass(frozen=True)
class Groth16Proof:
    """Decoded proof (projective py_ecc points)."""
    a: Tuple
    b: Tuple
    c: Tuple


def _word(data: bytes, index: int) -> int:
    value = int.from_bytes(data[index * WORD_BYTES:(index + 1) * WORD_BYTES], "big")
    if value >= field_modulus:
        raise ProofFormatError("coordinate outside base field")
    return value


def _g1(x: int, y: int, name: str) -> Tuple:
    if x == 0 and y == 0:
        raise ProofFormatError(f"{name} is the point at infinity")
    point = (FQ(x), FQ(y), FQ(1))
    if not is_on_curve(point, b):
        raise ProofFormatError(f"{name} is not on G1")
    return point


def decode_proof(data: bytes) -> Groth16Proof:
    """Decode and validate proof bytes.

    Raises:
        ProofFormatError: Wrong length, coordinates out of range, points
            off-curve or at infinity, or B outside the G2 subgroup.
    """
    if len(data) != GROTH16_PROOF_LENGTH_BYTES:
        raise ProofFormatError(f"proof must be {GROTH16_PROOF_LENGTH_BYTES} bytes")

    words = [_word(data, i) for i in range(GROTH16_PROOF_LENGTH_BYTES // WORD_BYTES)]

    a = _g1(words[0], words[1], "A")
    if not any(words[2:6]):
        raise ProofFormatError("B is the point at infinity")
    b_point = (FQ2([words[3], words[2]]), FQ2([words[5], words[4]]), FQ2([1, 0]))
    if not is_on_curve(b_point, b2):
        raise ProofFormatError("B is not on G2")
    if not is_inf(multiply(b_point, curve_order)):
        raise ProofFormatError("B is not in the G2 subgroup")
    c = _g1(words[6], words[7], "C")

    return Groth16Proof(a=a, b=b_point, c=c)


def _coeff(value) -> int:
    return value if isinstance(value, int) else value.n


def encode_proof(proof: Groth16Proof) -> bytes:
    """Serialize a proof into the 256-byte wire format."""
    ax, ay = normalize(proof.a)
    bx, by = normalize(proof.b)
    cx, cy = normalize(proof.c)
    words = [
        _coeff(ax), _coeff(ay),
        _coeff(bx.coeffs[1]), _coeff(bx.coeffs[0]),
        _coeff(by.coeffs[1]), _coeff(by.coeffs[0]),
        _coeff(cx), _coeff(cy),
    ]
    return b"".join(w.to_bytes(WORD_BYTES, "big") for w in words)


def prepare_alpha_beta(vk: VerificationKey) -> FQ12:
    """Miller loop of e(alpha, beta), without final exponentiation."""
    return pairing(vk.beta_g2, vk.alpha_g1, final_exponentiate=False)


def verify_groth16(
    vk: VerificationKey,
    proof: Groth16Proof,
    public_inputs: Sequence[int],
    alpha_beta: Optional[FQ12] = None,
) -> bool:
    """Run the Groth16 pairing check.

    Args:
        vk: Verification key for the circuit.
        proof: Decoded proof.
        public_inputs: Field elements, each < curve_order, len == vk.n_public.
        alpha_beta: Precomputed prepare_alpha_beta(vk), if available.

    Returns:
        True iff the pairing equation holds.
    """
    if len(public_inputs) != vk.n_public:
        raise ValueError("public input count does not match verification key")

    vk_x = vk.ic[0]
    for value, ic_point in zip(public_inputs, vk.ic[1:]):
        if not 0 <= value < curve_order:
            raise ValueError("public input outside scalar field")
        vk_x = add(vk_x, multiply(ic_point, value))

    if alpha_beta is None:
        alpha_beta = prepare_alpha_beta(vk)

    acc = pairing(proof.b, neg(proof.a), final_exponentiate=False)
    acc = acc * alpha_beta
    acc = acc * pairing(vk.gamma_g2, vk_x, final_exponentiate=False)
    acc = acc * pairing(vk.delta_g2, proof.c, final_exponentiate=False)

    return final_exponentiate(acc) == FQ12.one()
