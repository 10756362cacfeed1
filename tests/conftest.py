"""Root conftest for all tests - provides shared fixtures."""

import os

# Keep tests independent of any deployment environment (must be set before
# app.core.config is imported)
os.environ.setdefault("TLB_ADMIN_ENDPOINT_ENABLED", "true")
os.environ.pop("TLB_ROOT_SOURCE_URL", None)
os.environ.pop("TLB_TRUSTED_ROOTS_PATH", None)

import pytest
from py_ecc.optimized_bn128 import G1, G2, curve_order, multiply, normalize

from app.authn.nfc import TagAuthenticator, compute_cmac, parse_tag_uid
from app.authn.zk import Groth16Proof, MembershipProofVerifier, encode_proof, parse_verification_key


# Example values used across the suite. Both are below the BN254 scalar field order.
ROOT = "0x1234567890abcdef1234567890abcdef1234567890abcdef1234567890abcdef"
NULLIFIER = "0x0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f0f"
CIRCUIT_VERSION = "tlb-membership-v1"

# AN10922 worked example
MASTER_KEY = bytes.fromhex("00112233445566778899AABBCCDDEEFF")
TAG_UID = "04782E21801D80"
TAG_AID = bytes.fromhex("3042F5")
TAG_SYSTEM_ID = bytes.fromhex("4E585020416275")
CHALLENGE = bytes.fromhex("a1b2c3d4e5f60718293a4b5c6d7e8f90")


def _int(value) -> int:
    return value if isinstance(value, int) else value.n


def _g1_json(point) -> list:
    x, y = normalize(point)
    return [str(_int(x)), str(_int(y)), "1"]


def _g2_json(point) -> list:
    x, y = normalize(point)
    return [
        [str(_int(x.coeffs[0])), str(_int(x.coeffs[1]))],
        [str(_int(y.coeffs[0])), str(_int(y.coeffs[1]))],
        ["1", "0"],
    ]


class Groth16Trapdoor:
    """Builds a verification key and valid proofs from known toxic waste.

    With alpha, beta, gamma, delta and the IC scalars known, a proof
    A = a*G1, B = b*G2, C = c*G1 satisfies the pairing equation when
    a*b = alpha*beta + x*gamma + c*delta, where x = ic0 + sum(input_i * ic_i).
    """

    ALPHA, BETA, GAMMA, DELTA = 7, 11, 13, 17
    IC = (19, 23, 29)

    def __init__(self, circuit_version: str = CIRCUIT_VERSION):
        self.circuit_version = circuit_version

    def verification_key_json(self) -> dict:
        return {
            "protocol": "groth16",
            "curve": "bn128",
            "nPublic": len(self.IC) - 1,
            "circuit_version": self.circuit_version,
            "vk_alpha_1": _g1_json(multiply(G1, self.ALPHA)),
            "vk_beta_2": _g2_json(multiply(G2, self.BETA)),
            "vk_gamma_2": _g2_json(multiply(G2, self.GAMMA)),
            "vk_delta_2": _g2_json(multiply(G2, self.DELTA)),
            "IC": [_g1_json(multiply(G1, s)) for s in self.IC],
        }

    def proof_for(self, public_inputs, a: int = 31, b: int = 37) -> bytes:
        values = [int(v, 16) if isinstance(v, str) else v for v in public_inputs]
        x = (self.IC[0] + sum(v * s for v, s in zip(values, self.IC[1:]))) % curve_order
        c = ((a * b - self.ALPHA * self.BETA - x * self.GAMMA) * pow(self.DELTA, -1, curve_order)) % curve_order
        return encode_proof(Groth16Proof(a=multiply(G1, a), b=multiply(G2, b), c=multiply(G1, c)))


@pytest.fixture(scope="session")
def trapdoor():
    return Groth16Trapdoor()


@pytest.fixture(scope="session")
def vk_json(trapdoor):
    return trapdoor.verification_key_json()


@pytest.fixture(scope="session")
def membership_verifier(vk_json):
    """Real Groth16 verifier over the trapdoor key (built once, pairing is slow)."""
    return MembershipProofVerifier(parse_verification_key(vk_json))


@pytest.fixture(scope="session")
def valid_proof(trapdoor):
    return trapdoor.proof_for([ROOT, NULLIFIER])


@pytest.fixture
def tag_authenticator():
    return TagAuthenticator(MASTER_KEY, TAG_AID, TAG_SYSTEM_ID)


@pytest.fixture
def tag_signature(tag_authenticator):
    """MAC a genuine tag would return for CHALLENGE."""
    key = tag_authenticator.derive_tag_key(parse_tag_uid(TAG_UID))
    return compute_cmac(key, CHALLENGE)


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset process-wide singletons before each test to ensure isolation."""
    from app.authn.rate_limit import reset_rate_limiter
    from app.authn.verify import reset_product_verifier

    reset_rate_limiter()
    reset_product_verifier()
    yield
    reset_rate_limiter()
    reset_product_verifier()
