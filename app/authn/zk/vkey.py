"""Groth16 verification key loading.

The key is a snarkjs `verification_key.json` export for the membership
circuit, extended with a mandatory `circuit_version` so roots built for one
circuit generation are never checked against another generation's key.

Loaded once at startup; the resulting VerificationKey is immutable.
"""

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Tuple

from py_ecc.optimized_bn128 import (
    FQ,
    FQ2,
    b,
    b2,
    curve_order,
    field_modulus,
    is_inf,
    is_on_curve,
    multiply,
)

from app.core.config import MIN_PUBLIC_INPUTS
from app.authn.exceptions import VerificationKeyError

SUPPORTED_PROTOCOL = "groth16"
SUPPORTED_CURVES = frozenset({"bn128", "bn254", "alt_bn128"})


@dataclass(frozen=True)
class VerificationKey:
    """Parsed Groth16 verification key (projective py_ecc points)."""
    circuit_version: str
    n_public: int
    alpha_g1: Tuple
    beta_g2: Tuple
    gamma_g2: Tuple
    delta_g2: Tuple
    ic: Tuple[Tuple, ...]
    fingerprint: str


def _parse_coordinate(value: Any) -> int:
    if isinstance(value, bool):
        raise VerificationKeyError("Coordinate must be an integer")
    if isinstance(value, int):
        n = value
    elif isinstance(value, str):
        try:
            n = int(value, 16) if value.lower().startswith("0x") else int(value, 10)
        except ValueError:
            raise VerificationKeyError(f"Coordinate is not an integer: {value[:20]}")
    else:
        raise VerificationKeyError("Coordinate must be an integer or numeric string")
    if not 0 <= n < field_modulus:
        raise VerificationKeyError("Coordinate outside base field")
    return n


def _parse_g1(value: Any, name: str) -> Tuple:
    if not isinstance(value, list) or len(value) not in (2, 3):
        raise VerificationKeyError(f"{name} must be a G1 point [x, y, z]")
    x, y = _parse_coordinate(value[0]), _parse_coordinate(value[1])
    z = _parse_coordinate(value[2]) if len(value) == 3 else 1
    point = (FQ(x), FQ(y), FQ(z))
    if is_inf(point) or not is_on_curve(point, b):
        raise VerificationKeyError(f"{name} is not a valid G1 point")
    return point


def _parse_fq2(value: Any, name: str) -> FQ2:
    if not isinstance(value, list) or len(value) != 2:
        raise VerificationKeyError(f"{name} coordinate must be [c0, c1]")
    return FQ2([_parse_coordinate(value[0]), _parse_coordinate(value[1])])


def _parse_g2(value: Any, name: str) -> Tuple:
    if not isinstance(value, list) or len(value) not in (2, 3):
        raise VerificationKeyError(f"{name} must be a G2 point [x, y, z]")
    x, y = _parse_fq2(value[0], name), _parse_fq2(value[1], name)
    z = _parse_fq2(value[2], name) if len(value) == 3 else FQ2([1, 0])
    point = (x, y, z)
    if is_inf(point) or not is_on_curve(point, b2):
        raise VerificationKeyError(f"{name} is not a valid G2 point")
    if not is_inf(multiply(point, curve_order)):
        raise VerificationKeyError(f"{name} is not in the G2 subgroup")
    return point


def parse_verification_key(data: Dict[str, Any]) -> VerificationKey:
    """Parse a snarkjs Groth16 verification key.

    Raises:
        VerificationKeyError: Any structural or curve-membership defect.
    """
    if not isinstance(data, dict):
        raise VerificationKeyError("Verification key must be a JSON object")

    protocol = data.get("protocol", SUPPORTED_PROTOCOL)
    if protocol != SUPPORTED_PROTOCOL:
        raise VerificationKeyError(f"Unsupported proof protocol: {protocol}")
    curve = data.get("curve", "bn128")
    if curve not in SUPPORTED_CURVES:
        raise VerificationKeyError(f"Unsupported curve: {curve}")

    circuit_version = data.get("circuit_version")
    if not isinstance(circuit_version, str) or not circuit_version:
        raise VerificationKeyError("Verification key must declare a circuit_version")

    ic_raw = data.get("IC")
    if not isinstance(ic_raw, list):
        raise VerificationKeyError("IC must be a list of G1 points")
    n_public = data.get("nPublic", len(ic_raw) - 1)
    if not isinstance(n_public, int) or isinstance(n_public, bool):
        raise VerificationKeyError("nPublic must be an integer")
    if n_public < MIN_PUBLIC_INPUTS:
        raise VerificationKeyError(f"Circuit must expose at least {MIN_PUBLIC_INPUTS} public inputs")
    if len(ic_raw) != n_public + 1:
        raise VerificationKeyError("IC length must equal nPublic + 1")

    canonical = json.dumps(data, sort_keys=True, separators=(",", ":")).encode("utf-8")

    return VerificationKey(
        circuit_version=circuit_version,
        n_public=n_public,
        alpha_g1=_parse_g1(data.get("vk_alpha_1"), "vk_alpha_1"),
        beta_g2=_parse_g2(data.get("vk_beta_2"), "vk_beta_2"),
        gamma_g2=_parse_g2(data.get("vk_gamma_2"), "vk_gamma_2"),
        delta_g2=_parse_g2(data.get("vk_delta_2"), "vk_delta_2"),
        ic=tuple(_parse_g1(p, f"IC[{i}]") for i, p in enumerate(ic_raw)),
        fingerprint=hashlib.sha256(canonical).hexdigest()[:16],
    )


def load_verification_key(path: str) -> VerificationKey:
    """Read and parse a verification key file.

    Raises:
        VerificationKeyError: File missing, unreadable, or corrupt.
    """
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise VerificationKeyError(f"Cannot read verification key {path}: {e}")
    return parse_verification_key(data)
