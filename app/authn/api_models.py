"""
Last Bounce verifier API models.

Wire shapes for the public /api/verify and /api/health endpoints and the
administrative root endpoints. Binary fields travel as base64 text and are
decoded here, before anything reaches the verification core.
"""

import base64
import binascii
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .models import VerificationRequest, VerificationResult


# =============================================================================
# Error Codes
# =============================================================================

class ErrorCode:
    """Error code registry shared by the API layer and domain exceptions."""
    # Boundary layer
    MALFORMED_REQUEST = "MALFORMED_REQUEST"
    METHOD_NOT_ALLOWED = "METHOD_NOT_ALLOWED"
    RATE_LIMITED = "RATE_LIMITED"

    # Trust layer
    ROOT_SIGNATURE_INVALID = "ROOT_SIGNATURE_INVALID"
    ROOT_REVOKED = "ROOT_REVOKED"

    # Configuration layer (fatal: the service is broken, not the product)
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    VERIFICATION_KEY_INVALID = "VERIFICATION_KEY_INVALID"
    PROOF_SYSTEM_FAULT = "PROOF_SYSTEM_FAULT"
    ROOT_SOURCE_UNAVAILABLE = "ROOT_SOURCE_UNAVAILABLE"

    # Verifier layer
    INTERNAL_ERROR = "INTERNAL_ERROR"


# User-facing error messages. Deliberately coarse: nothing here tells a caller
# which check failed or why.
ERROR_MESSAGES = {
    ErrorCode.MALFORMED_REQUEST: "Missing or malformed required fields",
    ErrorCode.METHOD_NOT_ALLOWED: "Method not allowed",
    ErrorCode.RATE_LIMITED: "Too many requests. Please try again later.",
    ErrorCode.INTERNAL_ERROR: "Internal server error",
}


def _decode_base64(value: str, field_name: str) -> bytes:
    """Strict base64 decode; raises MalformedRequestError on bad input."""
    from .exceptions import MalformedRequestError

    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise MalformedRequestError.invalid_field(field_name)


# =============================================================================
# Request Models
# =============================================================================

class VerifyRequest(BaseModel):
    """Request body for POST /api/verify."""
    model_config = ConfigDict(populate_by_name=True)

    proof: str = Field(min_length=1)                                 # base64
    public_inputs: List[str] = Field(alias="publicInputs", min_length=1)
    tag_signature: str = Field(alias="tagSignature", min_length=1)  # base64
    challenge: str = Field(min_length=1)                             # base64
    tag_uid: str = Field(alias="tagUid", min_length=1)

    def to_verification_request(self) -> VerificationRequest:
        """Decode wire fields into the binary request the core consumes.

        Raises:
            MalformedRequestError: A base64 field does not decode.
        """
        return VerificationRequest(
            proof=_decode_base64(self.proof, "proof"),
            public_inputs=tuple(self.public_inputs),
            tag_signature=_decode_base64(self.tag_signature, "tagSignature"),
            challenge=_decode_base64(self.challenge, "challenge"),
            tag_uid=self.tag_uid,
        )


class LogLevelRequest(BaseModel):
    """Request body for POST /admin/log-level."""
    level: str


class AddRootRequest(BaseModel):
    """Request body for POST /admin/roots."""
    root: str = Field(min_length=3)
    circuit_version: str = Field(min_length=1)
    signature: Optional[str] = None  # hex Ed25519 issuer signature


# =============================================================================
# Response Models
# =============================================================================

class VerificationDetails(BaseModel):
    """Per-check outcome, reported even when the product is not authentic."""
    model_config = ConfigDict(populate_by_name=True)

    proof_valid: bool = Field(alias="proofValid")
    tag_auth_valid: bool = Field(alias="tagAuthValid")
    root_valid: bool = Field(alias="rootValid")


class VerifyResponse(BaseModel):
    """Response schema for POST /api/verify."""
    success: bool
    authentic: bool
    timestamp: str
    error: Optional[str] = None
    details: Optional[VerificationDetails] = None

    @classmethod
    def from_result(cls, result: VerificationResult, timestamp: str) -> "VerifyResponse":
        return cls(
            success=True,
            authentic=result.authentic,
            timestamp=timestamp,
            details=VerificationDetails(
                proof_valid=result.proof_valid,
                tag_auth_valid=result.tag_auth_valid,
                root_valid=result.root_valid,
            ),
        )

    @classmethod
    def failure(cls, code: str, timestamp: str) -> "VerifyResponse":
        return cls(
            success=False,
            authentic=False,
            timestamp=timestamp,
            error=ERROR_MESSAGES.get(code, ERROR_MESSAGES[ErrorCode.INTERNAL_ERROR]),
        )

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


class HealthResponse(BaseModel):
    """Response schema for GET /api/health."""
    status: str
    timestamp: str
    version: str
    uptime: float
