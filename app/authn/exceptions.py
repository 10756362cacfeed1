"""
Last Bounce verifier exceptions.

Two families:
- Boundary/trust errors (malformed requests, rejected roots) that the
  caller can act on.
- ConfigurationError and its subclasses: the deployment is broken. These
  are never folded into a negative verification result, so operators can
  tell "the product is fake" apart from "the service is broken".
"""

from app.authn.api_models import ErrorCode


class AuthnError(Exception):
    """Base exception for verifier operations.

    Carries an error code that maps to ErrorCode constants.
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


class MalformedRequestError(AuthnError):
    """Request is missing fields or carries undecodable values.

    Raised only at the API boundary; component-level malformed input is
    reported as a failed check instead.
    """

    def __init__(self, message: str = "Malformed verification request"):
        super().__init__(ErrorCode.MALFORMED_REQUEST, message)

    @classmethod
    def invalid_field(cls, field_name: str) -> "MalformedRequestError":
        """Factory for a field that failed to decode."""
        return cls(f"Field {field_name} is not valid base64")


class RootSignatureError(AuthnError):
    """Issuer signature over a candidate root did not verify."""

    def __init__(self, message: str = "Root signature verification failed"):
        super().__init__(ErrorCode.ROOT_SIGNATURE_INVALID, message)


class RootRevokedError(AuthnError):
    """Attempt to trust a root that has been revoked."""

    def __init__(self, root: str):
        super().__init__(ErrorCode.ROOT_REVOKED, f"Root has been revoked: {root[:18]}...")


class ConfigurationError(AuthnError):
    """Fatal deployment fault.

    Propagates across the orchestrator boundary and maps to a
    server-error response.
    """

    def __init__(self, message: str, code: str = ErrorCode.CONFIGURATION_ERROR):
        super().__init__(code, message)

    @classmethod
    def missing(cls, setting: str) -> "ConfigurationError":
        """Factory for a required setting that was not provided."""
        return cls(f"Required setting {setting} is not configured")


class VerificationKeyError(ConfigurationError):
    """Verification key is missing, unreadable or structurally corrupt."""

    def __init__(self, message: str = "Verification key invalid"):
        super().__init__(message, ErrorCode.VERIFICATION_KEY_INVALID)


class ProofSystemError(ConfigurationError):
    """The pairing check itself faulted.

    Distinct from a proof that checks out as invalid: this means the
    verifier could not run, which is a deployment problem.
    """

    def __init__(self, message: str = "Proof system fault"):
        super().__init__(message, ErrorCode.PROOF_SYSTEM_FAULT)


class RootSourceUnavailableError(ConfigurationError):
    """Remote trust-root source could not be reached or parsed."""

    def __init__(self, message: str = "Trust root source unavailable"):
        super().__init__(message, ErrorCode.ROOT_SOURCE_UNAVAILABLE)
