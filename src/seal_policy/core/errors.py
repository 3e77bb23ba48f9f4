"""Seal policy key-server error hierarchy.

Every failure a request can produce is represented as a concrete
exception class carrying a stable error code and a recommended HTTP
status, so the wire layer can translate errors without inspecting
messages.

Hierarchy
---------
::

    SealPolicyError
    +-- RequestError         (SP-E1xx)
    +-- PolicyError          (SP-E2xx)
    +-- AccessError          (SP-E3xx)
    +-- CryptoError          (SP-E4xx)
    +-- CollaboratorError    (SP-E5xx)
    +-- ConfigurationError   (SP-E600)

Usage
-----
Raise concrete subclasses directly::

    raise PolicyNotFound(f"Policy not found: {policy_id}")

Catch by category::

    try:
        ...
    except CryptoError:
        # handles DerivationError, EncryptionError, DecryptionError
        ...
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from seal_policy.core.types import AccessDecision

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------

class SealPolicyError(Exception):
    """Base exception for all key-server errors.

    Attributes
    ----------
    code : str
        Error code, e.g. ``"SP-E200"``.
    http_status : int
        Recommended HTTP status code for this error.
    message : str
        Human-readable description (MUST NOT contain key material or
        plaintext).
    details : dict[str, Any]
        Machine-readable context specific to the error instance.
    resolution : str
        Suggested action for the caller.
    """

    code: str = "SP-E000"
    http_status: int = 500
    message: str = "Unknown key-server error"
    resolution: str = ""

    def __init__(
        self,
        message: str | None = None,
        *,
        details: dict[str, Any] | None = None,
        resolution: str | None = None,
    ) -> None:
        self.details: dict[str, Any] = details or {}
        if message is not None:
            self.message = message
        if resolution is not None:
            self.resolution = resolution
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """Serialise the error to the wire error format."""
        payload: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["detail"] = self.details
        if self.resolution:
            payload["resolution"] = self.resolution
        return {"error": payload}

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r})"


# ===================================================================
# Category base classes
# ===================================================================

class RequestError(SealPolicyError):
    """SP-E1xx -- Malformed or incomplete requests."""

    code = "SP-E1XX"
    http_status = 400


class PolicyError(SealPolicyError):
    """SP-E2xx -- Policy storage errors."""

    code = "SP-E2XX"
    http_status = 400


class AccessError(SealPolicyError):
    """SP-E3xx -- Access-control outcomes surfaced as errors."""

    code = "SP-E3XX"
    http_status = 403


class CryptoError(SealPolicyError):
    """SP-E4xx -- Key derivation and cipher failures."""

    code = "SP-E4XX"
    http_status = 500


class CollaboratorError(SealPolicyError):
    """SP-E5xx -- Failures of external collaborators (signer verifiers)."""

    code = "SP-E5XX"
    http_status = 502


# ===================================================================
# SP-E1xx  Request Errors
# ===================================================================

class InvalidRequest(RequestError):
    """SP-E100 -- A required field is missing or a value is malformed."""

    code = "SP-E100"
    http_status = 400
    message = "Invalid request"
    resolution = "Check the request body against the operation's schema."


class UnsupportedMediaType(RequestError):
    """SP-E101 -- The request body is not JSON."""

    code = "SP-E101"
    http_status = 415
    message = "Unsupported media type"
    resolution = "Set the Content-Type header to application/json."


class PayloadTooLarge(RequestError):
    """SP-E102 -- Plaintext or ciphertext exceeds the configured limit."""

    code = "SP-E102"
    http_status = 413
    message = "Payload exceeds the maximum accepted size"
    resolution = "Split the payload or raise max_payload_bytes."


class MethodNotAllowed(RequestError):
    """SP-E103 -- The route exists but not for this HTTP method."""

    code = "SP-E103"
    http_status = 405
    message = "Method not allowed"


class RouteNotFound(RequestError):
    """SP-E104 -- No handler is registered for the requested path."""

    code = "SP-E104"
    http_status = 404
    message = "Route not found"


# ===================================================================
# SP-E2xx  Policy Errors
# ===================================================================

class PolicyNotFound(PolicyError):
    """SP-E200 -- No policy exists for the given id."""

    code = "SP-E200"
    http_status = 404
    message = "Policy not found"
    resolution = "Verify the policy id, or create the policy first."


class DuplicatePolicyId(PolicyError):
    """SP-E201 -- A policy with this id already exists."""

    code = "SP-E201"
    http_status = 409
    message = "A policy with this id already exists"
    resolution = "Retry the create request with a new policy id."


# ===================================================================
# SP-E3xx  Access Errors
# ===================================================================

class AccessDenied(AccessError):
    """SP-E300 -- The access evaluation denied the request.

    Carries the complete :class:`~seal_policy.core.types.AccessDecision`
    so callers can inspect every check, not only the first failure.
    """

    code = "SP-E300"
    http_status = 403
    message = "Access denied"

    def __init__(
        self,
        decision: AccessDecision,
        message: str | None = None,
    ) -> None:
        self.decision = decision
        super().__init__(
            message or decision.reason,
            details=decision.model_dump(mode="json", by_alias=True),
        )


# ===================================================================
# SP-E4xx  Crypto Errors
# ===================================================================

class DerivationError(CryptoError):
    """SP-E400 -- A policy key could not be derived.

    There is no fallback: a request that cannot derive its key fails.
    """

    code = "SP-E400"
    http_status = 500
    message = "Key derivation failed"


class EncryptionError(CryptoError):
    """SP-E401 -- The payload could not be encrypted."""

    code = "SP-E401"
    http_status = 500
    message = "Encryption failed"


class DecryptionError(CryptoError):
    """SP-E402 -- The ciphertext is corrupted or was sealed under another key."""

    code = "SP-E402"
    http_status = 422
    message = "Decryption failed"
    resolution = (
        "Verify the ciphertext was produced by the encrypt operation for "
        "the same policy and has not been modified."
    )


# ===================================================================
# SP-E5xx  Collaborator Errors
# ===================================================================

class SignerUnavailable(CollaboratorError):
    """SP-E500 -- The multi-signature verifier timed out or failed."""

    code = "SP-E500"
    http_status = 503
    message = "Multi-signature verifier is unavailable"


# ===================================================================
# SP-E600  Configuration
# ===================================================================

class ConfigurationError(SealPolicyError):
    """SP-E600 -- The server configuration is incomplete or invalid."""

    code = "SP-E600"
    http_status = 500
    message = "Key server is misconfigured"


class InternalError(SealPolicyError):
    """SP-E999 -- Unexpected failure, reported without internals."""

    code = "SP-E999"
    http_status = 500
    message = "Internal server error"


# ---------------------------------------------------------------------------
# Lookup helper
# ---------------------------------------------------------------------------

_CODE_MAP: dict[str, type[SealPolicyError]] = {
    cls.code: cls
    for cls in [
        InvalidRequest,
        UnsupportedMediaType,
        PayloadTooLarge,
        MethodNotAllowed,
        RouteNotFound,
        PolicyNotFound,
        DuplicatePolicyId,
        DerivationError,
        EncryptionError,
        DecryptionError,
        SignerUnavailable,
        ConfigurationError,
        InternalError,
    ]
}


def error_from_code(
    code: str,
    message: str | None = None,
    details: dict[str, Any] | None = None,
) -> SealPolicyError:
    """Instantiate the exception class registered for *code*.

    ``SP-E300`` is not in the map because :class:`AccessDenied` needs a
    decision; unknown codes (including it) fall back to a plain
    :class:`SealPolicyError` carrying the code.
    """
    cls = _CODE_MAP.get(code)
    if cls is None:
        err = SealPolicyError(message, details=details)
        err.code = code
        return err
    return cls(message, details=details)
