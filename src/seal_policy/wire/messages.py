"""Key-server wire schemas and helpers.

This module provides:

* **Request models** -- one explicit schema per operation, validated at
  the HTTP boundary.  Legacy field names (``sealId``, ``quizId``,
  ``userAddress``) and snake_case names are accepted alongside the
  camelCase ones.
* **Response models** -- the camelCase documents returned to callers.
* **Error formatting** -- the ``{"error": {...}}`` body.
* **Parsing helpers** -- JSON decoding, content-type checks and binary
  field encoding.

All helpers are *synchronous* and side-effect-free.
"""
from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime
from typing import Any, Literal, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)
from pydantic.alias_generators import to_camel

from seal_policy.core.errors import InvalidRequest, SealPolicyError, UnsupportedMediaType
from seal_policy.core.types import AccessDecision, Policy

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

JSON_CONTENT_TYPE: str = "application/json"

POLICY_ID_PATTERN = r"^[A-Za-z0-9_.:\-]{1,128}$"
"""Caller-chosen policy ids must be safe to embed in a URL path."""

Encoding = Literal["utf-8", "base64"]

_REQUEST_CONFIG = ConfigDict(extra="ignore")
_RESPONSE_CONFIG = ConfigDict(populate_by_name=True, alias_generator=to_camel)

_POLICY_ID = AliasChoices("policyId", "sealId", "policy_id")
_REQUESTER = AliasChoices("requesterAddress", "userAddress", "requester_address")


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class PolicyConfigRequest(BaseModel):
    """Access conditions supplied with a create request."""

    model_config = _REQUEST_CONFIG

    time_lock_duration: float = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("timeLockDuration", "time_lock_duration"),
        description="Hours from creation until the resource unlocks; 0 for none.",
    )
    privacy_enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("privacyEnabled", "privacy_enabled"),
    )
    multi_sig_enabled: bool = Field(
        default=False,
        validation_alias=AliasChoices("multiSigEnabled", "multi_sig_enabled"),
    )
    whitelist_addresses: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices(
            "whitelistAddresses", "whitelist_addresses", "whitelist"
        ),
    )
    threshold: int | None = Field(default=None, ge=1)


class CreatePolicyRequest(BaseModel):
    """``POST /api/v1/policies``."""

    model_config = _REQUEST_CONFIG

    resource_id: str = Field(
        min_length=1,
        validation_alias=AliasChoices("resourceId", "quizId", "resource_id"),
    )
    config: PolicyConfigRequest
    policy_id: str | None = Field(
        default=None,
        pattern=POLICY_ID_PATTERN,
        validation_alias=_POLICY_ID,
    )
    payload: str | None = None
    encoding: Encoding = "utf-8"

    @model_validator(mode="after")
    def _payload_needs_privacy(self) -> CreatePolicyRequest:
        if self.payload is not None and not self.config.privacy_enabled:
            raise ValueError("payload requires config.privacyEnabled")
        return self


class VerifyRequest(BaseModel):
    """``POST /api/v1/verify``."""

    model_config = _REQUEST_CONFIG

    policy_id: str = Field(min_length=1, validation_alias=_POLICY_ID)
    requester_address: str = Field(validation_alias=_REQUESTER)
    approvals: list[str] = Field(default_factory=list)


class EncryptRequest(BaseModel):
    """``POST /api/v1/encrypt``."""

    model_config = _REQUEST_CONFIG

    policy_id: str = Field(min_length=1, validation_alias=_POLICY_ID)
    plaintext: str
    encoding: Encoding = "utf-8"


class DecryptRequest(BaseModel):
    """``POST /api/v1/decrypt``."""

    model_config = _REQUEST_CONFIG

    policy_id: str = Field(min_length=1, validation_alias=_POLICY_ID)
    ciphertext: str = Field(min_length=1)
    requester_address: str = Field(validation_alias=_REQUESTER)
    approvals: list[str] = Field(default_factory=list)
    encoding: Encoding = "utf-8"


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------

class SealedPayloadResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    ciphertext: str
    key_ref: str


class CreatePolicyResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    policy_id: str
    policy: Policy
    sealed_payload: SealedPayloadResponse | None = None


class PolicyResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    policy: Policy


class PolicyListResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    policies: list[Policy]
    count: int


class EncryptResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    policy_id: str
    ciphertext: str
    key_ref: str


class DecryptResponse(BaseModel):
    model_config = _RESPONSE_CONFIG

    policy_id: str
    plaintext: str
    encoding: Encoding = "utf-8"


VerifyResponse = AccessDecision


class ErrorPayload(BaseModel):
    """Machine-readable error object."""

    model_config = ConfigDict(strict=True)

    code: str = Field(description="Key-server error code (SP-EXXX).")
    message: str
    detail: dict[str, Any] = Field(default_factory=dict)
    resolution: str = ""


class ErrorResponse(BaseModel):
    """Top-level error response wrapper."""

    model_config = ConfigDict(strict=True)

    error: ErrorPayload


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------

RequestT = TypeVar("RequestT", bound=BaseModel)


def validate_content_type(content_type: str) -> None:
    """Accept ``application/json`` (any parameters), reject anything else.

    Raises
    ------
    UnsupportedMediaType
        If the base media type is not JSON.
    """
    base = content_type.split(";")[0].strip().lower()
    if base != JSON_CONTENT_TYPE:
        raise UnsupportedMediaType(
            f"Unsupported Content-Type: {content_type!r}",
            details={"received": content_type, "accepted": [JSON_CONTENT_TYPE]},
        )


def parse_request(model: type[RequestT], body: bytes | str) -> RequestT:
    """Decode a JSON request body into *model*.

    Validation messages never echo input values, so a rejected plaintext
    does not leak into error responses.

    Raises
    ------
    InvalidRequest
        If the body is not UTF-8, is empty, is not a JSON object, or
        fails validation.
    """
    if isinstance(body, bytes):
        try:
            raw = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidRequest("Request body is not valid UTF-8") from exc
    else:
        raw = body
    raw = raw.strip()
    if not raw:
        raise InvalidRequest("Request body is empty")
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidRequest(f"Invalid JSON: {exc.msg}") from exc
    if not isinstance(data, dict):
        raise InvalidRequest("Request body must be a JSON object")

    try:
        return model.model_validate(data)
    except ValidationError as exc:
        errors = [
            {
                "field": ".".join(str(part) for part in err["loc"]),
                "message": err["msg"],
            }
            for err in exc.errors(include_url=False, include_context=False, include_input=False)
        ]
        fields = ", ".join(e["field"] or "<body>" for e in errors)
        raise InvalidRequest(
            f"Invalid {model.__name__}: {fields}",
            details={"errors": errors},
        ) from exc


def decode_binary(value: str, field: str) -> bytes:
    """Decode a standard base64 field; raises :class:`InvalidRequest`."""
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InvalidRequest(
            f"{field} is not valid base64",
            details={"field": field},
        ) from exc


def encode_binary(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_text(value: str, encoding: Encoding, field: str) -> bytes:
    """Return the bytes of a text field under *encoding*."""
    if encoding == "base64":
        return decode_binary(value, field)
    try:
        return value.encode("utf-8")
    except UnicodeEncodeError as exc:
        raise InvalidRequest(
            f"{field} is not valid UTF-8 text",
            details={"field": field},
        ) from exc


def encode_text(data: bytes, encoding: Encoding) -> str:
    """Render plaintext bytes under *encoding*.

    Raises
    ------
    InvalidRequest
        If UTF-8 was requested but the plaintext is not valid UTF-8.
    """
    if encoding == "base64":
        return encode_binary(data)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise InvalidRequest(
            "Plaintext is not valid UTF-8; request encoding 'base64'",
            details={"encoding": encoding},
        ) from exc


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def serialize(document: BaseModel | dict[str, Any] | list[Any]) -> str:
    """Serialise a response model or plain document to compact JSON."""
    if isinstance(document, BaseModel):
        return document.model_dump_json(by_alias=True)
    return json.dumps(document, separators=(",", ":"), default=_json_default)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def format_error_response(error: SealPolicyError) -> ErrorResponse:
    """Wrap a :class:`SealPolicyError` in the wire error model."""
    return ErrorResponse(
        error=ErrorPayload(
            code=error.code,
            message=error.message,
            detail=error.details,
            resolution=error.resolution,
        )
    )


def format_error_dict(error: SealPolicyError) -> dict[str, Any]:
    """Return the compact error dict used in HTTP response bodies."""
    return error.to_dict()
