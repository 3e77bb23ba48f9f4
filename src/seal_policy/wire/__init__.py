"""Key-server wire subpackage -- schemas, HTTP binding and client.

This subpackage provides:

* **Messages** -- per-operation request/response schemas, error
  formatting and encoding helpers (:mod:`~seal_policy.wire.messages`).
* **HTTP binding** -- the framework-free request handler
  (:mod:`~seal_policy.wire.http`).
* **ASGI adapter** -- serves the handler from any ASGI server
  (:mod:`~seal_policy.wire.asgi`).
* **Client** -- async ``httpx`` client for remote key servers
  (:mod:`~seal_policy.wire.client`).
"""
from __future__ import annotations

# -- ASGI adapter ------------------------------------------------------------
from seal_policy.wire.asgi import create_asgi_app

# -- Client ------------------------------------------------------------------
from seal_policy.wire.client import KeyServerClient

# -- HTTP binding ------------------------------------------------------------
from seal_policy.wire.http import HTTPHandler, create_http_handler

# -- Messages ----------------------------------------------------------------
from seal_policy.wire.messages import (
    JSON_CONTENT_TYPE,
    CreatePolicyRequest,
    CreatePolicyResponse,
    DecryptRequest,
    DecryptResponse,
    EncryptRequest,
    EncryptResponse,
    ErrorPayload,
    ErrorResponse,
    PolicyConfigRequest,
    PolicyListResponse,
    PolicyResponse,
    VerifyRequest,
    format_error_dict,
    format_error_response,
    parse_request,
    validate_content_type,
)

__all__ = [
    # Messages
    "JSON_CONTENT_TYPE",
    "PolicyConfigRequest",
    "CreatePolicyRequest",
    "VerifyRequest",
    "EncryptRequest",
    "DecryptRequest",
    "CreatePolicyResponse",
    "PolicyResponse",
    "PolicyListResponse",
    "EncryptResponse",
    "DecryptResponse",
    "ErrorPayload",
    "ErrorResponse",
    "format_error_response",
    "format_error_dict",
    "parse_request",
    "validate_content_type",
    # HTTP
    "HTTPHandler",
    "create_http_handler",
    # ASGI
    "create_asgi_app",
    # Client
    "KeyServerClient",
]
