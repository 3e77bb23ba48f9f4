"""HTTP binding for the key server.

This module provides:

* **create_http_handler** -- factory that creates an async request
  handler routing the key-server API onto a :class:`KeyServer`.  The
  handler is framework-free: it takes ``(method, path, headers, body)``
  and returns ``(status, headers, body)``, so it can back the ASGI
  adapter, a test harness, or any custom HTTP server.

Routes
------
::

    POST /api/v1/policies             create policy (201)
    GET  /api/v1/policies             list policies
    GET  /api/v1/policies/{policyId}  get policy
    POST /api/v1/verify               verify access
    POST /api/v1/encrypt              encrypt
    POST /api/v1/decrypt              decrypt
    GET  /api/v1/key-servers          key-server listing
    GET  /api/v1/metrics              JSON metrics snapshot
    GET  /health                      health
    GET  /metrics                     Prometheus metrics
"""
from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable, Coroutine, Mapping
from typing import TYPE_CHECKING, Any
from urllib.parse import unquote

from seal_policy.core.errors import (
    InternalError,
    MethodNotAllowed,
    PayloadTooLarge,
    RouteNotFound,
    SealPolicyError,
)
from seal_policy.metrics import PROMETHEUS_CONTENT_TYPE
from seal_policy.wire.messages import (
    JSON_CONTENT_TYPE,
    CreatePolicyRequest,
    CreatePolicyResponse,
    DecryptRequest,
    DecryptResponse,
    EncryptRequest,
    EncryptResponse,
    PolicyListResponse,
    PolicyResponse,
    SealedPayloadResponse,
    VerifyRequest,
    decode_binary,
    decode_text,
    encode_binary,
    encode_text,
    format_error_response,
    parse_request,
    serialize,
    validate_content_type,
)

if TYPE_CHECKING:
    from seal_policy.server import KeyServer

logger = logging.getLogger(__name__)

# Type alias for an async handler function.
HTTPHandler = Callable[
    [str, str, Mapping[str, str], bytes],
    Coroutine[Any, Any, tuple[int, dict[str, str], str]],
]

_Response = tuple[int, dict[str, str], str]
_Route = Callable[[Mapping[str, str], bytes], Awaitable[_Response]]

_POLICY_PATH = re.compile(r"^/api/v1/policies/(?P<policy_id>[^/]+)$")

_BODY_OVERHEAD_BYTES = 64 * 1024


def _json(status: int, document: Any) -> _Response:
    return status, {"Content-Type": JSON_CONTENT_TYPE}, serialize(document)


def create_http_handler(server: KeyServer) -> HTTPHandler:
    """Create an async HTTP request handler for a :class:`KeyServer`.

    Every :class:`~seal_policy.core.errors.SealPolicyError` becomes its
    ``http_status`` with the ``{"error": {...}}`` body.  Any other
    exception becomes a 500 carrying only the exception type name.

    Parameters
    ----------
    server:
        The :class:`KeyServer` instance to route requests to.

    Returns
    -------
    HTTPHandler
        An async function with signature:
        ``(method, path, headers, body) -> (status_code, response_headers, response_body)``
    """
    # Ciphertext travels as base64 inside JSON, so the body limit is
    # looser than the payload limit the gateway enforces.
    max_body_bytes = server.config.max_payload_bytes * 2 + _BODY_OVERHEAD_BYTES

    # -- Route implementations ------------------------------------------

    async def create_policy(headers: Mapping[str, str], body: bytes) -> _Response:
        request = parse_request(CreatePolicyRequest, body)
        cfg = request.config
        payload = (
            decode_text(request.payload, request.encoding, "payload")
            if request.payload is not None
            else None
        )
        # Reject an oversized payload before the policy and its key exist.
        limit = server.config.max_payload_bytes
        if payload is not None and len(payload) > limit:
            raise PayloadTooLarge(
                f"Payload of {len(payload)} bytes exceeds the {limit}-byte limit",
                details={"size": len(payload), "limit": limit},
            )
        policy = await server.create_policy(
            request.resource_id,
            time_lock_hours=cfg.time_lock_duration,
            privacy_enabled=cfg.privacy_enabled,
            multi_sig_enabled=cfg.multi_sig_enabled,
            whitelist=cfg.whitelist_addresses,
            threshold=cfg.threshold,
            policy_id=request.policy_id,
        )
        sealed = None
        if payload is not None:
            result = await server.encrypt(policy.policy_id, payload)
            sealed = SealedPayloadResponse(
                ciphertext=encode_binary(result.ciphertext),
                key_ref=result.key_ref,
            )
        return _json(
            201,
            CreatePolicyResponse(
                policy_id=policy.policy_id, policy=policy, sealed_payload=sealed
            ),
        )

    async def list_policies(headers: Mapping[str, str], body: bytes) -> _Response:
        policies = await server.list_policies()
        return _json(200, PolicyListResponse(policies=policies, count=len(policies)))

    async def verify(headers: Mapping[str, str], body: bytes) -> _Response:
        request = parse_request(VerifyRequest, body)
        decision = await server.verify_access(
            request.policy_id, request.requester_address, request.approvals
        )
        return _json(200, decision)

    async def encrypt(headers: Mapping[str, str], body: bytes) -> _Response:
        request = parse_request(EncryptRequest, body)
        plaintext = decode_text(request.plaintext, request.encoding, "plaintext")
        sealed = await server.encrypt(request.policy_id, plaintext)
        return _json(
            200,
            EncryptResponse(
                policy_id=sealed.policy_id,
                ciphertext=encode_binary(sealed.ciphertext),
                key_ref=sealed.key_ref,
            ),
        )

    async def decrypt(headers: Mapping[str, str], body: bytes) -> _Response:
        request = parse_request(DecryptRequest, body)
        ciphertext = decode_binary(request.ciphertext, "ciphertext")
        plaintext = await server.decrypt(
            request.policy_id, ciphertext, request.requester_address, request.approvals
        )
        return _json(
            200,
            DecryptResponse(
                policy_id=request.policy_id,
                plaintext=encode_text(plaintext, request.encoding),
                encoding=request.encoding,
            ),
        )

    async def key_servers(headers: Mapping[str, str], body: bytes) -> _Response:
        servers = await server.key_servers()
        return _json(200, {"keyServers": servers, "count": len(servers)})

    async def metrics_json(headers: Mapping[str, str], body: bytes) -> _Response:
        return _json(200, await server.metrics_snapshot())

    async def health(headers: Mapping[str, str], body: bytes) -> _Response:
        return _json(200, await server.health())

    async def prometheus(headers: Mapping[str, str], body: bytes) -> _Response:
        text = await server.prometheus_metrics()
        return 200, {"Content-Type": PROMETHEUS_CONTENT_TYPE}, text.decode("utf-8")

    routes: dict[str, dict[str, _Route]] = {
        "/api/v1/policies": {"POST": create_policy, "GET": list_policies},
        "/api/v1/verify": {"POST": verify},
        "/api/v1/encrypt": {"POST": encrypt},
        "/api/v1/decrypt": {"POST": decrypt},
        "/api/v1/key-servers": {"GET": key_servers},
        "/api/v1/metrics": {"GET": metrics_json},
        "/health": {"GET": health},
        "/metrics": {"GET": prometheus},
    }

    def resolve(method: str, path: str) -> _Route:
        match = _POLICY_PATH.match(path)
        if match is not None:
            if method != "GET":
                raise MethodNotAllowed(
                    f"{method} is not allowed on {path}",
                    details={"allowed": ["GET"]},
                )
            policy_id = unquote(match.group("policy_id"))

            async def get_policy(headers: Mapping[str, str], body: bytes) -> _Response:
                policy = await server.get_policy(policy_id)
                return _json(200, PolicyResponse(policy=policy))

            return get_policy

        methods = routes.get(path)
        if methods is None:
            raise RouteNotFound(f"No route for {path}", details={"path": path})
        route = methods.get(method)
        if route is None:
            raise MethodNotAllowed(
                f"{method} is not allowed on {path}",
                details={"allowed": sorted(methods)},
            )
        return route

    # -- Handler ----------------------------------------------------------

    async def handler(
        method: str,
        path: str,
        headers: Mapping[str, str],
        body: bytes,
    ) -> tuple[int, dict[str, str], str]:
        """Process one HTTP request to the key-server API."""
        method = method.upper()
        path = path.split("?", 1)[0]
        if len(path) > 1:
            path = path.rstrip("/")
        lowered = {k.lower(): v for k, v in headers.items()}

        try:
            route = resolve(method, path)
            if method == "POST":
                content_type = lowered.get("content-type", "")
                if content_type:
                    validate_content_type(content_type)
                if len(body) > max_body_bytes:
                    raise PayloadTooLarge(
                        f"Request body of {len(body)} bytes exceeds the "
                        f"{max_body_bytes}-byte limit",
                        details={"size": len(body), "limit": max_body_bytes},
                    )
            return await route(lowered, body)

        except SealPolicyError as exc:
            logger.debug("%s %s -> %d %s", method, path, exc.http_status, exc.code)
            return _json(exc.http_status, format_error_response(exc))

        except Exception as exc:
            logger.exception("Unhandled error serving %s %s", method, path)
            fallback = InternalError(
                f"Internal server error: {type(exc).__name__}",
                details={"exception_type": type(exc).__name__},
            )
            return _json(500, format_error_response(fallback))

    return handler
