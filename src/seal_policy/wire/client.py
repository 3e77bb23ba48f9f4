"""Async HTTP client for a remote key server.

:class:`KeyServerClient` mirrors every :class:`~seal_policy.server.KeyServer`
operation over HTTP for application-layer callers.  Error bodies are
mapped back to the matching :class:`~seal_policy.core.errors.SealPolicyError`
subclass, so remote and in-process callers handle failures the same way.

Usage
-----
::

    async with KeyServerClient("http://localhost:2024") as client:
        created = await client.create_policy("quiz-42", whitelist=["0xAAA"])
        decision = await client.verify_access(created.policy_id, "0xaaa")
"""
from __future__ import annotations

import json
from collections.abc import Iterable, Sequence
from types import TracebackType
from typing import Any

import httpx

from seal_policy.core.errors import (
    AccessDenied,
    InternalError,
    SealPolicyError,
    error_from_code,
)
from seal_policy.core.types import AccessDecision, Policy, SealedPayload
from seal_policy.wire.messages import (
    JSON_CONTENT_TYPE,
    CreatePolicyResponse,
    DecryptResponse,
    EncryptResponse,
    PolicyListResponse,
    PolicyResponse,
    decode_binary,
    encode_binary,
)


class KeyServerClient:
    """Client for the key-server HTTP API.

    Parameters
    ----------
    base_url:
        The base URL of the key server (e.g. ``http://localhost:2024``).
    timeout:
        Request timeout in seconds (default: 30).
    transport:
        Optional ``httpx`` transport, e.g. ``httpx.MockTransport`` or
        ``httpx.ASGITransport`` in tests.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": JSON_CONTENT_TYPE},
        )

    async def __aenter__(self) -> KeyServerClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Policy operations
    # ------------------------------------------------------------------

    async def create_policy(
        self,
        resource_id: str,
        *,
        time_lock_hours: float = 0,
        privacy_enabled: bool = False,
        multi_sig_enabled: bool = False,
        whitelist: Iterable[str] = (),
        threshold: int | None = None,
        policy_id: str | None = None,
        payload: bytes | None = None,
    ) -> CreatePolicyResponse:
        """Create a policy; *payload* is sealed with it when given."""
        config: dict[str, Any] = {
            "timeLockDuration": time_lock_hours,
            "privacyEnabled": privacy_enabled,
            "multiSigEnabled": multi_sig_enabled,
            "whitelistAddresses": list(whitelist),
        }
        if threshold is not None:
            config["threshold"] = threshold
        body: dict[str, Any] = {"resourceId": resource_id, "config": config}
        if policy_id is not None:
            body["policyId"] = policy_id
        if payload is not None:
            body["payload"] = encode_binary(payload)
            body["encoding"] = "base64"
        text = await self._request("POST", "/api/v1/policies", body)
        return CreatePolicyResponse.model_validate_json(text)

    async def get_policy(self, policy_id: str) -> Policy:
        text = await self._request("GET", f"/api/v1/policies/{policy_id}")
        return PolicyResponse.model_validate_json(text).policy

    async def list_policies(self) -> list[Policy]:
        text = await self._request("GET", "/api/v1/policies")
        return PolicyListResponse.model_validate_json(text).policies

    # ------------------------------------------------------------------
    # Access and crypto operations
    # ------------------------------------------------------------------

    async def verify_access(
        self,
        policy_id: str,
        requester_address: str,
        approvals: Sequence[str] = (),
    ) -> AccessDecision:
        body = {
            "policyId": policy_id,
            "requesterAddress": requester_address,
            "approvals": list(approvals),
        }
        text = await self._request("POST", "/api/v1/verify", body)
        return AccessDecision.model_validate_json(text)

    async def encrypt(self, policy_id: str, plaintext: bytes) -> SealedPayload:
        body = {
            "policyId": policy_id,
            "plaintext": encode_binary(plaintext),
            "encoding": "base64",
        }
        text = await self._request("POST", "/api/v1/encrypt", body)
        response = EncryptResponse.model_validate_json(text)
        return SealedPayload(
            policy_id=response.policy_id,
            ciphertext=decode_binary(response.ciphertext, "ciphertext"),
            key_ref=response.key_ref,
        )

    async def decrypt(
        self,
        policy_id: str,
        ciphertext: bytes,
        requester_address: str,
        approvals: Sequence[str] = (),
    ) -> bytes:
        body = {
            "policyId": policy_id,
            "ciphertext": encode_binary(ciphertext),
            "requesterAddress": requester_address,
            "approvals": list(approvals),
            "encoding": "base64",
        }
        text = await self._request("POST", "/api/v1/decrypt", body)
        response = DecryptResponse.model_validate_json(text)
        return decode_binary(response.plaintext, "plaintext")

    # ------------------------------------------------------------------
    # Operational endpoints
    # ------------------------------------------------------------------

    async def health(self) -> dict[str, Any]:
        data: dict[str, Any] = json.loads(await self._request("GET", "/health"))
        return data

    async def key_servers(self) -> list[dict[str, Any]]:
        data = json.loads(await self._request("GET", "/api/v1/key-servers"))
        servers: list[dict[str, Any]] = data["keyServers"]
        return servers

    async def metrics(self) -> dict[str, Any]:
        data: dict[str, Any] = json.loads(await self._request("GET", "/api/v1/metrics"))
        return data

    async def prometheus_metrics(self) -> str:
        return await self._request("GET", "/metrics")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
    ) -> str:
        response = await self._client.request(method, path, json=body)
        if response.is_success:
            return response.text
        raise _error_from_response(response)


def _error_from_response(response: httpx.Response) -> SealPolicyError:
    """Rebuild the server-side exception from an error response."""
    try:
        payload = response.json()["error"]
        code = payload["code"]
    except (json.JSONDecodeError, ValueError, KeyError, TypeError):
        return InternalError(
            f"Unexpected HTTP {response.status_code} response from key server",
            details={"status_code": response.status_code},
        )

    message = payload.get("message")
    detail = payload.get("detail") or {}
    if code == AccessDenied.code:
        decision = AccessDecision.model_validate_json(json.dumps(detail))
        return AccessDenied(decision, message)
    return error_from_code(code, message, detail)
