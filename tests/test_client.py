"""Tests for KeyServerClient against the in-process HTTP handler.

``httpx.MockTransport`` bridges each client request to
:func:`create_http_handler`, so requests and responses cross the real
wire format without opening a socket.
"""
from __future__ import annotations

import base64
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import pytest

from seal_policy.core.config import KeyServerConfig
from seal_policy.core.errors import (
    AccessDenied,
    DecryptionError,
    DuplicatePolicyId,
    InternalError,
    InvalidRequest,
    PolicyNotFound,
)
from seal_policy.core.types import CheckName, CheckStatus
from seal_policy.server import KeyServer
from seal_policy.wire.client import KeyServerClient
from seal_policy.wire.http import create_http_handler

NOW = datetime(2026, 6, 1, 10, 0, tzinfo=UTC)


def _bridge(server: KeyServer) -> httpx.MockTransport:
    handler = create_http_handler(server)

    async def handle(request: httpx.Request) -> httpx.Response:
        status, headers, body = await handler(
            request.method, request.url.path, dict(request.headers), request.content
        )
        return httpx.Response(status, headers=headers, text=body)

    return httpx.MockTransport(handle)


@pytest.fixture
def server() -> KeyServer:
    config = KeyServerConfig(
        server_id="seal-client-test",
        master_secret=b"client-test-master-secret-32byte",
        key_salt="client-test-salt",
    )
    return KeyServer(config, clock=lambda: NOW)


@pytest.fixture
async def client(server: KeyServer) -> Any:
    async with KeyServerClient("http://seal.test/", transport=_bridge(server)) as c:
        yield c


class TestPolicies:
    @pytest.mark.asyncio
    async def test_create_and_get(self, client: KeyServerClient) -> None:
        created = await client.create_policy(
            "quiz-1", time_lock_hours=2, whitelist=["0xAAA"], threshold=3
        )
        assert created.policy.resource_id == "quiz-1"
        assert created.policy.whitelist == ("0xaaa",)
        assert created.policy.threshold == 3
        assert created.policy.time_lock_until == NOW + timedelta(hours=2)
        assert created.sealed_payload is None

        fetched = await client.get_policy(created.policy_id)
        assert fetched == created.policy
        assert [p.policy_id for p in await client.list_policies()] == [created.policy_id]

    @pytest.mark.asyncio
    async def test_create_with_binary_payload(self, client: KeyServerClient) -> None:
        payload = b"\x00\xffbinary answers"
        created = await client.create_policy("quiz-1", privacy_enabled=True, payload=payload)
        assert created.sealed_payload is not None

        ciphertext = base64.b64decode(created.sealed_payload.ciphertext)
        assert await client.decrypt(created.policy_id, ciphertext, "0xabc") == payload

    @pytest.mark.asyncio
    async def test_errors_mapped(self, client: KeyServerClient) -> None:
        with pytest.raises(PolicyNotFound):
            await client.get_policy("seal_missing")

        await client.create_policy("quiz-1", policy_id="seal_dup")
        with pytest.raises(DuplicatePolicyId) as exc_info:
            await client.create_policy("quiz-2", policy_id="seal_dup")
        assert exc_info.value.http_status == 409

        with pytest.raises(InvalidRequest):
            await client.create_policy("")


class TestAccess:
    @pytest.mark.asyncio
    async def test_verify(self, client: KeyServerClient) -> None:
        created = await client.create_policy("quiz-1", whitelist=["0xAAA"])

        allowed = await client.verify_access(created.policy_id, "0xAAA")
        assert allowed.allowed is True

        denied = await client.verify_access(created.policy_id, "0xbbb")
        assert denied.allowed is False
        result = denied.check(CheckName.WHITELIST)
        assert result is not None and result.status is CheckStatus.FAILED

    @pytest.mark.asyncio
    async def test_verify_unknown(self, client: KeyServerClient) -> None:
        with pytest.raises(PolicyNotFound) as exc_info:
            await client.verify_access("seal_missing", "0xabc")
        assert exc_info.value.details["reason"] == "Policy not found"

    @pytest.mark.asyncio
    async def test_round_trip(self, client: KeyServerClient) -> None:
        created = await client.create_policy("quiz-1")
        sealed = await client.encrypt(created.policy_id, b"answer: 42")
        assert sealed.key_ref == created.policy.derived_key_ref
        assert await client.decrypt(created.policy_id, sealed.ciphertext, "0xabc") == b"answer: 42"

    @pytest.mark.asyncio
    async def test_access_denied_carries_decision(self, client: KeyServerClient) -> None:
        created = await client.create_policy("quiz-1", time_lock_hours=1)
        sealed = await client.encrypt(created.policy_id, b"later")

        with pytest.raises(AccessDenied) as exc_info:
            await client.decrypt(created.policy_id, sealed.ciphertext, "0xabc")
        decision = exc_info.value.decision
        assert decision.allowed is False
        time_lock = decision.check(CheckName.TIME_LOCK)
        assert time_lock is not None and time_lock.status is CheckStatus.FAILED
        assert exc_info.value.message == decision.reason

    @pytest.mark.asyncio
    async def test_tampered(self, client: KeyServerClient) -> None:
        created = await client.create_policy("quiz-1")
        sealed = await client.encrypt(created.policy_id, b"payload")
        with pytest.raises(DecryptionError):
            await client.decrypt(created.policy_id, sealed.ciphertext[:-2], "0xabc")


class TestOperational:
    @pytest.mark.asyncio
    async def test_health_and_listing(self, client: KeyServerClient) -> None:
        health = await client.health()
        assert health["status"] == "healthy"
        [entry] = await client.key_servers()
        assert entry["id"] == "seal-client-test"

    @pytest.mark.asyncio
    async def test_metrics(self, client: KeyServerClient) -> None:
        await client.create_policy("quiz-1")
        metrics = await client.metrics()
        assert metrics["policies"]["total"] == 1
        assert "seal_requests_total" in await client.prometheus_metrics()

    @pytest.mark.asyncio
    async def test_non_json_error(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(502, text="Bad Gateway"))
        async with KeyServerClient("http://seal.test", transport=transport) as client:
            with pytest.raises(InternalError) as exc_info:
                await client.health()
        assert exc_info.value.details == {"status_code": 502}
