"""Tests for the access subpackage.

This module covers:

1. **Time lock** -- unset, before, at and after the unlock instant.
2. **Whitelist** -- empty, case-insensitive membership, rejected and
   malformed addresses.
3. **Multi-signature** -- disabled, no verifier, no approvals, threshold
   met and unmet, verifier timeout and failure (deny by default).
4. **Decision shape** -- every check reported, reason selection,
   missing policy short-circuit.
5. **JWTApprovalVerifier** -- ES256 and EdDSA approvals, distinct
   signers, unknown signers, expiry, policy and requester binding.
6. **RemoteApprovalVerifier** -- success, HTTP errors, bad bodies.
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Sequence
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import ec, ed25519

from seal_policy.access.evaluator import ACCESS_GRANTED, POLICY_NOT_FOUND, AccessEvaluator
from seal_policy.access.multisig import (
    ApprovalTally,
    JWTApprovalVerifier,
    MultiSigVerifier,
    RemoteApprovalVerifier,
    SignerRegistry,
)
from seal_policy.core.errors import SignerUnavailable
from seal_policy.core.types import CheckName, CheckStatus, Policy, Requester

NOW = datetime(2026, 5, 1, 8, 0, tzinfo=UTC)
UNLOCK = NOW + timedelta(hours=1)


def _make_policy(**overrides: object) -> Policy:
    values: dict[str, object] = {
        "policy_id": "seal_access",
        "resource_id": "quiz-7",
        "derived_key_ref": "kref_aabbccddeeff00112233445566778899",
        "created_at": NOW,
    }
    values.update(overrides)
    return Policy(**values)  # type: ignore[arg-type]


def _evaluator(
    now: datetime = NOW,
    verifier: MultiSigVerifier | None = None,
    timeout: float = 30.0,
) -> AccessEvaluator:
    return AccessEvaluator(verifier, clock=lambda: now, signer_timeout=timeout)


class _StaticVerifier:
    """Reports a fixed set of approving signers."""

    def __init__(self, *signers: str) -> None:
        self.signers = frozenset(signers)
        self.calls = 0

    async def count_approvals(
        self, policy: Policy, requester: Requester, approvals: Sequence[str]
    ) -> ApprovalTally:
        self.calls += 1
        return ApprovalTally(approved_signers=self.signers)


class _SlowVerifier:
    async def count_approvals(
        self, policy: Policy, requester: Requester, approvals: Sequence[str]
    ) -> ApprovalTally:
        await asyncio.sleep(5)
        return ApprovalTally(approved_signers=frozenset({"late"}))


class _BrokenVerifier:
    async def count_approvals(
        self, policy: Policy, requester: Requester, approvals: Sequence[str]
    ) -> ApprovalTally:
        raise SignerUnavailable("indexer offline")


class _FaultyVerifier:
    async def count_approvals(
        self, policy: Policy, requester: Requester, approvals: Sequence[str]
    ) -> ApprovalTally:
        raise TypeError("unsupported operand")


# ===================================================================
# Time lock
# ===================================================================

class TestTimeLock:
    @pytest.mark.asyncio
    async def test_no_time_lock_passes(self) -> None:
        decision = await _evaluator().evaluate(_make_policy(), "0xabc")
        assert decision.check(CheckName.TIME_LOCK).passed

    @pytest.mark.asyncio
    async def test_before_unlock_fails_with_timestamp(self) -> None:
        policy = _make_policy(time_lock_until=UNLOCK)
        decision = await _evaluator(NOW).evaluate(policy, "0xabc")
        check = decision.check(CheckName.TIME_LOCK)
        assert check.status is CheckStatus.FAILED
        assert UNLOCK.isoformat() in check.detail
        assert decision.allowed is False
        assert "time-locked" in decision.reason

    @pytest.mark.asyncio
    async def test_at_unlock_passes(self) -> None:
        policy = _make_policy(time_lock_until=UNLOCK)
        decision = await _evaluator(UNLOCK).evaluate(policy, "0xabc")
        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_after_unlock_passes(self) -> None:
        policy = _make_policy(time_lock_until=UNLOCK)
        decision = await _evaluator(UNLOCK + timedelta(days=3)).evaluate(policy, "0xabc")
        assert decision.check(CheckName.TIME_LOCK).passed


# ===================================================================
# Whitelist
# ===================================================================

class TestWhitelist:
    @pytest.mark.asyncio
    async def test_empty_whitelist_allows_anyone(self) -> None:
        evaluator = _evaluator()
        for address in ("0xabc", "", "anything"):
            decision = await evaluator.evaluate(_make_policy(), address)
            assert decision.check(CheckName.WHITELIST).passed

    @pytest.mark.asyncio
    async def test_member_passes_case_insensitively(self) -> None:
        policy = _make_policy(whitelist=["0xAAA"])
        for address in ("0xaaa", "0xAAA", " 0xAaA "):
            decision = await _evaluator().evaluate(policy, address)
            assert decision.allowed, address

    @pytest.mark.asyncio
    async def test_non_member_fails_naming_address(self) -> None:
        policy = _make_policy(whitelist=["0xAAA"])
        decision = await _evaluator().evaluate(policy, "0xBBB")
        assert decision.allowed is False
        assert decision.reason == "Address 0xBBB is not whitelisted"

    @pytest.mark.asyncio
    async def test_empty_address_is_not_whitelisted(self) -> None:
        policy = _make_policy(whitelist=["0xAAA"])
        decision = await _evaluator().evaluate(policy, "")
        assert decision.allowed is False
        assert "<empty>" in decision.reason

    @pytest.mark.asyncio
    async def test_malformed_requester_does_not_raise(self) -> None:
        policy = _make_policy(whitelist=["0xAAA"])
        evaluator = _evaluator()
        for requester in (None, {"address": 42}, {}, Requester()):
            decision = await evaluator.evaluate(policy, requester)  # type: ignore[arg-type]
            assert decision.allowed is False

    @pytest.mark.asyncio
    async def test_mapping_requester(self) -> None:
        policy = _make_policy(whitelist=["0xAAA"])
        decision = await _evaluator().evaluate(policy, {"address": "0xaaa"})
        assert decision.allowed is True


# ===================================================================
# Multi-signature
# ===================================================================

class TestMultiSig:
    @pytest.mark.asyncio
    async def test_disabled_passes(self) -> None:
        decision = await _evaluator().evaluate(_make_policy(), "0xabc")
        check = decision.check(CheckName.MULTI_SIG)
        assert check.passed
        assert check.detail == "Multi-sig not enabled"

    @pytest.mark.asyncio
    async def test_no_verifier_denies(self) -> None:
        policy = _make_policy(multi_sig_enabled=True)
        decision = await _evaluator().evaluate(policy, "0xabc", ["token"])
        assert decision.allowed is False
        assert decision.check(CheckName.MULTI_SIG).status is CheckStatus.UNVERIFIABLE

    @pytest.mark.asyncio
    async def test_no_approvals_denies_without_calling_verifier(self) -> None:
        verifier = _StaticVerifier("a", "b")
        policy = _make_policy(multi_sig_enabled=True)
        decision = await _evaluator(verifier=verifier).evaluate(policy, "0xabc")
        assert decision.allowed is False
        assert decision.check(CheckName.MULTI_SIG).status is CheckStatus.UNVERIFIABLE
        assert verifier.calls == 0

    @pytest.mark.asyncio
    async def test_threshold_met(self) -> None:
        policy = _make_policy(multi_sig_enabled=True, threshold=2)
        evaluator = _evaluator(verifier=_StaticVerifier("a", "b"))
        decision = await evaluator.evaluate(policy, "0xabc", ["t1", "t2"])
        assert decision.allowed is True
        assert decision.check(CheckName.MULTI_SIG).detail == "2 of 2 required signers approved"

    @pytest.mark.asyncio
    async def test_threshold_not_met(self) -> None:
        policy = _make_policy(multi_sig_enabled=True, threshold=3)
        evaluator = _evaluator(verifier=_StaticVerifier("a", "b"))
        decision = await evaluator.evaluate(policy, "0xabc", ["t1", "t2"])
        check = decision.check(CheckName.MULTI_SIG)
        assert check.status is CheckStatus.FAILED
        assert "2 of 3" in check.detail

    @pytest.mark.asyncio
    async def test_threshold_ignored_when_disabled(self) -> None:
        policy = _make_policy(multi_sig_enabled=False, threshold=5)
        assert (await _evaluator().evaluate(policy, "0xabc")).allowed is True

    @pytest.mark.asyncio
    async def test_verifier_timeout_denies(self) -> None:
        policy = _make_policy(multi_sig_enabled=True, threshold=1)
        evaluator = _evaluator(verifier=_SlowVerifier(), timeout=0.05)
        decision = await evaluator.evaluate(policy, "0xabc", ["t1"])
        check = decision.check(CheckName.MULTI_SIG)
        assert check.status is CheckStatus.UNVERIFIABLE
        assert "timed out" in check.detail
        assert decision.allowed is False

    @pytest.mark.asyncio
    async def test_verifier_failure_denies(self) -> None:
        policy = _make_policy(multi_sig_enabled=True, threshold=1)
        evaluator = _evaluator(verifier=_BrokenVerifier())
        decision = await evaluator.evaluate(policy, "0xabc", ["t1"])
        check = decision.check(CheckName.MULTI_SIG)
        assert check.status is CheckStatus.UNVERIFIABLE
        assert "SignerUnavailable" in check.detail

    @pytest.mark.asyncio
    async def test_verifier_bug_denies_and_is_logged(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        policy = _make_policy(multi_sig_enabled=True, threshold=1)
        evaluator = _evaluator(verifier=_FaultyVerifier())
        with caplog.at_level(logging.ERROR, logger="seal_policy.access.evaluator"):
            decision = await evaluator.evaluate(policy, "0xabc", ["t1"])
        assert decision.allowed is False
        assert decision.check(CheckName.MULTI_SIG).status is CheckStatus.UNVERIFIABLE
        [record] = [r for r in caplog.records if r.levelno == logging.ERROR]
        assert "_FaultyVerifier" in record.getMessage()
        assert record.exc_info is not None
        assert record.exc_info[0] is TypeError


# ===================================================================
# Decision shape
# ===================================================================

class TestDecision:
    @pytest.mark.asyncio
    async def test_all_checks_reported_in_order(self) -> None:
        policy = _make_policy(time_lock_until=UNLOCK, whitelist=["0xAAA"])
        decision = await _evaluator().evaluate(policy, "0xbbb")
        assert [c.check for c in decision.checks] == [
            CheckName.TIME_LOCK,
            CheckName.WHITELIST,
            CheckName.MULTI_SIG,
        ]
        assert [c.check for c in decision.failed_checks] == [
            CheckName.TIME_LOCK,
            CheckName.WHITELIST,
        ]

    @pytest.mark.asyncio
    async def test_reason_is_first_failure(self) -> None:
        policy = _make_policy(time_lock_until=UNLOCK, whitelist=["0xAAA"])
        decision = await _evaluator().evaluate(policy, "0xbbb")
        assert decision.reason == decision.check(CheckName.TIME_LOCK).detail

    @pytest.mark.asyncio
    async def test_granted(self) -> None:
        decision = await _evaluator().evaluate(_make_policy(), "0xabc")
        assert decision.allowed is True
        assert decision.reason == ACCESS_GRANTED
        assert decision.policy_id == "seal_access"
        assert decision.evaluated_at == NOW

    @pytest.mark.asyncio
    async def test_missing_policy_short_circuits(self) -> None:
        verifier = _StaticVerifier("a")
        decision = await _evaluator(verifier=verifier).evaluate(None, "0xabc", ["t"])
        assert decision.allowed is False
        assert decision.reason == POLICY_NOT_FOUND
        assert decision.checks == []
        assert verifier.calls == 0


# ===================================================================
# JWTApprovalVerifier
# ===================================================================

@pytest.fixture
def signers() -> dict[str, ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey]:
    return {
        "signer-a": ec.generate_private_key(ec.SECP256R1()),
        "signer-b": ec.generate_private_key(ec.SECP256R1()),
        "signer-c": ed25519.Ed25519PrivateKey.generate(),
    }


@pytest.fixture
def registry(
    signers: dict[str, ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey],
) -> SignerRegistry:
    reg = SignerRegistry()
    for signer_id, key in signers.items():
        reg.register(signer_id, key.public_key())
    return reg


class TestJWTApprovalVerifier:
    def test_satisfies_protocol(self, registry: SignerRegistry) -> None:
        assert isinstance(JWTApprovalVerifier(registry), MultiSigVerifier)

    def test_registry_rejects_duplicates(
        self, registry: SignerRegistry, signers: dict
    ) -> None:
        with pytest.raises(ValueError):
            registry.register("signer-a", signers["signer-a"].public_key())
        assert "signer-a" in registry
        assert len(registry) == 3

    def test_unsupported_algorithm(self, signers: dict) -> None:
        with pytest.raises(ValueError):
            JWTApprovalVerifier.create_approval(
                "signer-a", signers["signer-a"], "seal_access", algorithm="HS256"
            )

    @pytest.mark.asyncio
    async def test_counts_distinct_signers(
        self, registry: SignerRegistry, signers: dict
    ) -> None:
        tokens = [
            JWTApprovalVerifier.create_approval("signer-a", signers["signer-a"], "seal_access"),
            JWTApprovalVerifier.create_approval("signer-a", signers["signer-a"], "seal_access"),
            JWTApprovalVerifier.create_approval("signer-b", signers["signer-b"], "seal_access"),
            JWTApprovalVerifier.create_approval(
                "signer-c", signers["signer-c"], "seal_access", algorithm="EdDSA"
            ),
        ]
        tally = await JWTApprovalVerifier(registry).count_approvals(
            _make_policy(), Requester(address="0xabc"), tokens
        )
        assert tally.approved_signers == frozenset({"signer-a", "signer-b", "signer-c"})
        assert tally.count == 3

    @pytest.mark.asyncio
    async def test_rejects_unknown_signer(self, registry: SignerRegistry) -> None:
        outsider = ec.generate_private_key(ec.SECP256R1())
        token = JWTApprovalVerifier.create_approval("mallory", outsider, "seal_access")
        tally = await JWTApprovalVerifier(registry).count_approvals(
            _make_policy(), Requester(), [token]
        )
        assert tally.count == 0
        assert "unknown signer" in tally.rejected["approval[0]"]

    @pytest.mark.asyncio
    async def test_rejects_forged_signature(self, registry: SignerRegistry) -> None:
        forger = ec.generate_private_key(ec.SECP256R1())
        token = JWTApprovalVerifier.create_approval("signer-a", forger, "seal_access")
        tally = await JWTApprovalVerifier(registry).count_approvals(
            _make_policy(), Requester(), [token]
        )
        assert tally.count == 0

    @pytest.mark.asyncio
    async def test_rejects_expired(self, registry: SignerRegistry, signers: dict) -> None:
        token = JWTApprovalVerifier.create_approval(
            "signer-a", signers["signer-a"], "seal_access", ttl=timedelta(seconds=-60)
        )
        tally = await JWTApprovalVerifier(registry).count_approvals(
            _make_policy(), Requester(), [token]
        )
        assert tally.count == 0
        assert "expired" in tally.rejected["approval[0]"]

    @pytest.mark.asyncio
    async def test_rejects_other_policy(self, registry: SignerRegistry, signers: dict) -> None:
        token = JWTApprovalVerifier.create_approval(
            "signer-a", signers["signer-a"], "seal_other"
        )
        tally = await JWTApprovalVerifier(registry).count_approvals(
            _make_policy(), Requester(), [token]
        )
        assert tally.count == 0
        assert "another policy" in tally.rejected["approval[0]"]

    @pytest.mark.asyncio
    async def test_requester_binding(self, registry: SignerRegistry, signers: dict) -> None:
        token = JWTApprovalVerifier.create_approval(
            "signer-a", signers["signer-a"], "seal_access", requester_address="0xAAA"
        )
        verifier = JWTApprovalVerifier(registry)
        bound = await verifier.count_approvals(
            _make_policy(), Requester(address="0xaaa"), [token]
        )
        other = await verifier.count_approvals(
            _make_policy(), Requester(address="0xbbb"), [token]
        )
        assert bound.count == 1
        assert other.count == 0

    @pytest.mark.asyncio
    async def test_malformed_token(self, registry: SignerRegistry) -> None:
        tally = await JWTApprovalVerifier(registry).count_approvals(
            _make_policy(), Requester(), ["not-a-jwt"]
        )
        assert tally.count == 0
        assert "malformed" in tally.rejected["approval[0]"]

    def test_registry_rejects_unsupported_key_type(self) -> None:
        registry = SignerRegistry()
        with pytest.raises(ValueError):
            registry.register("p384", ec.generate_private_key(ec.SECP384R1()).public_key())
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_algorithm_mismatch_rejects_only_that_approval(
        self, registry: SignerRegistry, signers: dict
    ) -> None:
        mismatched = JWTApprovalVerifier.create_approval(
            "signer-a",
            ed25519.Ed25519PrivateKey.generate(),
            "seal_access",
            algorithm="EdDSA",
        )
        tokens = [
            JWTApprovalVerifier.create_approval("signer-a", signers["signer-a"], "seal_access"),
            mismatched,
            JWTApprovalVerifier.create_approval("signer-b", signers["signer-b"], "seal_access"),
        ]
        tally = await JWTApprovalVerifier(registry).count_approvals(
            _make_policy(), Requester(), tokens
        )
        assert tally.approved_signers == frozenset({"signer-a", "signer-b"})
        assert "invalid approval by signer-a" in tally.rejected["approval[1]"]

    @pytest.mark.asyncio
    async def test_mismatched_approval_does_not_block_access(
        self, registry: SignerRegistry, signers: dict
    ) -> None:
        policy = _make_policy(multi_sig_enabled=True, threshold=2)
        evaluator = AccessEvaluator(JWTApprovalVerifier(registry))
        tokens = [
            JWTApprovalVerifier.create_approval("signer-a", signers["signer-a"], "seal_access"),
            JWTApprovalVerifier.create_approval("signer-b", signers["signer-b"], "seal_access"),
            JWTApprovalVerifier.create_approval(
                "signer-b", signers["signer-c"], "seal_access", algorithm="EdDSA"
            ),
        ]
        decision = await evaluator.evaluate(policy, "0xabc", tokens)
        assert decision.allowed is True
        assert decision.reason == ACCESS_GRANTED

    @pytest.mark.asyncio
    async def test_end_to_end_with_evaluator(
        self, registry: SignerRegistry, signers: dict
    ) -> None:
        policy = _make_policy(multi_sig_enabled=True, threshold=2)
        evaluator = AccessEvaluator(JWTApprovalVerifier(registry))
        one = [JWTApprovalVerifier.create_approval("signer-a", signers["signer-a"], "seal_access")]
        two = one + [
            JWTApprovalVerifier.create_approval("signer-b", signers["signer-b"], "seal_access")
        ]
        assert (await evaluator.evaluate(policy, "0xabc", one)).allowed is False
        assert (await evaluator.evaluate(policy, "0xabc", two)).allowed is True


# ===================================================================
# RemoteApprovalVerifier
# ===================================================================

class TestRemoteApprovalVerifier:
    @pytest.mark.asyncio
    async def test_reports_signers(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"approvedSigners": ["a", "b", "a"]})

        verifier = RemoteApprovalVerifier(
            "https://indexer.example/", transport=httpx.MockTransport(handler)
        )
        tally = await verifier.count_approvals(
            _make_policy(threshold=2), Requester(address="0xAAA"), ["t1"]
        )
        assert tally.approved_signers == frozenset({"a", "b"})
        assert seen["url"] == "https://indexer.example/api/v1/multisig/verify"
        assert seen["body"]["policyId"] == "seal_access"
        assert seen["body"]["requesterAddress"] == "0xaaa"
        assert seen["body"]["threshold"] == 2

    @pytest.mark.asyncio
    async def test_http_error(self) -> None:
        verifier = RemoteApprovalVerifier(
            "https://indexer.example",
            transport=httpx.MockTransport(lambda request: httpx.Response(502)),
        )
        with pytest.raises(SignerUnavailable):
            await verifier.count_approvals(_make_policy(), Requester(), ["t1"])

    @pytest.mark.asyncio
    async def test_transport_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        verifier = RemoteApprovalVerifier(
            "https://indexer.example", transport=httpx.MockTransport(handler)
        )
        with pytest.raises(SignerUnavailable):
            await verifier.count_approvals(_make_policy(), Requester(), ["t1"])

    @pytest.mark.asyncio
    async def test_invalid_body(self) -> None:
        verifier = RemoteApprovalVerifier(
            "https://indexer.example",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, content=b"<html>")
            ),
        )
        with pytest.raises(SignerUnavailable):
            await verifier.count_approvals(_make_policy(), Requester(), ["t1"])

    @pytest.mark.asyncio
    async def test_missing_signers_field(self) -> None:
        verifier = RemoteApprovalVerifier(
            "https://indexer.example",
            transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"count": 2})
            ),
        )
        with pytest.raises(SignerUnavailable):
            await verifier.count_approvals(_make_policy(), Requester(), ["t1"])

    @pytest.mark.asyncio
    async def test_failure_denies_through_evaluator(self) -> None:
        verifier = RemoteApprovalVerifier(
            "https://indexer.example",
            transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )
        policy = _make_policy(multi_sig_enabled=True, threshold=1)
        decision = await AccessEvaluator(verifier).evaluate(policy, "0xabc", ["t1"])
        assert decision.allowed is False
        assert decision.check(CheckName.MULTI_SIG).status is CheckStatus.UNVERIFIABLE
