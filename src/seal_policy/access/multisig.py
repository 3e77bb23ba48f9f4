"""Multi-signature approval verification.

When a policy enables multi-signature access, the requester must present
approvals from at least ``policy.threshold`` distinct co-signers.  The
evaluator does not count signatures itself; it delegates to a
:class:`MultiSigVerifier`:

* :class:`JWTApprovalVerifier` -- approvals are compact JWTs (ES256 or
  EdDSA) signed by co-signers registered in a :class:`SignerRegistry`.
* :class:`RemoteApprovalVerifier` -- an external service (for example an
  on-chain indexer) reports which signers approved, over HTTP.

Verifiers raise :class:`~seal_policy.core.errors.SignerUnavailable` when
they cannot reach a verdict.  The evaluator turns that into an
*unverifiable* check, which denies access.
"""
from __future__ import annotations

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol, runtime_checkable

import httpx
import jwt
from cryptography.hazmat.primitives.asymmetric import ec, ed25519

from seal_policy.core.errors import SignerUnavailable
from seal_policy.core.types import Policy, Requester, normalize_address

PrivateKey = ec.EllipticCurvePrivateKey | ed25519.Ed25519PrivateKey
PublicKey = ec.EllipticCurvePublicKey | ed25519.Ed25519PublicKey


def algorithm_for(public_key: PublicKey) -> str:
    """Return the only JWT algorithm accepted for *public_key*.

    Raises
    ------
    ValueError
        If the key type is not supported.
    """
    if isinstance(public_key, ec.EllipticCurvePublicKey) and isinstance(
        public_key.curve, ec.SECP256R1
    ):
        return "ES256"
    if isinstance(public_key, ed25519.Ed25519PublicKey):
        return "EdDSA"
    raise ValueError(f"Unsupported signer key type: {type(public_key).__name__}")


# ---------------------------------------------------------------------------
# Verifier interface
# ---------------------------------------------------------------------------

@dataclass(frozen=True, slots=True)
class ApprovalTally:
    """Which signers approved, and why other approvals were discarded.

    Attributes
    ----------
    approved_signers:
        Distinct signer ids whose approval verified.
    rejected:
        Discarded approvals, keyed by position or signer id, with a reason.
    """

    approved_signers: frozenset[str] = frozenset()
    rejected: dict[str, str] = field(default_factory=dict)

    @property
    def count(self) -> int:
        return len(self.approved_signers)


@runtime_checkable
class MultiSigVerifier(Protocol):
    """Counts co-signer approvals for a policy and requester."""

    async def count_approvals(
        self,
        policy: Policy,
        requester: Requester,
        approvals: Sequence[str],
    ) -> ApprovalTally:
        """Return the tally of valid approvals.

        Raises
        ------
        seal_policy.core.errors.SignerUnavailable
            If no verdict can be reached.
        """
        ...


# ---------------------------------------------------------------------------
# Signed-approval verifier
# ---------------------------------------------------------------------------

class SignerRegistry:
    """Public keys of the co-signers allowed to approve access."""

    def __init__(self) -> None:
        self._keys: dict[str, PublicKey] = {}

    def register(self, signer_id: str, public_key: PublicKey) -> None:
        """Register *signer_id*.

        Raises :class:`ValueError` on duplicates and unsupported key types.
        """
        if signer_id in self._keys:
            raise ValueError(f"Signer already registered: {signer_id}")
        algorithm_for(public_key)
        self._keys[signer_id] = public_key

    def get(self, signer_id: str) -> PublicKey | None:
        return self._keys.get(signer_id)

    def __contains__(self, signer_id: object) -> bool:
        return signer_id in self._keys

    def __len__(self) -> int:
        return len(self._keys)


class JWTApprovalVerifier:
    """Verifies co-signer approvals issued as signed JWTs.

    An approval's claims are ``sub`` (signer id), ``policy_id``, ``iat``
    and ``exp``, plus an optional ``requester`` address binding the
    approval to one requester.  Each signer counts once no matter how many
    approvals it issued.

    Usage
    -----
    Issuing an approval (co-signer side)::

        token = JWTApprovalVerifier.create_approval(
            "signer-a", private_key, policy.policy_id,
        )

    Verifying (evaluator side)::

        tally = await verifier.count_approvals(policy, requester, [token])
    """

    SUPPORTED_ALGORITHMS: tuple[str, ...] = ("ES256", "EdDSA")

    def __init__(self, registry: SignerRegistry, *, leeway_seconds: int = 0) -> None:
        self._registry = registry
        self._leeway = leeway_seconds

    @classmethod
    def create_approval(
        cls,
        signer_id: str,
        private_key: PrivateKey,
        policy_id: str,
        *,
        requester_address: str | None = None,
        ttl: timedelta = timedelta(minutes=10),
        algorithm: str = "ES256",
    ) -> str:
        """Create a signed approval of *policy_id* by *signer_id*.

        Raises
        ------
        ValueError
            If *algorithm* is not supported.
        """
        if algorithm not in cls.SUPPORTED_ALGORITHMS:
            raise ValueError(
                f"Unsupported approval algorithm: '{algorithm}'. "
                f"Supported: {', '.join(cls.SUPPORTED_ALGORITHMS)}."
            )
        now = datetime.now(UTC)
        payload: dict[str, Any] = {
            "sub": signer_id,
            "policy_id": policy_id,
            "iat": int(now.timestamp()),
            "exp": int((now + ttl).timestamp()),
        }
        if requester_address is not None:
            payload["requester"] = normalize_address(requester_address)
        token: str = jwt.encode(payload, private_key, algorithm=algorithm)
        return token

    async def count_approvals(
        self,
        policy: Policy,
        requester: Requester,
        approvals: Sequence[str],
    ) -> ApprovalTally:
        """Return the distinct registered signers whose approval verifies."""
        approved: set[str] = set()
        rejected: dict[str, str] = {}

        for index, token in enumerate(approvals):
            label = f"approval[{index}]"
            try:
                unverified = jwt.decode(token, options={"verify_signature": False})
            except jwt.PyJWTError as exc:
                rejected[label] = f"malformed approval: {exc}"
                continue

            signer_id = unverified.get("sub")
            public_key = self._registry.get(signer_id) if isinstance(signer_id, str) else None
            if public_key is None:
                rejected[label] = f"unknown signer: {signer_id!r}"
                continue

            try:
                claims: dict[str, Any] = jwt.decode(
                    token,
                    public_key,
                    algorithms=[algorithm_for(public_key)],
                    options={"require": ["sub", "policy_id", "iat", "exp"]},
                    leeway=self._leeway,
                )
            except jwt.ExpiredSignatureError:
                rejected[label] = f"approval by {signer_id} has expired"
                continue
            except jwt.PyJWTError as exc:
                rejected[label] = f"invalid approval by {signer_id}: {exc}"
                continue

            if claims.get("policy_id") != policy.policy_id:
                rejected[label] = f"approval by {signer_id} is for another policy"
                continue
            bound = claims.get("requester")
            if bound is not None and bound != requester.normalized_address:
                rejected[label] = f"approval by {signer_id} is for another requester"
                continue

            approved.add(signer_id)

        return ApprovalTally(approved_signers=frozenset(approved), rejected=rejected)


# ---------------------------------------------------------------------------
# Remote verifier
# ---------------------------------------------------------------------------

class RemoteApprovalVerifier:
    """Asks an external service which signers approved.

    Sends ``POST {base_url}/api/v1/multisig/verify`` with
    ``{policyId, resourceId, requesterAddress, threshold, approvals}`` and
    expects ``{approvedSigners: [...]}`` back.

    Parameters
    ----------
    base_url:
        Base URL of the verification service.
    timeout:
        Request timeout in seconds (default: 30).
    transport:
        Optional ``httpx`` transport, e.g. ``httpx.MockTransport`` in tests.
    """

    PATH = "/api/v1/multisig/verify"

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._transport = transport

    async def count_approvals(
        self,
        policy: Policy,
        requester: Requester,
        approvals: Sequence[str],
    ) -> ApprovalTally:
        """Return the tally reported by the remote service."""
        body = {
            "policyId": policy.policy_id,
            "resourceId": policy.resource_id,
            "requesterAddress": requester.normalized_address,
            "threshold": policy.threshold,
            "approvals": list(approvals),
        }
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(f"{self._base_url}{self.PATH}", json=body)
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as exc:
            raise SignerUnavailable(
                f"Multi-signature service request failed: {type(exc).__name__}",
                details={"url": self._base_url},
            ) from exc
        except (json.JSONDecodeError, ValueError) as exc:
            raise SignerUnavailable(
                "Multi-signature service returned invalid JSON",
                details={"url": self._base_url},
            ) from exc

        signers = data.get("approvedSigners") if isinstance(data, dict) else None
        if not isinstance(signers, list) or not all(isinstance(s, str) for s in signers):
            raise SignerUnavailable(
                "Multi-signature service response lacks approvedSigners",
                details={"url": self._base_url},
            )
        return ApprovalTally(approved_signers=frozenset(signers))
