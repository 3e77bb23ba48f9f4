"""Access evaluation.

This module implements the access decision for one policy and one
requester.  Three checks always run, in this order:

1. **Time lock** -- passes when no lock is set or the unlock instant has
   been reached.
2. **Whitelist** -- passes when the whitelist is empty or contains the
   requester's case-folded address.
3. **Multi-signature** -- passes trivially when disabled; otherwise a
   :class:`~seal_policy.access.multisig.MultiSigVerifier` must confirm at
   least ``policy.threshold`` distinct approvals.  With no verifier, no
   approvals, a verifier failure, or a timeout, the check is reported as
   *unverifiable* and access is denied.

Every check is reported even after one fails, so a denial can be audited
in full.  ``allowed`` is the logical AND of the three.  The evaluator
never raises on bad requester input.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping, Sequence
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from seal_policy.core.errors import SignerUnavailable
from seal_policy.core.types import (
    AccessDecision,
    CheckName,
    CheckResult,
    CheckStatus,
    Policy,
    Requester,
)

if TYPE_CHECKING:
    from seal_policy.access.multisig import MultiSigVerifier

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

ACCESS_GRANTED = "Access granted"
POLICY_NOT_FOUND = "Policy not found"


def _utcnow() -> datetime:
    return datetime.now(UTC)


def coerce_requester(requester: Requester | Mapping[str, Any] | str | None) -> Requester:
    """Build a :class:`Requester` from loosely typed input without raising."""
    if isinstance(requester, Requester):
        return requester
    if isinstance(requester, str):
        return Requester(address=requester)
    if isinstance(requester, Mapping):
        return Requester(address=requester.get("address", ""))
    return Requester()


class AccessEvaluator:
    """Evaluates a policy against a requester.

    Parameters
    ----------
    multisig_verifier:
        Collaborator that counts co-signer approvals.  When ``None``,
        multi-signature policies are always denied as unverifiable.
    clock:
        Returns the current UTC time; injectable for tests.
    signer_timeout:
        Upper bound, in seconds, on one verifier call.
    """

    def __init__(
        self,
        multisig_verifier: MultiSigVerifier | None = None,
        *,
        clock: Clock | None = None,
        signer_timeout: float = 30.0,
    ) -> None:
        self._multisig = multisig_verifier
        self._clock = clock or _utcnow
        self._signer_timeout = signer_timeout

    async def evaluate(
        self,
        policy: Policy | None,
        requester: Requester | Mapping[str, Any] | str | None,
        approvals: Sequence[str] = (),
    ) -> AccessDecision:
        """Run every check and return the combined decision.

        A ``None`` policy short-circuits to a denial with reason
        ``"Policy not found"`` and no checks.
        """
        now = self._clock()
        if policy is None:
            return AccessDecision(
                allowed=False,
                reason=POLICY_NOT_FOUND,
                checks=[],
                evaluated_at=now,
            )

        who = coerce_requester(requester)
        checks = [
            self._check_time_lock(policy, now),
            self._check_whitelist(policy, who),
            await self._check_multi_sig(policy, who, approvals),
        ]

        failed = [c for c in checks if not c.passed]
        decision = AccessDecision(
            allowed=not failed,
            reason=failed[0].detail if failed else ACCESS_GRANTED,
            checks=checks,
            policy_id=policy.policy_id,
            evaluated_at=now,
        )

        if decision.allowed:
            logger.info("Access granted for %r on %s", who.address, policy.policy_id)
        else:
            logger.warning(
                "Access denied for %r on %s: %s",
                who.address,
                policy.policy_id,
                decision.reason,
            )
        for check in checks:
            logger.debug("  %s: %s -- %s", check.check, check.status, check.detail)
        return decision

    # ------------------------------------------------------------------
    # Individual checks
    # ------------------------------------------------------------------

    @staticmethod
    def _check_time_lock(policy: Policy, now: datetime) -> CheckResult:
        if policy.time_lock_until is None:
            return CheckResult(
                check=CheckName.TIME_LOCK,
                status=CheckStatus.PASSED,
                detail="No time lock configured",
            )
        unlock = policy.time_lock_until.isoformat()
        if policy.is_time_locked(now):
            return CheckResult(
                check=CheckName.TIME_LOCK,
                status=CheckStatus.FAILED,
                detail=f"Resource is time-locked until {unlock}",
            )
        return CheckResult(
            check=CheckName.TIME_LOCK,
            status=CheckStatus.PASSED,
            detail=f"Time lock expired at {unlock}",
        )

    @staticmethod
    def _check_whitelist(policy: Policy, requester: Requester) -> CheckResult:
        if not policy.whitelist:
            return CheckResult(
                check=CheckName.WHITELIST,
                status=CheckStatus.PASSED,
                detail="No whitelist configured",
            )
        address = requester.normalized_address
        if address and address in policy.whitelist:
            return CheckResult(
                check=CheckName.WHITELIST,
                status=CheckStatus.PASSED,
                detail="Address is whitelisted",
            )
        shown = requester.address if requester.address else "<empty>"
        return CheckResult(
            check=CheckName.WHITELIST,
            status=CheckStatus.FAILED,
            detail=f"Address {shown} is not whitelisted",
        )

    async def _check_multi_sig(
        self,
        policy: Policy,
        requester: Requester,
        approvals: Sequence[str],
    ) -> CheckResult:
        if not policy.multi_sig_enabled:
            return CheckResult(
                check=CheckName.MULTI_SIG,
                status=CheckStatus.PASSED,
                detail="Multi-sig not enabled",
            )
        required = policy.threshold
        if self._multisig is None:
            return CheckResult(
                check=CheckName.MULTI_SIG,
                status=CheckStatus.UNVERIFIABLE,
                detail=(
                    f"Multi-signature approval of {required} signers cannot be "
                    "verified: no signer verifier configured"
                ),
            )
        if not approvals:
            return CheckResult(
                check=CheckName.MULTI_SIG,
                status=CheckStatus.UNVERIFIABLE,
                detail=f"Multi-signature approval required: 0 of {required} approvals supplied",
            )

        try:
            tally = await asyncio.wait_for(
                self._multisig.count_approvals(policy, requester, approvals),
                timeout=self._signer_timeout,
            )
        except TimeoutError:
            logger.warning(
                "Multi-signature verification for %s timed out after %.1fs",
                policy.policy_id,
                self._signer_timeout,
            )
            return CheckResult(
                check=CheckName.MULTI_SIG,
                status=CheckStatus.UNVERIFIABLE,
                detail=(
                    "Multi-signature approval could not be verified: verifier "
                    f"timed out after {self._signer_timeout:g}s"
                ),
            )
        except SignerUnavailable as exc:
            logger.warning(
                "Multi-signature verification for %s failed: %s",
                policy.policy_id,
                exc,
            )
            return self._unverifiable(exc)
        except Exception as exc:
            logger.exception(
                "Multi-signature verifier %s raised unexpectedly for %s",
                type(self._multisig).__name__,
                policy.policy_id,
            )
            return self._unverifiable(exc)

        if tally.count >= required:
            return CheckResult(
                check=CheckName.MULTI_SIG,
                status=CheckStatus.PASSED,
                detail=f"{tally.count} of {required} required signers approved",
            )
        return CheckResult(
            check=CheckName.MULTI_SIG,
            status=CheckStatus.FAILED,
            detail=(
                f"Multi-signature threshold not met: {tally.count} of "
                f"{required} required signers approved"
            ),
        )

    @staticmethod
    def _unverifiable(exc: Exception) -> CheckResult:
        return CheckResult(
            check=CheckName.MULTI_SIG,
            status=CheckStatus.UNVERIFIABLE,
            detail=f"Multi-signature approval could not be verified: {type(exc).__name__}",
        )
