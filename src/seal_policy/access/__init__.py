"""Seal policy access control.

This subpackage decides whether a requester may decrypt a sealed
resource.  It provides:

* **AccessEvaluator** -- runs the time-lock, whitelist and
  multi-signature checks and combines them into an
  :class:`~seal_policy.core.types.AccessDecision`.
* **MultiSigVerifier** -- the collaborator interface that counts
  co-signer approvals, with two implementations:
  **JWTApprovalVerifier** (signed approvals checked against a
  **SignerRegistry**) and **RemoteApprovalVerifier** (an HTTP service).
"""
from __future__ import annotations

from seal_policy.access.evaluator import (
    ACCESS_GRANTED,
    POLICY_NOT_FOUND,
    AccessEvaluator,
    coerce_requester,
)
from seal_policy.access.multisig import (
    ApprovalTally,
    JWTApprovalVerifier,
    MultiSigVerifier,
    RemoteApprovalVerifier,
    SignerRegistry,
)

__all__ = [
    "ACCESS_GRANTED",
    "POLICY_NOT_FOUND",
    "AccessEvaluator",
    "coerce_requester",
    "ApprovalTally",
    "MultiSigVerifier",
    "SignerRegistry",
    "JWTApprovalVerifier",
    "RemoteApprovalVerifier",
]
