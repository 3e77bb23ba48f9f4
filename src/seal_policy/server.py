"""Seal key server -- the main orchestrator.

This module implements the :class:`KeyServer` class, the entry point that
composes the policy store, key derivation, key ring, access evaluator and
encryption gateway, and exposes one coroutine per API operation.

Flow
----

* **Create policy** -- validate the access conditions, derive the policy
  key (purpose ``"encryption"``), register it in the key ring, store the
  policy under its key reference.
* **Verify access** -- fetch the policy, run the access evaluator.
* **Encrypt / decrypt** -- delegate to the encryption gateway; decryption
  is gated on the evaluator.
* **Get / list** -- read-only store access.

Every operation is counted in :class:`~seal_policy.metrics.KeyServerMetrics`
by outcome.

Usage
-----
::

    from seal_policy.core.config import KeyServerConfig
    from seal_policy.server import KeyServer

    server = KeyServer(KeyServerConfig.from_env())
    policy = await server.create_policy("quiz-42", whitelist=["0xAAA"])
    decision = await server.verify_access(policy.policy_id, "0xaaa")
"""
from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING, Any

from seal_policy import __version__
from seal_policy.access.evaluator import AccessEvaluator
from seal_policy.core.errors import (
    AccessDenied,
    InvalidRequest,
    PolicyNotFound,
    SealPolicyError,
)
from seal_policy.core.interfaces import InMemoryPolicyStore
from seal_policy.core.types import AccessDecision, Policy, Requester, SealedPayload
from seal_policy.crypto.derivation import PURPOSE_ENCRYPTION, KeyDerivation
from seal_policy.crypto.gateway import EncryptionGateway
from seal_policy.crypto.keyring import KeyRing, fingerprint
from seal_policy.metrics import KeyServerMetrics

if TYPE_CHECKING:
    from seal_policy.access.multisig import MultiSigVerifier
    from seal_policy.core.config import KeyServerConfig
    from seal_policy.core.interfaces import PolicyStore

logger = logging.getLogger(__name__)

POLICY_ID_PREFIX = "seal_"


def generate_policy_id() -> str:
    """Return a fresh ``seal_<32 hex>`` policy id."""
    return f"{POLICY_ID_PREFIX}{uuid.uuid4().hex}"


class KeyServer:
    """Composes the policy engine and serves its operations.

    Parameters
    ----------
    config:
        Server configuration, including the master secret.
    store:
        Policy backend.  Defaults to a fresh :class:`InMemoryPolicyStore`.
    multisig_verifier:
        Counts co-signer approvals for multi-signature policies.  When
        ``None``, multi-signature policies are always denied.
    clock:
        Returns the current UTC time; shared by policy creation and
        evaluation so tests can move time.
    metrics:
        Instrumentation sink.  Defaults to a private registry.
    """

    def __init__(
        self,
        config: KeyServerConfig,
        store: PolicyStore | None = None,
        *,
        multisig_verifier: MultiSigVerifier | None = None,
        clock: Callable[[], datetime] | None = None,
        metrics: KeyServerMetrics | None = None,
    ) -> None:
        self._config = config
        self._store: PolicyStore = store if store is not None else InMemoryPolicyStore()
        self._clock = clock or (lambda: datetime.now(UTC))
        self._metrics = metrics or KeyServerMetrics()
        self._started = time.monotonic()

        self._derivation = KeyDerivation(config.key_salt)
        self._keyring = KeyRing(prefix_length=config.key_prefix_length)
        self._evaluator = AccessEvaluator(
            multisig_verifier,
            clock=self._clock,
            signer_timeout=config.signer_timeout_seconds,
        )
        self._gateway = EncryptionGateway(
            self._store,
            self._derivation,
            self._keyring,
            self._evaluator,
            config.master_secret,
            max_payload_bytes=config.max_payload_bytes,
        )

    # ------------------------------------------------------------------
    # Properties for introspection
    # ------------------------------------------------------------------

    @property
    def config(self) -> KeyServerConfig:
        """The server configuration."""
        return self._config

    @property
    def store(self) -> PolicyStore:
        """The policy backend."""
        return self._store

    @property
    def keyring(self) -> KeyRing:
        """The in-process key ring."""
        return self._keyring

    @property
    def evaluator(self) -> AccessEvaluator:
        """The access evaluator."""
        return self._evaluator

    @property
    def gateway(self) -> EncryptionGateway:
        """The encryption gateway."""
        return self._gateway

    @property
    def metrics(self) -> KeyServerMetrics:
        """The instrumentation sink."""
        return self._metrics

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
    ) -> Policy:
        """Create and store a policy for *resource_id*.

        A positive *time_lock_hours* locks the resource until that many
        hours from now.  *threshold* defaults to the configured
        ``default_threshold``.

        Raises
        ------
        InvalidRequest
            If a value is out of range.
        DuplicatePolicyId
            If *policy_id* is already taken.
        DerivationError
            If the policy key cannot be derived.
        """
        with self._instrument("create_policy"):
            if not resource_id:
                raise InvalidRequest("resourceId is required")
            if time_lock_hours < 0 or time_lock_hours > self._config.max_time_lock_hours:
                raise InvalidRequest(
                    "timeLockDuration must be between 0 and "
                    f"{self._config.max_time_lock_hours:g} hours",
                    details={"time_lock_duration": time_lock_hours},
                )
            required = self._config.default_threshold if threshold is None else threshold
            if required < 1:
                raise InvalidRequest(
                    "threshold must be at least 1",
                    details={"threshold": required},
                )

            now = self._clock()
            policy_id = policy_id or generate_policy_id()
            key = self._derivation.derive(
                self._config.master_secret, policy_id, PURPOSE_ENCRYPTION
            )
            key_ref = self._keyring.register(key)

            policy = Policy(
                policy_id=policy_id,
                resource_id=resource_id,
                time_lock_until=(
                    now + timedelta(hours=time_lock_hours) if time_lock_hours > 0 else None
                ),
                whitelist=tuple(whitelist),
                multi_sig_enabled=multi_sig_enabled,
                threshold=required,
                privacy_enabled=privacy_enabled,
                derived_key_ref=key_ref,
                created_at=now,
            )
            await self._store.create(policy)

            logger.info(
                "Created policy %s for resource %s (time lock: %s, whitelist: %d, "
                "multi-sig: %s, threshold: %d, privacy: %s, key %s)",
                policy.policy_id,
                policy.resource_id,
                policy.time_lock_until.isoformat() if policy.time_lock_until else "none",
                len(policy.whitelist),
                policy.multi_sig_enabled,
                policy.threshold,
                policy.privacy_enabled,
                self._keyring.diagnostic_prefix(key_ref),
            )
            return policy

    async def get_policy(self, policy_id: str) -> Policy:
        """Return the policy for *policy_id*; raises :class:`PolicyNotFound`."""
        with self._instrument("get_policy"):
            return await self._store.get(policy_id)

    async def list_policies(self) -> list[Policy]:
        """Return every stored policy in creation order."""
        with self._instrument("list_policies"):
            return await self._store.list()

    # ------------------------------------------------------------------
    # Access and crypto operations
    # ------------------------------------------------------------------

    async def verify_access(
        self,
        policy_id: str,
        requester: Requester | Mapping[str, Any] | str | None,
        approvals: Sequence[str] = (),
    ) -> AccessDecision:
        """Evaluate *requester* against the policy for *policy_id*.

        A denial is a normal result, not an error.

        Raises
        ------
        PolicyNotFound
            If the policy does not exist.  ``details`` carries the
            short-circuit decision.
        """
        with self._instrument("verify_access"):
            policy = await self._store.find(policy_id)
            decision = await self._evaluator.evaluate(policy, requester, approvals)
            if policy is None:
                raise PolicyNotFound(
                    f"Policy not found: {policy_id}",
                    details=decision.model_dump(mode="json", by_alias=True),
                )
            self._metrics.record_decision(decision.allowed)
            return decision

    async def encrypt(self, policy_id: str, plaintext: bytes) -> SealedPayload:
        """Seal *plaintext* under the key of *policy_id*."""
        with self._instrument("encrypt"):
            return await self._gateway.encrypt(policy_id, plaintext)

    async def decrypt(
        self,
        policy_id: str,
        ciphertext: bytes,
        requester: Requester | Mapping[str, Any] | str | None,
        approvals: Sequence[str] = (),
    ) -> bytes:
        """Open *ciphertext* for *requester*.

        Raises
        ------
        AccessDenied
            If the requester is not allowed; carries the full decision.
        DecryptionError
            If the ciphertext is corrupted or sealed for another policy.
        """
        with self._instrument("decrypt"):
            try:
                plaintext = await self._gateway.decrypt(
                    policy_id, ciphertext, requester, approvals
                )
            except AccessDenied:
                self._metrics.record_decision(False)
                raise
            self._metrics.record_decision(True)
            return plaintext

    # ------------------------------------------------------------------
    # Operational endpoints
    # ------------------------------------------------------------------

    async def health(self) -> dict[str, Any]:
        """Return the health document."""
        return {
            "status": "healthy",
            "version": __version__,
            "serverId": self._config.server_id,
            "network": self._config.network,
            "packageId": self._config.package_id,
            "timestamp": self._clock().isoformat(),
            "policiesCount": await self._store.count(),
            "keysCount": len(self._keyring),
            "masterKeyFingerprint": self.master_key_fingerprint(),
        }

    async def key_servers(self) -> list[dict[str, Any]]:
        """Return the key-server listing (this server only)."""
        return [
            {
                "id": self._config.server_id,
                "url": self._config.public_url,
                "status": "active",
                "threshold": self._config.default_threshold,
                "network": self._config.network,
                "packageId": self._config.package_id,
                "policiesCount": await self._store.count(),
                "keysCount": len(self._keyring),
            }
        ]

    async def metrics_snapshot(self) -> dict[str, Any]:
        """Return the JSON metrics document."""
        active, locked = await self._refresh_inventory()
        return {
            "timestamp": self._clock().isoformat(),
            "policies": {"total": active + locked, "active": active, "locked": locked},
            "keys": {"total": len(self._keyring)},
            "requests": self._metrics.request_counts(),
            "uptimeSeconds": round(time.monotonic() - self._started, 3),
        }

    async def prometheus_metrics(self) -> bytes:
        """Return the Prometheus text exposition."""
        await self._refresh_inventory()
        return self._metrics.render()

    def master_key_fingerprint(self) -> str:
        """Return the loggable prefix of the master secret's fingerprint."""
        digest = fingerprint(self._config.master_secret.expose())
        return digest[: self._config.key_prefix_length]

    def close(self) -> None:
        """Wipe every key held by the key ring."""
        self._keyring.clear()
        logger.info("Key server %s closed", self._config.server_id)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @contextmanager
    def _instrument(self, operation: str) -> Iterator[None]:
        try:
            yield
        except SealPolicyError as exc:
            self._metrics.record_request(operation, exc.code)
            raise
        self._metrics.record_request(operation)

    async def _refresh_inventory(self) -> tuple[int, int]:
        now = self._clock()
        policies = await self._store.list()
        locked = sum(1 for p in policies if p.is_time_locked(now))
        active = len(policies) - locked
        self._metrics.set_inventory(active=active, locked=locked, keys=len(self._keyring))
        return active, locked
