"""Encryption gateway.

Seals payloads under a policy's derived key and releases plaintext only
after the access evaluator allows the requester.

Ciphertext layout::

    version (1 byte, 0x01) || nonce (12 bytes) || AES-256-GCM(ciphertext || tag)

The policy id is bound as associated data, so a ciphertext sealed for
one policy cannot be opened under another even if the keys collided.
"""
from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from seal_policy.access.evaluator import AccessEvaluator
from seal_policy.core.errors import (
    AccessDenied,
    DecryptionError,
    DerivationError,
    EncryptionError,
    PayloadTooLarge,
)
from seal_policy.core.interfaces import PolicyStore
from seal_policy.core.types import MasterSecret, Policy, Requester, SealedPayload
from seal_policy.crypto.derivation import PURPOSE_ENCRYPTION, KeyDerivation
from seal_policy.crypto.keyring import KeyRing

logger = logging.getLogger(__name__)

CIPHERTEXT_VERSION = 0x01
NONCE_BYTES = 12
TAG_BYTES = 16
_HEADER_BYTES = 1 + NONCE_BYTES


class EncryptionGateway:
    """Policy-bound authenticated encryption.

    Parameters
    ----------
    store:
        Policy lookup; unknown ids raise
        :class:`~seal_policy.core.errors.PolicyNotFound`.
    derivation:
        Re-derives a policy key when the key ring does not hold it.
    keyring:
        Resolves ``policy.derived_key_ref`` to key bytes.
    evaluator:
        Gates every decryption.
    master_secret:
        Root secret for re-derivation.
    max_payload_bytes:
        Upper bound on accepted plaintext and ciphertext sizes.
    """

    def __init__(
        self,
        store: PolicyStore,
        derivation: KeyDerivation,
        keyring: KeyRing,
        evaluator: AccessEvaluator,
        master_secret: MasterSecret,
        *,
        max_payload_bytes: int = 1_048_576,
    ) -> None:
        self._store = store
        self._derivation = derivation
        self._keyring = keyring
        self._evaluator = evaluator
        self._master_secret = master_secret
        self._max_payload_bytes = max_payload_bytes

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def encrypt(self, policy_id: str, plaintext: bytes) -> SealedPayload:
        """Seal *plaintext* under the key of *policy_id*.

        Raises
        ------
        PolicyNotFound
            If the policy does not exist.
        PayloadTooLarge
            If *plaintext* exceeds ``max_payload_bytes``.
        EncryptionError
            If the cipher fails.
        """
        policy = await self._store.get(policy_id)
        self._check_size(len(plaintext), "plaintext")
        key = self._key_for(policy)

        nonce = os.urandom(NONCE_BYTES)
        try:
            sealed = AESGCM(key).encrypt(nonce, bytes(plaintext), self._aad(policy))
        except (ValueError, OverflowError) as exc:
            raise EncryptionError(
                f"Encryption failed: {type(exc).__name__}",
                details={"policy_id": policy_id},
            ) from exc

        ciphertext = bytes([CIPHERTEXT_VERSION]) + nonce + sealed
        logger.debug(
            "Sealed %d bytes for %s (key %s)",
            len(plaintext),
            policy_id,
            self._keyring.diagnostic_prefix(policy.derived_key_ref),
        )
        return SealedPayload(
            policy_id=policy_id,
            ciphertext=ciphertext,
            key_ref=policy.derived_key_ref,
        )

    async def decrypt(
        self,
        policy_id: str,
        ciphertext: bytes,
        requester: Requester | Mapping[str, Any] | str | None,
        approvals: Sequence[str] = (),
    ) -> bytes:
        """Open *ciphertext* if *requester* is allowed by the policy.

        The access decision is made before any cryptographic work.

        Raises
        ------
        PolicyNotFound
            If the policy does not exist.
        AccessDenied
            If the evaluator denies access; carries the full decision.
        PayloadTooLarge
            If *ciphertext* exceeds the size limit.
        DecryptionError
            If the ciphertext is malformed, tampered, or sealed under
            another policy.
        """
        policy = await self._store.get(policy_id)
        decision = await self._evaluator.evaluate(policy, requester, approvals)
        if not decision.allowed:
            raise AccessDenied(decision)

        self._check_size(len(ciphertext), "ciphertext")
        if len(ciphertext) < _HEADER_BYTES + TAG_BYTES:
            raise DecryptionError(
                "Ciphertext is too short",
                details={"policy_id": policy_id},
            )
        if ciphertext[0] != CIPHERTEXT_VERSION:
            raise DecryptionError(
                f"Unsupported ciphertext version: {ciphertext[0]}",
                details={"policy_id": policy_id},
            )

        key = self._key_for(policy)
        nonce = bytes(ciphertext[1:_HEADER_BYTES])
        try:
            plaintext = AESGCM(key).decrypt(
                nonce, bytes(ciphertext[_HEADER_BYTES:]), self._aad(policy)
            )
        except InvalidTag as exc:
            raise DecryptionError(details={"policy_id": policy_id}) from exc

        logger.debug("Opened %d bytes for %s", len(plaintext), policy_id)
        return plaintext

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _key_for(self, policy: Policy) -> bytes:
        key = self._keyring.resolve(policy.derived_key_ref)
        if key is None:
            key = self._derivation.derive(
                self._master_secret, policy.policy_id, PURPOSE_ENCRYPTION
            )
            if self._keyring.register(key) != policy.derived_key_ref:
                raise DerivationError(
                    "Derived key does not match the policy's key reference",
                    details={"policy_id": policy.policy_id},
                    resolution=(
                        "The master secret or key salt changed since the "
                        "policy was created."
                    ),
                )
        return key

    def _check_size(self, size: int, what: str) -> None:
        if size > self._max_payload_bytes:
            raise PayloadTooLarge(
                f"{what.capitalize()} of {size} bytes exceeds the "
                f"{self._max_payload_bytes}-byte limit",
                details={"size": size, "limit": self._max_payload_bytes},
            )

    @staticmethod
    def _aad(policy: Policy) -> bytes:
        return policy.policy_id.encode("utf-8")
