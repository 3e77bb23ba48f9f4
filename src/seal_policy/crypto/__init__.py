"""Seal policy key material.

* **KeyDerivation** -- deterministic per-policy keys from the master
  secret.
* **KeyRing** -- opaque key references and in-process key custody.
* **EncryptionGateway** -- policy-bound AES-256-GCM sealing, with
  decryption gated on the access evaluator.
"""
from __future__ import annotations

from seal_policy.crypto.derivation import (
    KDF_DOMAIN,
    PURPOSE_DECRYPTION_SESSION,
    PURPOSE_ENCRYPTION,
    KeyDerivation,
)
from seal_policy.crypto.gateway import CIPHERTEXT_VERSION, EncryptionGateway
from seal_policy.crypto.keyring import KEY_REF_PREFIX, KeyRing, fingerprint, wipe

__all__ = [
    "KDF_DOMAIN",
    "PURPOSE_ENCRYPTION",
    "PURPOSE_DECRYPTION_SESSION",
    "KeyDerivation",
    "KEY_REF_PREFIX",
    "KeyRing",
    "fingerprint",
    "wipe",
    "CIPHERTEXT_VERSION",
    "EncryptionGateway",
]
