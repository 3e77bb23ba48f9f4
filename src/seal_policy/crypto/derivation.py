"""Per-policy key derivation.

Every policy key is HKDF (RFC 5869) over the master secret, salted with
the process salt and bound to the policy and purpose through ``info``::

    info = "seal-policy/kdf/v1" || len(policy_id) || policy_id
                                || len(purpose) || purpose
    key  = HKDF(hash, length=32, salt=salt, info=info).derive(master)

Each ``info`` field is prefixed with its 4-byte big-endian length, so no
two distinct ``(policy_id, purpose)`` pairs share an ``info`` value.  The
hash defaults to SHA-256 and must produce at least 256 bits.

If derivation fails the caller gets a
:class:`~seal_policy.core.errors.DerivationError`, never a predictable key.
"""
from __future__ import annotations

import struct

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from seal_policy.core.errors import DerivationError
from seal_policy.core.types import MasterSecret

KDF_DOMAIN = b"seal-policy/kdf/v1"

PURPOSE_ENCRYPTION = "encryption"
"""Purpose of the key that seals policy payloads."""

PURPOSE_DECRYPTION_SESSION = "decryption-session"
"""Purpose reserved for short-lived decryption session keys."""

MIN_KEY_BYTES = 32

_HASHES: dict[str, type[hashes.HashAlgorithm]] = {
    "sha256": hashes.SHA256,
    "sha384": hashes.SHA384,
    "sha512": hashes.SHA512,
    "sha3_256": hashes.SHA3_256,
    "sha3_512": hashes.SHA3_512,
    "sha1": hashes.SHA1,
    "md5": hashes.MD5,
}


def _field(value: bytes) -> bytes:
    return struct.pack(">I", len(value)) + value


def _hash_algorithm(hash_name: str) -> hashes.HashAlgorithm:
    factory = _HASHES.get(hash_name.lower().replace("-", "_"))
    if factory is None:
        raise DerivationError(
            f"Hash algorithm unavailable: {hash_name}",
            details={"hash_name": hash_name},
        )
    algorithm = factory()
    if algorithm.digest_size < MIN_KEY_BYTES:
        raise DerivationError(
            f"Hash algorithm {hash_name} produces fewer than {MIN_KEY_BYTES * 8} bits",
            details={"hash_name": hash_name},
        )
    return algorithm


def build_info(policy_id: str, purpose: str) -> bytes:
    """Return the HKDF ``info`` binding a key to *policy_id* and *purpose*."""
    return (
        KDF_DOMAIN
        + _field(policy_id.encode("utf-8"))
        + _field(purpose.encode("utf-8"))
    )


class KeyDerivation:
    """Derives symmetric keys from the master secret.

    Parameters
    ----------
    salt:
        The fixed per-process salt used as the HKDF salt.
    hash_name:
        Hash for HKDF (``sha256``, ``sha384``, ``sha512``, ...).  Its
        digest must be at least 256 bits; ``sha256`` by default.
    """

    def __init__(self, salt: str | bytes, hash_name: str = "sha256") -> None:
        self._salt = salt.encode("utf-8") if isinstance(salt, str) else bytes(salt)
        self._hash_name = hash_name

    @property
    def hash_name(self) -> str:
        """The hash algorithm used for derivation."""
        return self._hash_name

    def derive(
        self,
        master_secret: MasterSecret | bytes,
        policy_id: str,
        purpose: str,
    ) -> bytes:
        """Derive the key for *policy_id* and *purpose*.

        Same inputs always yield the same key; a different *purpose* for
        the same policy yields an unrelated key.

        Raises
        ------
        DerivationError
            If an input is empty, the hash algorithm is unavailable, or
            its output is shorter than 256 bits.
        """
        if not policy_id or not purpose:
            raise DerivationError(
                "Policy id and purpose are required for key derivation",
                details={"policy_id": policy_id, "purpose": purpose},
            )
        secret = (
            master_secret.expose()
            if isinstance(master_secret, MasterSecret)
            else bytes(master_secret)
        )
        if not secret:
            raise DerivationError("Master secret is empty")

        algorithm = _hash_algorithm(self._hash_name)
        try:
            hkdf = HKDF(
                algorithm=algorithm,
                length=MIN_KEY_BYTES,
                salt=self._salt or None,
                info=build_info(policy_id, purpose),
            )
            return hkdf.derive(secret)
        except (ValueError, TypeError) as exc:
            raise DerivationError(
                f"Key derivation failed: {type(exc).__name__}",
                details={"hash_name": self._hash_name},
            ) from exc
