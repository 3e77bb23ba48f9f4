"""Opaque key references.

Policies never hold key material.  They hold a *key reference*: a
fingerprint of the derived key that the :class:`KeyRing` resolves back to
the key inside the process.  Only a short fingerprint prefix is ever fit
for logs.

Keys are kept in ``bytearray`` buffers and zeroed with ``ctypes.memset``
when the ring is cleared, the same best-effort wipe Python allows for any
mutable buffer.
"""
from __future__ import annotations

import ctypes
import hashlib
import threading

KEY_REF_PREFIX = "kref_"
_FINGERPRINT_DOMAIN = b"seal-policy/key-ref/v1"


def fingerprint(key: bytes) -> str:
    """Return the hex fingerprint of *key* (not reversible)."""
    return hashlib.sha256(_FINGERPRINT_DOMAIN + bytes(key)).hexdigest()


def wipe(data: bytearray) -> None:
    """Overwrite *data* with zeros in-place."""
    if not isinstance(data, bytearray):
        raise TypeError(f"Expected bytearray, got {type(data).__name__}")
    if len(data) == 0:
        return
    buf = (ctypes.c_char * len(data)).from_buffer(data)
    ctypes.memset(ctypes.addressof(buf), 0, len(data))


class KeyRing:
    """Maps key references to derived keys for the lifetime of the process.

    Parameters
    ----------
    prefix_length:
        Number of fingerprint hex characters :meth:`diagnostic_prefix`
        reveals.
    """

    def __init__(self, prefix_length: int = 8) -> None:
        self._keys: dict[str, bytearray] = {}
        self._lock = threading.Lock()
        self._prefix_length = prefix_length

    @staticmethod
    def reference_for(key: bytes) -> str:
        """Return the key reference *key* would be registered under."""
        return f"{KEY_REF_PREFIX}{fingerprint(key)[:32]}"

    def register(self, key: bytes) -> str:
        """Hold *key* and return its reference.  Idempotent."""
        ref = self.reference_for(key)
        with self._lock:
            if ref not in self._keys:
                self._keys[ref] = bytearray(key)
        return ref

    def resolve(self, ref: str) -> bytes | None:
        """Return the key registered under *ref*, or ``None``."""
        key = self._keys.get(ref)
        return bytes(key) if key is not None else None

    def diagnostic_prefix(self, ref: str) -> str:
        """Return the loggable prefix of *ref*."""
        return ref[len(KEY_REF_PREFIX):][: self._prefix_length]

    def clear(self) -> None:
        """Wipe and drop every held key."""
        with self._lock:
            for key in self._keys.values():
                wipe(key)
            self._keys.clear()

    def __contains__(self, ref: object) -> bool:
        return ref in self._keys

    def __len__(self) -> int:
        return len(self._keys)
