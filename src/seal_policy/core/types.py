"""Seal policy shared domain types.

This module defines every value type, enum, and Pydantic model shared
across the key server.

Key design decisions:
* ``MasterSecret`` is a plain Python class (not Pydantic) that prevents
  accidental serialisation of key material via ``str()`` or ``repr()``.
* ``Policy`` is frozen: once created, its access conditions never change
  for the lifetime of the process.
* Whitelist addresses are case-folded on the way *in*, so stored
  policies and comparisons always agree on one normal form.
* Models serialise with camelCase aliases (``policyId``) because that is
  what the application layer speaks; Python code uses snake_case names.
"""
from __future__ import annotations

import enum
from collections.abc import Iterable
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# MasterSecret -- opaque wrapper that prevents accidental exposure
# ---------------------------------------------------------------------------

class MasterSecret:
    """The key server's master secret.

    The raw bytes are *only* accessible via the explicit :meth:`expose`
    method.  ``str()``, ``repr()``, ``format()`` and ``logging`` all
    return a redacted placeholder.
    """

    __slots__ = ("_value",)

    def __init__(self, value: bytes | str) -> None:
        if isinstance(value, str):
            value = value.encode("utf-8")
        if not value:
            raise ValueError("Master secret must not be empty")
        self._value = bytes(value)

    def expose(self) -> bytes:
        """Explicitly reveal the secret bytes.  Use with caution."""
        return self._value

    def __str__(self) -> str:
        return "[SEAL-REDACTED]"

    def __repr__(self) -> str:
        return "MasterSecret([SEAL-REDACTED])"

    def __format__(self, format_spec: str) -> str:
        return "[SEAL-REDACTED]"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, MasterSecret):
            return self._value == other._value
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._value)

    def __len__(self) -> int:
        return len(self._value)


# ---------------------------------------------------------------------------
# Address normalisation
# ---------------------------------------------------------------------------

def normalize_address(address: object) -> str:
    """Return the canonical (stripped, case-folded) form of *address*.

    Anything that is not a string normalises to ``""``, which never
    matches a whitelist entry.
    """
    if not isinstance(address, str):
        return ""
    return address.strip().casefold()


def normalize_whitelist(addresses: Iterable[object] | None) -> tuple[str, ...]:
    """Normalise, de-duplicate and sort a collection of addresses.

    Empty entries are dropped; an empty result means "no restriction".
    """
    if not addresses:
        return ()
    normalised = {normalize_address(a) for a in addresses}
    normalised.discard("")
    return tuple(sorted(normalised))


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class CheckName(enum.StrEnum):
    """Access checks, in the order the evaluator runs them."""

    TIME_LOCK = "timeLock"
    WHITELIST = "whitelist"
    MULTI_SIG = "multiSig"


class CheckStatus(enum.StrEnum):
    """Outcome of a single access check.

    ``UNVERIFIABLE`` is used when a check depends on an external
    collaborator that is absent, failed, or timed out.  It always counts
    as a failure for the overall decision.
    """

    PASSED = "passed"
    FAILED = "failed"
    UNVERIFIABLE = "unverifiable"


# ---------------------------------------------------------------------------
# Pydantic helper -- UTC-aware datetime default
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    """Return the current UTC datetime with timezone information."""
    return datetime.now(UTC)


_WIRE_CONFIG = ConfigDict(
    strict=True,
    populate_by_name=True,
    alias_generator=to_camel,
)


# ---------------------------------------------------------------------------
# Pydantic models
# ---------------------------------------------------------------------------

class Policy(BaseModel):
    """Access conditions for one protected resource.

    ``derived_key_ref`` is an opaque handle resolvable through the
    :class:`~seal_policy.crypto.keyring.KeyRing`; the key itself is never
    part of a policy.
    """

    model_config = ConfigDict(**_WIRE_CONFIG, frozen=True)

    policy_id: str = Field(min_length=1)
    resource_id: str = Field(min_length=1)
    time_lock_until: datetime | None = None
    whitelist: tuple[str, ...] = ()
    multi_sig_enabled: bool = False
    threshold: int = Field(default=2, ge=1)
    privacy_enabled: bool = False
    derived_key_ref: str
    created_at: datetime = Field(default_factory=_utcnow)

    @field_validator("whitelist", mode="before")
    @classmethod
    def _normalise_whitelist(cls, value: Any) -> tuple[str, ...]:
        if isinstance(value, str):
            value = [value]
        return normalize_whitelist(value)

    def is_time_locked(self, now: datetime) -> bool:
        """Return ``True`` while *now* is before the unlock instant."""
        return self.time_lock_until is not None and now < self.time_lock_until


class Requester(BaseModel):
    """The identity asking for access.

    Deliberately lax: a missing or malformed address is not an error, it
    is simply an address that matches no whitelist entry.
    """

    model_config = ConfigDict(populate_by_name=True)

    address: str = ""

    @field_validator("address", mode="before")
    @classmethod
    def _coerce_address(cls, value: Any) -> str:
        return value if isinstance(value, str) else ""

    @property
    def normalized_address(self) -> str:
        """The case-folded address used for whitelist comparison."""
        return normalize_address(self.address)


class CheckResult(BaseModel):
    """The result of one access check."""

    model_config = _WIRE_CONFIG

    check: CheckName
    status: CheckStatus
    detail: str

    @computed_field  # type: ignore[prop-decorator]
    @property
    def passed(self) -> bool:
        """Whether the check passed."""
        return self.status is CheckStatus.PASSED


class AccessDecision(BaseModel):
    """The evaluator's verdict.

    ``checks`` lists every check that ran, in evaluation order, so a
    denial can be audited check by check.  ``reason`` is the detail of
    the first failing check, or ``"Access granted"``.
    """

    model_config = _WIRE_CONFIG

    allowed: bool
    reason: str
    checks: list[CheckResult] = Field(default_factory=list)
    policy_id: str | None = None
    evaluated_at: datetime = Field(default_factory=_utcnow)

    def check(self, name: CheckName) -> CheckResult | None:
        """Return the result for check *name*, or ``None`` if it did not run."""
        for result in self.checks:
            if result.check is name:
                return result
        return None

    @property
    def failed_checks(self) -> list[CheckResult]:
        """Every check that did not pass, in evaluation order."""
        return [c for c in self.checks if not c.passed]


class SealedPayload(BaseModel):
    """Ciphertext produced by the encryption gateway plus its key handle."""

    model_config = ConfigDict(strict=True, frozen=True)

    policy_id: str
    ciphertext: bytes
    key_ref: str
