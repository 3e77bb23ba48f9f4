"""Key-server abstract interfaces and in-memory implementations.

This module defines the *structural* interface (``typing.Protocol``) for
the policy backend consumed by the key server, plus an
in-memory policy store suitable for a single process.

Every Protocol class is decorated with ``@runtime_checkable`` so that
``isinstance`` checks work at run-time in addition to static analysis.
"""
from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from seal_policy.core.errors import DuplicatePolicyId, PolicyNotFound
from seal_policy.core.types import Policy

# ===================================================================
# Protocol (interface) definitions
# ===================================================================

@runtime_checkable
class PolicyStore(Protocol):
    """Keyed storage of :class:`Policy` records.

    Implementations MUST serialise concurrent creates of the same id so
    that exactly one succeeds, and MUST NOT make reads wait on each other.
    """

    async def create(self, policy: Policy) -> None:
        """Persist *policy*.

        Raises :class:`DuplicatePolicyId` if ``policy.policy_id`` exists.
        """
        ...

    async def get(self, policy_id: str) -> Policy:
        """Return the policy for *policy_id*.

        Raises :class:`PolicyNotFound` if it does not exist.
        """
        ...

    async def find(self, policy_id: str) -> Policy | None:
        """Return the policy for *policy_id*, or ``None``."""
        ...

    async def list(self) -> list[Policy]:
        """Return all policies in creation order."""
        ...

    async def count(self) -> int:
        """Return the number of stored policies."""
        ...


# ===================================================================
# In-memory implementations
# ===================================================================

class InMemoryPolicyStore:
    """Process-lifetime policy store.

    Policies are frozen models, so they are shared without copying.  The
    create path holds a lock across check-and-insert; reads take no lock,
    relying on single dict operations being atomic.
    """

    def __init__(self) -> None:
        self._policies: dict[str, Policy] = {}
        self._create_lock = threading.Lock()

    async def create(self, policy: Policy) -> None:
        """Persist *policy*; the first writer of an id wins."""
        with self._create_lock:
            if policy.policy_id in self._policies:
                raise DuplicatePolicyId(
                    f"Policy already exists: {policy.policy_id}",
                    details={"policy_id": policy.policy_id},
                )
            self._policies[policy.policy_id] = policy

    async def get(self, policy_id: str) -> Policy:
        """Return the policy for *policy_id*."""
        policy = self._policies.get(policy_id)
        if policy is None:
            raise PolicyNotFound(
                f"Policy not found: {policy_id}",
                details={"policy_id": policy_id},
            )
        return policy

    async def find(self, policy_id: str) -> Policy | None:
        """Return the policy for *policy_id*, or ``None``."""
        return self._policies.get(policy_id)

    async def list(self) -> list[Policy]:
        """Return all policies in creation order."""
        return list(self._policies.values())

    async def count(self) -> int:
        """Return the number of stored policies."""
        return len(self._policies)

    def clear(self) -> None:
        """Drop every policy (shutdown / test helper)."""
        with self._create_lock:
            self._policies.clear()
