"""PolicyStore conformance tests.

Verifies create-once semantics, lookup by id, and NotFound behaviour
for the in-memory backend.
"""
from __future__ import annotations

import asyncio

import pytest

from seal_policy.core.errors import DuplicatePolicyId, PolicyNotFound
from seal_policy.core.interfaces import InMemoryPolicyStore, PolicyStore


class TestPolicyStoreContract:
    """Any backend MUST satisfy the PolicyStore protocol."""

    def test_MUST_implement_protocol(self, policy_store: InMemoryPolicyStore) -> None:
        assert isinstance(policy_store, PolicyStore)

    @pytest.mark.asyncio
    async def test_MUST_return_created_policy(self, policy_store, make_policy) -> None:
        policy = make_policy("seal_one")
        await policy_store.create(policy)
        assert await policy_store.get("seal_one") == policy

    @pytest.mark.asyncio
    async def test_MUST_raise_not_found_for_unknown_id(self, policy_store) -> None:
        with pytest.raises(PolicyNotFound):
            await policy_store.get("seal_never_created")
        assert await policy_store.find("seal_never_created") is None


class TestCreateOnce:
    """A policy id MUST be stored at most once."""

    @pytest.mark.asyncio
    async def test_MUST_reject_duplicate_id(self, policy_store, make_policy) -> None:
        first = make_policy("seal_dup", resource_id="first")
        await policy_store.create(first)
        with pytest.raises(DuplicatePolicyId):
            await policy_store.create(make_policy("seal_dup", resource_id="second"))
        assert await policy_store.get("seal_dup") == first
        assert await policy_store.count() == 1

    @pytest.mark.asyncio
    async def test_MUST_admit_one_winner_under_concurrency(
        self, policy_store, make_policy
    ) -> None:
        results = await asyncio.gather(
            *(
                policy_store.create(make_policy("seal_race", resource_id=f"r{i}"))
                for i in range(10)
            ),
            return_exceptions=True,
        )
        failures = [r for r in results if isinstance(r, DuplicatePolicyId)]
        assert len(failures) == 9
        assert await policy_store.count() == 1
