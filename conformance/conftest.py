"""Shared fixtures for key-server conformance tests.

Provides a controllable clock, a fixed configuration, and a fully
composed :class:`KeyServer` over an in-memory policy store.
"""
from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from seal_policy.access.evaluator import AccessEvaluator
from seal_policy.core.config import KeyServerConfig
from seal_policy.core.interfaces import InMemoryPolicyStore
from seal_policy.core.types import MasterSecret, Policy
from seal_policy.crypto.derivation import KeyDerivation
from seal_policy.server import KeyServer
from seal_policy.wire.http import create_http_handler

START = datetime(2026, 1, 15, 12, 0, tzinfo=UTC)
MASTER_SECRET = b"conformance-master-secret-32byte"
KEY_SALT = "conformance-salt"


class FakeClock:
    """A clock that only moves when told to."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now += delta


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------
@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def master_secret() -> MasterSecret:
    return MasterSecret(MASTER_SECRET)


@pytest.fixture()
def derivation() -> KeyDerivation:
    return KeyDerivation(KEY_SALT)


@pytest.fixture()
def policy_store() -> InMemoryPolicyStore:
    return InMemoryPolicyStore()


@pytest.fixture()
def evaluator(clock: FakeClock) -> AccessEvaluator:
    return AccessEvaluator(clock=clock)


@pytest.fixture()
def make_policy(clock: FakeClock):
    """Factory for policies created at the fake clock's current time."""

    def _make(policy_id: str = "seal_conformance", **fields: object) -> Policy:
        values: dict[str, object] = {
            "policy_id": policy_id,
            "resource_id": "quiz-conformance",
            "derived_key_ref": "kref_conformance",
            "created_at": clock(),
        }
        values.update(fields)
        return Policy(**values)  # type: ignore[arg-type]

    return _make


# ---------------------------------------------------------------------------
# Server fixtures
# ---------------------------------------------------------------------------
@pytest.fixture()
def config() -> KeyServerConfig:
    return KeyServerConfig(
        server_id="seal-conformance",
        master_secret=MASTER_SECRET,
        key_salt=KEY_SALT,
    )


@pytest.fixture()
def server(config: KeyServerConfig, clock: FakeClock) -> KeyServer:
    return KeyServer(config, clock=clock)


@pytest.fixture()
def http_handler(server: KeyServer):
    return create_http_handler(server)
