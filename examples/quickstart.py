#!/usr/bin/env python3
"""Seal key server quickstart.

Demonstrates the core workflow of the policy engine:

1. Create a key server with an in-memory policy store.
2. Create a time-locked, whitelisted policy.
3. Seal a payload under the policy's derived key.
4. Try to open it too early, from the wrong address, then legitimately.
5. Inspect health and metrics.

Run:
    python examples/quickstart.py
"""
from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta

from seal_policy import AccessDenied, KeyServer, KeyServerConfig


class ManualClock:
    def __init__(self) -> None:
        self.now = datetime.now(UTC)

    def __call__(self) -> datetime:
        return self.now


async def main() -> None:
    # -- Step 1: Create the key server ---------------------------------------
    clock = ManualClock()
    server = KeyServer(
        KeyServerConfig(
            server_id="quickstart-server",
            master_secret=b"quickstart-master-secret-32bytes",
        ),
        clock=clock,
    )
    print("[1] Key server created: quickstart-server")

    # -- Step 2: Create a policy ---------------------------------------------
    policy = await server.create_policy(
        "quiz-42",
        time_lock_hours=1,
        privacy_enabled=True,
        whitelist=["0xAAA"],
    )
    print(f"[2] Policy created: {policy.policy_id}")
    print(f"    unlocks at: {policy.time_lock_until.isoformat()}")
    print(f"    key ref:    {policy.derived_key_ref}")

    # -- Step 3: Seal a payload ----------------------------------------------
    sealed = await server.encrypt(policy.policy_id, b"The answer is 42")
    print(f"[3] Sealed {len(sealed.ciphertext)} bytes")

    # -- Step 4: Open it -----------------------------------------------------
    try:
        await server.decrypt(policy.policy_id, sealed.ciphertext, "0xaaa")
    except AccessDenied as exc:
        print(f"[4] Too early:      {exc.decision.reason}")

    clock.now += timedelta(hours=1)
    try:
        await server.decrypt(policy.policy_id, sealed.ciphertext, "0xbbb")
    except AccessDenied as exc:
        print(f"    Wrong address:  {exc.decision.reason}")

    plaintext = await server.decrypt(policy.policy_id, sealed.ciphertext, "0xAAA")
    print(f"    Opened:         {plaintext.decode()}")

    # -- Step 5: Inspect the server ------------------------------------------
    health = await server.health()
    metrics = await server.metrics_snapshot()
    print(f"[5] Health: {health['status']}, {health['policiesCount']} policies")
    print(f"    Requests: {metrics['requests']}")

    server.close()


if __name__ == "__main__":
    asyncio.run(main())
