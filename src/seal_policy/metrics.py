"""Prometheus instrumentation for the key server.

Each :class:`KeyServerMetrics` owns its own ``CollectorRegistry`` so that
several servers (or test cases) in one process never share counters.

Exposed series
--------------
``seal_requests_total{operation, outcome}``
    One increment per handled operation; ``outcome`` is ``ok`` or the
    error code.
``seal_access_decisions_total{decision}``
    Access evaluations by ``allow`` / ``deny``.
``seal_policies{state}``
    Stored policies by ``active`` / ``locked``; refreshed on scrape.
``seal_derived_keys``
    Keys held by the key ring; refreshed on scrape.
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    generate_latest,
)

PROMETHEUS_CONTENT_TYPE = CONTENT_TYPE_LATEST

OUTCOME_OK = "ok"


class KeyServerMetrics:
    """Counters and gauges for one key-server instance."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry(auto_describe=True)
        self.requests = Counter(
            "seal_requests_total",
            "Key-server operations by outcome.",
            labelnames=("operation", "outcome"),
            registry=self.registry,
        )
        self.decisions = Counter(
            "seal_access_decisions_total",
            "Access evaluations by decision.",
            labelnames=("decision",),
            registry=self.registry,
        )
        self.policies = Gauge(
            "seal_policies",
            "Stored policies by time-lock state.",
            labelnames=("state",),
            registry=self.registry,
        )
        self.derived_keys = Gauge(
            "seal_derived_keys",
            "Derived keys held in the key ring.",
            registry=self.registry,
        )
        self._request_counts: dict[tuple[str, str], int] = {}

    def record_request(self, operation: str, outcome: str = OUTCOME_OK) -> None:
        self.requests.labels(operation=operation, outcome=outcome).inc()
        key = (operation, outcome)
        self._request_counts[key] = self._request_counts.get(key, 0) + 1

    def record_decision(self, allowed: bool) -> None:
        self.decisions.labels(decision="allow" if allowed else "deny").inc()

    def set_inventory(self, *, active: int, locked: int, keys: int) -> None:
        """Refresh the gauges from the current store and key ring sizes."""
        self.policies.labels(state="active").set(active)
        self.policies.labels(state="locked").set(locked)
        self.derived_keys.set(keys)

    def request_counts(self) -> dict[str, dict[str, int]]:
        """Return ``{operation: {outcome: count}}`` for the JSON snapshot."""
        summary: dict[str, dict[str, int]] = {}
        for (operation, outcome), count in sorted(self._request_counts.items()):
            summary.setdefault(operation, {})[outcome] = count
        return summary

    def render(self) -> bytes:
        """Return the Prometheus text exposition of the registry."""
        return generate_latest(self.registry)
