from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from app.edutrack.core.config import settings


@dataclass
class MetricsSnapshot:
    content: bytes
    content_type: str


class Metrics:
    def __init__(self) -> None:
        self.enabled = bool(settings.METRICS_ENABLED)
        self._registry = None
        if self.enabled:
            self._initialize_registry()

    def _initialize_registry(self) -> None:
        self._registry = CollectorRegistry()
        self._http_requests_total = Counter(
            "http_requests_total",
            "HTTP requests by route/method/status.",
            ["route", "method", "status"],
            registry=self._registry,
        )
        self._http_request_duration_ms = Histogram(
            "http_request_duration_ms",
            "HTTP request latency in milliseconds.",
            ["route", "method", "status"],
            buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
            registry=self._registry,
        )
        self._transfer_transitions_total = Counter(
            "transfer_transitions_total",
            "Applied transfer transitions.",
            ["kind", "event", "to_status"],
            registry=self._registry,
        )
        self._transfer_noop_total = Counter(
            "transfer_noop_total",
            "Idempotent re-invocations of already applied transitions.",
            ["kind", "event"],
            registry=self._registry,
        )
        self._authorization_denied_total = Counter(
            "authorization_denied_total",
            "Authorization gate denials.",
            ["kind", "event"],
            registry=self._registry,
        )
        self._concurrency_conflict_total = Counter(
            "concurrency_conflict_total",
            "Optimistic concurrency conflicts on transfers.",
            registry=self._registry,
        )
        self._discrepancy_raised_total = Counter(
            "discrepancy_raised_total",
            "Reconciliations that ended in DISCREPANCY.",
            ["kind"],
            registry=self._registry,
        )
        self._idempotency_replay_total = Counter(
            "idempotency_replay_total",
            "Idempotent replay responses.",
            registry=self._registry,
        )
        self._lock_wait_timeout_total = Counter(
            "lock_wait_timeout_total",
            "Lock wait timeout occurrences.",
            registry=self._registry,
        )
        self._invariants_violation_total = Counter(
            "invariants_violation_total",
            "Integrity invariant violations.",
            ["check_id"],
            registry=self._registry,
        )

    def reset(self) -> None:
        if not self.enabled:
            return
        self._initialize_registry()

    def record_http_request(self, *, route: str, method: str, status_code: int, latency_ms: float) -> None:
        if not self.enabled:
            return
        labels = {"route": route, "method": method, "status": str(status_code)}
        self._http_requests_total.labels(**labels).inc()
        self._http_request_duration_ms.labels(**labels).observe(latency_ms)

    def record_transition(self, *, kind: str, event: str, to_status: str) -> None:
        if not self.enabled:
            return
        self._transfer_transitions_total.labels(kind=kind, event=event, to_status=to_status).inc()

    def record_noop(self, *, kind: str, event: str) -> None:
        if not self.enabled:
            return
        self._transfer_noop_total.labels(kind=kind, event=event).inc()

    def increment_authorization_denied(self, *, kind: str, event: str) -> None:
        if not self.enabled:
            return
        self._authorization_denied_total.labels(kind=kind, event=event).inc()

    def increment_concurrency_conflict(self) -> None:
        if not self.enabled:
            return
        self._concurrency_conflict_total.inc()

    def increment_discrepancy_raised(self, kind: str) -> None:
        if not self.enabled:
            return
        self._discrepancy_raised_total.labels(kind=kind).inc()

    def increment_idempotency_replay(self) -> None:
        if not self.enabled:
            return
        self._idempotency_replay_total.inc()

    def increment_lock_wait_timeout(self) -> None:
        if not self.enabled:
            return
        self._lock_wait_timeout_total.inc()

    def increment_invariant_violation(self, check_id: str, count: int = 1) -> None:
        if not self.enabled:
            return
        self._invariants_violation_total.labels(check_id=check_id).inc(count)

    def render(self) -> MetricsSnapshot:
        if not self.enabled:
            return MetricsSnapshot(content=b"metrics_disabled\n", content_type="text/plain")
        return MetricsSnapshot(content=generate_latest(self._registry), content_type=CONTENT_TYPE_LATEST)


metrics = Metrics()
