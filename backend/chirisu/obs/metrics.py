"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

REQUEST_COUNTER = Counter(
	"chirisu_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"chirisu_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

POSTGRES_UP = Gauge(
	"chirisu_postgres_up",
	"Postgres readiness (1 = reachable)",
)

POSTGRES_LATENCY = Histogram(
	"chirisu_postgres_ping_seconds",
	"Postgres readiness probe latency",
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5),
)

MOD_SUBMISSIONS_TOTAL = Counter(
	"mod_submissions_total",
	"Reports and contributions entering the moderation queue",
	["kind"],
)

MOD_QUEUE_TRANSITIONS_TOTAL = Counter(
	"mod_queue_transitions_total",
	"Moderation work item state transitions",
	["kind", "transition"],
)

MOD_QUEUE_CLAIM_CONFLICTS_TOTAL = Counter(
	"mod_queue_claim_conflicts_total",
	"Assign attempts rejected because another moderator holds the item",
	["kind"],
)

MOD_AUDIT_LATENCY_SECONDS = Histogram(
	"mod_audit_write_latency_seconds",
	"Latency of moderation audit writes",
	buckets=(0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

MOD_AUDIT_WRITE_FAILURES_TOTAL = Counter(
	"mod_audit_write_failures_total",
	"Moderation audit writes that failed (degraded mode)",
)

MOD_APPLY_TOTAL = Counter(
	"mod_apply_total",
	"Approved contribution payloads applied to entities",
	["subject_type", "result"],
)

MOD_NOTIFY_FAILURES_TOTAL = Counter(
	"mod_notify_failures_total",
	"Outcome notifications that could not be delivered",
	["kind"],
)

MOD_QUEUE_LIST_LATENCY_MS = Histogram(
	"mod_queue_list_latency_ms",
	"Moderation queue list latency (milliseconds)",
	buckets=(5.0, 10.0, 25.0, 50.0, 100.0, 250.0, 500.0, 1000.0),
)

MOD_ADMIN_REQUESTS_TOTAL = Counter(
	"mod_admin_requests_total",
	"Moderation queue API requests",
	["route", "status"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)


def inc_submission(kind: str) -> None:
	MOD_SUBMISSIONS_TOTAL.labels(kind=kind).inc()


def inc_transition(kind: str, transition: str) -> None:
	MOD_QUEUE_TRANSITIONS_TOTAL.labels(kind=kind, transition=transition).inc()


def inc_claim_conflict(kind: str) -> None:
	MOD_QUEUE_CLAIM_CONFLICTS_TOTAL.labels(kind=kind).inc()


def observe_audit_write(latency_seconds: float) -> None:
	MOD_AUDIT_LATENCY_SECONDS.observe(latency_seconds)


def inc_audit_failure() -> None:
	MOD_AUDIT_WRITE_FAILURES_TOTAL.inc()


def inc_apply(subject_type: str, result: str) -> None:
	MOD_APPLY_TOTAL.labels(subject_type=subject_type, result=result).inc()


def inc_notify_failure(kind: str) -> None:
	MOD_NOTIFY_FAILURES_TOTAL.labels(kind=kind).inc()


def observe_queue_list(latency_ms: float) -> None:
	MOD_QUEUE_LIST_LATENCY_MS.observe(latency_ms)


def inc_admin_request(route: str, status: str) -> None:
	MOD_ADMIN_REQUESTS_TOTAL.labels(route=route, status=status).inc()
