"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Histogram


REQUEST_COUNTER = Counter(
	"roomshare_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"roomshare_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

AUTH_REJECTED = Counter(
	"roomshare_auth_rejected_total",
	"Requests rejected during authentication",
	["reason"],
)

ROOMS_CREATED = Counter(
	"roomshare_rooms_created_total",
	"Rooms created",
	["creation_type"],
)

ROOMS_JOIN = Counter(
	"roomshare_rooms_join_total",
	"Room join operations committed",
	["path"],
)

ROOMS_LEAVE = Counter(
	"roomshare_rooms_leave_total",
	"Room leave operations committed",
)

ROOMS_SWITCH = Counter(
	"roomshare_rooms_switch_total",
	"Room switch operations committed",
)

ROOMS_STATUS_CHANGES = Counter(
	"roomshare_rooms_status_changes_total",
	"Room status or visibility changes",
	["change"],
)

JOIN_REQUESTS = Counter(
	"roomshare_join_requests_total",
	"Join request workflow transitions",
	["outcome"],
)

OWNERSHIP_CLAIMS = Counter(
	"roomshare_ownership_claims_total",
	"Ownership claim workflow transitions",
	["outcome"],
)

ROOMS_PRECONDITION_FAILED = Counter(
	"roomshare_rooms_precondition_failed_total",
	"Room operations rejected by a precondition",
	["reason"],
)

ROOMS_TXN_RETRIES = Counter(
	"roomshare_rooms_txn_retries_total",
	"Atomic room units retried after a transient store conflict",
)

ROOMS_TXN_EXHAUSTED = Counter(
	"roomshare_rooms_txn_exhausted_total",
	"Atomic room units that gave up after exhausting retries",
)

ROOM_CACHE_LOOKUPS = Counter(
	"roomshare_room_cache_lookups_total",
	"Current-room cache lookups",
	["result"],
)

SIDE_EFFECTS = Counter(
	"roomshare_side_effects_total",
	"Collaborator side effects by kind and result",
	["kind", "result"],
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_auth_rejected(reason: str) -> None:
	AUTH_REJECTED.labels(reason=reason).inc()


def inc_room_created(creation_type: str) -> None:
	ROOMS_CREATED.labels(creation_type=creation_type).inc()


def inc_room_join(path: str = "direct") -> None:
	ROOMS_JOIN.labels(path=path).inc()


def inc_room_leave() -> None:
	ROOMS_LEAVE.inc()


def inc_room_switch() -> None:
	ROOMS_SWITCH.inc()


def inc_room_status_change(change: str) -> None:
	ROOMS_STATUS_CHANGES.labels(change=change).inc()


def inc_join_request(outcome: str) -> None:
	JOIN_REQUESTS.labels(outcome=outcome).inc()


def inc_ownership_claim(outcome: str) -> None:
	OWNERSHIP_CLAIMS.labels(outcome=outcome).inc()


def inc_precondition_failed(reason: str) -> None:
	ROOMS_PRECONDITION_FAILED.labels(reason=reason).inc()


def inc_txn_retry() -> None:
	ROOMS_TXN_RETRIES.inc()


def inc_txn_exhausted() -> None:
	ROOMS_TXN_EXHAUSTED.inc()


def room_cache_lookup(hit: bool) -> None:
	ROOM_CACHE_LOOKUPS.labels(result="hit" if hit else "miss").inc()


def side_effect(kind: str, *, ok: bool) -> None:
	SIDE_EFFECTS.labels(kind=kind, result="ok" if ok else "error").inc()
