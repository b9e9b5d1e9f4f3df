"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary


REQUEST_COUNTER = Counter(
	"chatline_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"chatline_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"chatline_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"chatline_socketio_events_total",
	"Socket.IO events handled or emitted per namespace",
	["namespace", "event"],
)

PRESENCE_ONLINE = Gauge(
	"chatline_presence_online_users",
	"Users currently identified on a live connection",
)

PRESENCE_DROPPED_DELIVERIES = Counter(
	"chatline_presence_dropped_deliveries_total",
	"Direct socket deliveries dropped because the recipient was offline",
	["event"],
)

STATUS_CREATED = Counter(
	"chatline_status_created_total",
	"Statuses created",
	["kind"],
)

STATUS_VIEWS = Counter(
	"chatline_status_views_total",
	"Status view transitions",
	["result"],
)

STATUS_DELETED = Counter(
	"chatline_status_deleted_total",
	"Statuses deleted by their owner",
)

STATUS_PURGED = Counter(
	"chatline_status_purged_total",
	"Expired statuses physically removed by retention",
)

MEDIA_DELETE_FAILURES = Counter(
	"chatline_media_delete_failures_total",
	"Best-effort media deletions that failed",
	["source"],
)

FRIEND_REQUESTS = Counter(
	"chatline_friend_requests_total",
	"Friend request lifecycle transitions",
	["action"],
)

BLOCKS_TOTAL = Counter(
	"chatline_blocks_total",
	"Block and unblock operations",
	["action"],
)

MESSAGES_SENT = Counter(
	"chatline_messages_sent_total",
	"Chat messages persisted",
	["kind"],
)

MESSAGE_RECEIPTS = Counter(
	"chatline_message_receipts_total",
	"Delivery and read receipts recorded",
	["status"],
)

GROUPS_CREATED = Counter(
	"chatline_groups_created_total",
	"Groups created",
)

IDENTITY_REGISTER = Counter(
	"chatline_identity_register_total",
	"Accounts registered",
)

IDENTITY_LOGIN = Counter(
	"chatline_identity_login_total",
	"Login attempts",
	["result"],
)

IDENTITY_PWRESET = Counter(
	"chatline_identity_pwreset_total",
	"Password reset requests and consumptions",
	["action", "result"],
)

PROFILE_UPDATE = Counter(
	"chatline_profile_update_total",
	"Profile updates",
	["field"],
)

REDIS_UP = Gauge("chatline_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("chatline_redis_latency_seconds", "Redis ping latency (seconds)")

POSTGRES_UP = Gauge("chatline_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("chatline_postgres_latency_seconds", "Postgres ping latency (seconds)")

BACKGROUND_RUNS = Counter(
	"chatline_background_runs_total",
	"Background job executions",
	["name", "result"],
)

BACKGROUND_DURATION = Histogram(
	"chatline_background_duration_seconds",
	"Background job duration in seconds",
	["name"],
	buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 5.0, 30.0),
)


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def presence_online(count: int) -> None:
	PRESENCE_ONLINE.set(count)


def inc_presence_dropped(event: str) -> None:
	PRESENCE_DROPPED_DELIVERIES.labels(event=event).inc()


def inc_status_created(kind: str) -> None:
	STATUS_CREATED.labels(kind=kind).inc()


def inc_status_view(result: str) -> None:
	STATUS_VIEWS.labels(result=result).inc()


def inc_status_deleted() -> None:
	STATUS_DELETED.inc()


def inc_status_purged(count: int) -> None:
	if count <= 0:
		return
	STATUS_PURGED.inc(count)


def inc_media_delete_failure(source: str) -> None:
	MEDIA_DELETE_FAILURES.labels(source=source).inc()


def inc_friend_request(action: str) -> None:
	FRIEND_REQUESTS.labels(action=action).inc()


def inc_block(action: str) -> None:
	BLOCKS_TOTAL.labels(action=action).inc()


def inc_message_sent(kind: str) -> None:
	MESSAGES_SENT.labels(kind=kind).inc()


def inc_message_receipt(status: str) -> None:
	MESSAGE_RECEIPTS.labels(status=status).inc()


def inc_group_created() -> None:
	GROUPS_CREATED.inc()


def inc_identity_register() -> None:
	IDENTITY_REGISTER.inc()


def inc_identity_login(result: str) -> None:
	IDENTITY_LOGIN.labels(result=result).inc()


def inc_identity_pwreset(action: str, result: str) -> None:
	IDENTITY_PWRESET.labels(action=action, result=result).inc()


def inc_profile_update(field: str) -> None:
	PROFILE_UPDATE.labels(field=field).inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)


def record_job_run(name: str, *, result: str, duration_seconds: float | None = None) -> None:
	BACKGROUND_RUNS.labels(name=name, result=result).inc()
	if duration_seconds is not None:
		BACKGROUND_DURATION.labels(name=name).observe(duration_seconds)
