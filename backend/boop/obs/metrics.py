"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

import logging

from prometheus_client import Counter, Gauge, Histogram, Summary

log = logging.getLogger(__name__)


REQUEST_COUNTER = Counter(
	"boop_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"boop_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"boop_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"boop_socketio_events_total",
	"Socket.IO events handled per namespace",
	["namespace", "event"],
)

LOCATION_UPDATES = Counter(
	"boop_location_updates_total",
	"Location updates processed by result",
	["result"],
)

LOCATION_UPDATE_LATENCY = Histogram(
	"boop_location_update_duration_seconds",
	"Time spent handling a location update end to end",
	buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
)

PROXIMITY_CANDIDATES = Summary(
	"boop_proximity_candidates",
	"Eligible candidates found per location update",
)

PROXIMITY_ALERTS = Counter(
	"boop_proximity_alerts_total",
	"Proximity alerts emitted per pair",
	["zone"],
)

PROXIMITY_ALERTS_SUPPRESSED = Counter(
	"boop_proximity_alerts_suppressed_total",
	"Proximity alerts suppressed by pair dedup",
)

BOOPS_TRIGGERED = Counter(
	"boop_boops_total",
	"Boops triggered by source",
	["source"],
)

BOOPS_PERSISTED = Counter(
	"boop_boop_records_total",
	"Boop records appended to a group log by result",
	["result"],
)

DELIVERIES = Counter(
	"boop_deliveries_total",
	"Socket deliveries per event and result",
	["event", "result"],
)

CONNECTED_USERS = Gauge(
	"boop_connected_users",
	"Users with at least one live connection",
)

PRESENCE_SWEEPER_OFFLINE = Counter(
	"boop_presence_sweeper_offline_total",
	"Users marked offline by the stale presence sweeper",
)

REDIS_UP = Gauge("boop_redis_up", "Redis readiness status (1=up)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def inc_location_update(result: str) -> None:
	LOCATION_UPDATES.labels(result=result).inc()


def inc_proximity_alert(zone: str) -> None:
	PROXIMITY_ALERTS.labels(zone=zone).inc()


def inc_boop(source: str) -> None:
	BOOPS_TRIGGERED.labels(source=source).inc()


def inc_boop_persisted(result: str) -> None:
	BOOPS_PERSISTED.labels(result=result).inc()


def inc_delivery(event: str, result: str, count: int = 1) -> None:
	if count <= 0:
		return
	DELIVERIES.labels(event=event, result=result).inc(count)


def set_connected_users(count: int) -> None:
	CONNECTED_USERS.set(float(count))


def mark_redis(ok: bool) -> None:
	REDIS_UP.set(1.0 if ok else 0.0)
