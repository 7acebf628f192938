"""
Prometheus metrics for the real-time chat gateway.

Registered on the default registry so the /metrics endpoint exposed by the
FastAPI instrumentator publishes them next to the HTTP metrics.
"""
from prometheus_client import Counter, Histogram, Gauge

websocket_connections_active = Gauge(
    "websocket_connections_active",
    "Number of open WebSocket connections",
    labelnames=["instance"]
)

websocket_connections_total = Counter(
    "websocket_connections_total",
    "Total number of WebSocket connections accepted",
    labelnames=["instance"]
)

websocket_disconnections_total = Counter(
    "websocket_disconnections_total",
    "Total number of WebSocket disconnections",
    labelnames=["instance", "reason"]
)

websocket_users_connected = Gauge(
    "websocket_users_connected",
    "Number of unique authenticated users currently connected",
    labelnames=["instance"]
)

websocket_frames_received_total = Counter(
    "websocket_frames_received_total",
    "Total number of inbound frames by command",
    labelnames=["command", "instance"]
)

websocket_command_failures_total = Counter(
    "websocket_command_failures_total",
    "Total number of failed commands by reason",
    labelnames=["command", "reason", "instance"]
)

websocket_command_duration_seconds = Histogram(
    "websocket_command_duration_seconds",
    "Time to handle one WebSocket command",
    labelnames=["command", "outcome"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.075, 0.1, 0.25, 0.5, 0.75, 1.0, 2.5, 5.0]
)

chat_messages_persisted_total = Counter(
    "chat_messages_persisted_total",
    "Total number of chat messages stored",
    labelnames=["message_type", "source"]
)

chat_broadcast_deliveries_total = Counter(
    "chat_broadcast_deliveries_total",
    "Total number of broadcast frames written to connections",
    labelnames=["instance"]
)

heartbeat_terminations_total = Counter(
    "heartbeat_terminations_total",
    "Connections terminated for missing a heartbeat",
    labelnames=["instance"]
)


def update_connection_gauges(connection_count: int, user_count: int) -> None:
    """Refresh the connection gauges from current registry state."""
    websocket_connections_active.labels(instance="api").set(connection_count)
    websocket_users_connected.labels(instance="api").set(user_count)
