"""Prometheus metrics for the signaling relay.

Metrics exported:
- relay_messages_total: Counter of frames forwarded, by kind
- relay_presence_misses_total: Counter of frames dropped because the target was offline
- relay_dropped_frames_total: Counter of frames rejected, by reason
- relay_online_users: Gauge of users with a live presence entry
- relay_attached_connections: Gauge of accepted WebSocket connections

Usage:
    from signlink.services.metrics import start_metrics_server, relayed_messages

    start_metrics_server(port=8001)
    relayed_messages.labels(kind='call_offer').inc()
"""

from prometheus_client import Counter, Gauge, start_http_server
import logging

logger = logging.getLogger(__name__)

relayed_messages = Counter(
    'relay_messages_total',
    'Signaling frames forwarded to an online recipient',
    labelnames=['kind']
)

presence_misses = Counter(
    'relay_presence_misses_total',
    'Signaling frames dropped because the recipient was offline',
    labelnames=['kind']
)

dropped_frames = Counter(
    'relay_dropped_frames_total',
    'Inbound frames rejected before routing',
    labelnames=['reason']  # reason: invalid_json, invalid_schema, unbound, identity_conflict
)

online_users = Gauge(
    'relay_online_users',
    'Users with a live presence entry'
)

attached_connections = Gauge(
    'relay_attached_connections',
    'Accepted WebSocket connections'
)


def start_metrics_server(port: int = 8001):
    """Start Prometheus metrics HTTP server."""
    try:
        start_http_server(port)
        logger.info(f"✅ Metrics server started on port {port}")
    except Exception as e:
        logger.error(f"❌ Failed to start metrics server: {e}")
