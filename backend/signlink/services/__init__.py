"""Relay Services.

This package contains the server side of the realtime layer.

Service Categories:
- Presence: registry of online users and their live connection
- Relay: per-kind signaling handlers and the WebSocket session loop

Supporting modules:
- metrics: Prometheus counters and gauges for the relay
"""
