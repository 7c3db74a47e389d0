"""SignLink realtime layer: presence registry, signaling relay and call client."""

__version__ = "1.0.0"
