"""
Presence Module

Re-exports the registry, the connection handle model and the Redis mirror.
"""
from .models import RelayConnection
from .registry import PresenceRegistry
from .status import StatusService, status_service

# Singleton instance shared by the relay endpoint and the REST surface
presence_registry = PresenceRegistry()

__all__ = [
    "RelayConnection",
    "PresenceRegistry",
    "StatusService",
    "presence_registry",
    "status_service",
]
