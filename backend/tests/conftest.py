import sys
import pytest
from pathlib import Path

# Add backend/ (1 level up from tests/) to sys.path so tests can import 'signlink'
root = Path(__file__).resolve().parents[1]
if str(root) not in sys.path:
    sys.path.insert(0, str(root))

import os
os.environ.setdefault('PYTHONPATH', str(root))

# Keep the relay in-process: no Redis mirror, no metrics listener.
os.environ.setdefault('PRESENCE_MIRROR_ENABLED', 'false')
os.environ.setdefault('METRICS_ENABLED', 'false')

from signlink.services.presence import PresenceRegistry, StatusService
from tests.helpers import make_connection


@pytest.fixture
def registry():
    """A fresh presence registry per test."""
    return PresenceRegistry()


@pytest.fixture
def status():
    """Presence mirror with Redis disabled."""
    return StatusService(enabled=False)


@pytest.fixture
def connect():
    """Factory for relay connections backed by a recording fake socket."""
    def _connect(user_id=None):
        return make_connection(user_id)
    return _connect


@pytest.fixture(autouse=True)
def _reset_app_registry():
    # The app-level singleton outlives individual TestClient sessions
    from signlink.services.presence import presence_registry
    presence_registry._connections.clear()
    presence_registry._online.clear()
    yield
    presence_registry._connections.clear()
    presence_registry._online.clear()
