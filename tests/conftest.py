import os

# Must be set before server_init is imported anywhere: eventlet's
# monkey-patching does not mix with pytest.
os.environ["RELAY_SOCKETIO_ASYNC"] = "threading"

import pytest

from constants import get_default_settings
from realtime.effects import run_effects
from realtime.routing import SignalingRouter
from realtime.stores import MemoryCallStore, MemoryMessageStore, MemoryPresenceStore


class FakeClock:
    """Deterministic stand-in for time.time()."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RouterHarness:
    """Drives a SignalingRouter the way socket_handlers does, minus Socket.IO."""

    def __init__(self, router: SignalingRouter):
        self.router = router
        self.sent = []  # (event, payload, to)

    def _send(self, event, payload, to):
        self.sent.append((event, payload, to))

    def __call__(self, event, handle, data=None):
        result = self.router.handle(event, handle, data, self._send)
        run_effects(result.effects)
        return result

    def connect(self, handle, user_id=None):
        self("connect", handle)
        if user_id is not None:
            self("register-user", handle, user_id)

    def to(self, handle, event=None):
        return [(e, p) for (e, p, t) in self.sent if t == handle and (event is None or e == event)]

    def broadcasts(self, event=None):
        return [p for (e, p, t) in self.sent if t is None and (event is None or e == event)]

    def clear(self):
        self.sent.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def stores():
    return MemoryMessageStore(), MemoryCallStore(), MemoryPresenceStore()


@pytest.fixture
def router(stores, clock):
    message_store, call_store, presence_store = stores
    return SignalingRouter(message_store, call_store, presence_store, clock=clock)


@pytest.fixture
def relay(router):
    return RouterHarness(router)


@pytest.fixture
def settings(tmp_path):
    s = get_default_settings()
    s.update(
        {
            "store_backend": "memory",
            "persistence_mode": "inline",
            "secret_key": "test-secret",
            "log_file_path": str(tmp_path / "server.log"),
        }
    )
    return s


@pytest.fixture
def app_and_socketio(settings, stores):
    from server_init import create_app

    return create_app(settings, stores=stores)


@pytest.fixture
def app(app_and_socketio):
    return app_and_socketio[0]


@pytest.fixture
def socketio(app_and_socketio):
    return app_and_socketio[1]


@pytest.fixture
def make_client(app, socketio):
    """Factory for connected Socket.IO test clients; disconnects leftovers."""
    clients = []

    def _make(user_id=None):
        client = socketio.test_client(app)
        assert client.is_connected()
        if user_id is not None:
            client.emit("register-user", user_id)
        clients.append(client)
        return client

    yield _make

    for c in clients:
        if c.is_connected():
            c.disconnect()
