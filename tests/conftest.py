import json
import re

import httpx
import pytest

from app.core.api_client import ApiClient
from app.core.connectivity import ConnectivityMonitor
from app.core.session import InMemorySession
from app.database.engine import create_engine
from app.database.store import LocalStore
from app.services.event_bus import EventBus


class FakeApi:
    """
    Scriptable remote API served through httpx.MockTransport.

    Routes map ``(METHOD, path regex)`` to a handler returning either
    ``(status, body)`` or an exception instance to raise.
    """

    def __init__(self):
        self.routes = []
        self.calls = []

    def route(self, method, pattern, handler=None, status=200, body=None):
        if handler is None:
            def handler(request, match):
                return status, body
        self.routes.insert(0, (method, re.compile(f"^{pattern}$"), handler))

    def fail(self, method, pattern, exc_factory):
        def handler(request, match):
            return exc_factory(request)
        self.route(method, pattern, handler)

    def calls_to(self, method=None, path=None):
        return [
            call for call in self.calls
            if (method is None or call["method"] == method) and (path is None or call["path"] == path)
        ]

    def handle(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content) if request.content else None
        self.calls.append({
            "method": request.method,
            "path": request.url.path,
            "params": dict(request.url.params),
            "json": body,
            "headers": dict(request.headers),
        })

        for method, pattern, handler in self.routes:
            match = pattern.match(request.url.path)
            if method == request.method and match:
                result = handler(request, match)
                if isinstance(result, Exception):
                    raise result
                if isinstance(result, httpx.Response):
                    return result
                status, payload = result
                if payload is None:
                    return httpx.Response(status)
                return httpx.Response(status, json=payload)

        return httpx.Response(404, json={"message": "Not found"})


def _connect_error(request):
    return httpx.ConnectError("Connection refused", request=request)


def _token_expired(request):
    return httpx.Response(401, json={"code": "TOKEN_EXPIRED", "message": "jwt expired"})


@pytest.fixture(name="connect_error")
def connect_error_fixture():
    """Handler that fails the request at the transport level."""
    return _connect_error


@pytest.fixture(name="token_expired")
def token_expired_fixture():
    """Handler that answers with an expired-token error."""
    return _token_expired


@pytest.fixture(name="store")
async def store_fixture():
    store = LocalStore(engine=create_engine("sqlite+aiosqlite:///:memory:", echo=False))
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture(name="fake_api")
def fake_api_fixture():
    return FakeApi()


@pytest.fixture(name="session")
def session_fixture():
    return InMemorySession(user={"id": "u1", "email": "sup@example.com"}, token="test-token")


@pytest.fixture(name="client")
async def client_fixture(fake_api: FakeApi, session: InMemorySession):
    client = ApiClient(session, base_url="http://api.test", transport=httpx.MockTransport(fake_api.handle))
    yield client
    await client.close()


@pytest.fixture(name="monitor")
def monitor_fixture():
    return ConnectivityMonitor(initially_online=True)


@pytest.fixture(name="event_bus")
def event_bus_fixture():
    return EventBus()


@pytest.fixture(name="make_service")
def make_service_fixture(client, store, session, monitor, event_bus):
    """Build a service with test-friendly sync settings (no debounce)."""
    def make(service_class, api_class, **kwargs):
        kwargs.setdefault("monitor", monitor)
        kwargs.setdefault("event_bus", event_bus)
        if hasattr(service_class, "sync_pending"):
            kwargs.setdefault("sync_debounce", 0)
        return service_class(api_class(client), store, session, **kwargs)
    return make
