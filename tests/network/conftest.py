"""Fixtures for aggregation server tests.

``fake_server`` replaces ``aiohttp.ClientSession`` with an in-memory fake
that answers from a route table and records every request.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional
from unittest.mock import patch

import aiohttp
import pytest
import pytest_asyncio

from modhub.core.storage import MemoryStore
from modhub.network.session import AggregationClientSession

BASE_URL = "http://agg.test"

Responder = Callable[[dict], Awaitable[tuple]]


@dataclass
class Route:
    status: int = 200
    body: Any = None
    error: Optional[BaseException] = None
    gate: Optional[asyncio.Event] = None
    responder: Optional[Responder] = None


@dataclass
class RecordedCall:
    method: str
    url: str
    kwargs: dict = field(default_factory=dict)


class FakeResponse:
    def __init__(self, status: int, body: Any) -> None:
        self.status = status
        self._body = body

    async def json(self, content_type: Optional[str] = "application/json", **kwargs: Any) -> Any:
        if isinstance(self._body, BaseException):
            raise self._body
        return self._body


class _RequestContext:
    def __init__(self, server: "FakeServer", method: str, url: str, kwargs: dict) -> None:
        self.server = server
        self.method = method
        self.url = url
        self.kwargs = kwargs

    async def __aenter__(self) -> FakeResponse:
        self.server.calls.append(RecordedCall(self.method, self.url, self.kwargs))
        route = self.server.routes.get((self.method, self.url))
        if route is None:
            raise aiohttp.ClientConnectionError(f"Cannot connect to {self.url}")
        if route.gate is not None:
            await route.gate.wait()
        if route.error is not None:
            raise route.error
        if route.responder is not None:
            status, body = await route.responder(self.kwargs)
            return FakeResponse(status, body)
        return FakeResponse(route.status, route.body)

    async def __aexit__(self, *exc: Any) -> bool:
        return False


class FakeClientSession:
    def __init__(self, server: "FakeServer", **kwargs: Any) -> None:
        self.server = server
        self.kwargs = kwargs

    async def __aenter__(self) -> "FakeClientSession":
        return self

    async def __aexit__(self, *exc: Any) -> bool:
        return False

    def head(self, url: str, **kwargs: Any) -> _RequestContext:
        return _RequestContext(self.server, "HEAD", url, kwargs)

    def get(self, url: str, **kwargs: Any) -> _RequestContext:
        return _RequestContext(self.server, "GET", url, kwargs)

    def post(self, url: str, **kwargs: Any) -> _RequestContext:
        return _RequestContext(self.server, "POST", url, kwargs)


class FakeServer:
    """Route table standing in for the aggregation server."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str], Route] = {}
        self.calls: list[RecordedCall] = []

    def route(self, method: str, url: str, **kwargs: Any) -> Route:
        route = Route(**kwargs)
        self.routes[(method, url)] = route
        return route

    def healthy(self, base_url: str = BASE_URL) -> None:
        self.route("HEAD", f"{base_url}/health")
        self.route("GET", f"{base_url}/health", body={"status": "ok"})

    def health(self, body: Any, status: int = 200, base_url: str = BASE_URL) -> None:
        self.route("GET", f"{base_url}/health", status=status, body=body)

    def remove(self, method: str, url: str) -> None:
        self.routes.pop((method, url), None)

    def calls_to(self, method: str, url: str) -> list[RecordedCall]:
        return [c for c in self.calls if c.method == method and c.url == url]

    def client_session(self, *args: Any, **kwargs: Any) -> FakeClientSession:
        return FakeClientSession(self, **kwargs)


@pytest.fixture
def fake_server():
    server = FakeServer()
    with patch("aiohttp.ClientSession", server.client_session):
        yield server


@pytest_asyncio.fixture
async def make_session(fake_server):
    """Factory for sessions with millisecond backoff; shut down after the test."""
    sessions: list[AggregationClientSession] = []

    def factory(stored_url: Optional[str] = None, **kwargs: Any) -> AggregationClientSession:
        store = MemoryStore()
        if stored_url is not None:
            store.set("serverUrl", stored_url)
        options = {
            "default_server_url": BASE_URL,
            "health_check_interval": 0,
            "backoff_min": 1 / 1024,
            "backoff_max": 27 / 1024,
            "backoff_multiplier": 3,
        }
        options.update(kwargs)
        session = AggregationClientSession(store=store, **options)
        sessions.append(session)
        return session

    yield factory

    for session in sessions:
        await session.shutdown()


class EventRecorder:
    """Collects a session's state_change and retry events."""

    def __init__(self, session: AggregationClientSession) -> None:
        self.states: list[str] = []
        self.retries: list[int] = []
        session.subscribe("state_change", self.states.append)
        session.subscribe("retry", self.retries.append)


@pytest.fixture
def recorder():
    return EventRecorder


async def wait_for(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    """Poll ``predicate`` until true or fail after ``timeout`` seconds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.001)


@pytest.fixture
def wait_until():
    return wait_for
