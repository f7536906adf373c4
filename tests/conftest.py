"""Shared fixtures for fleetsync tests."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest
from websockets.exceptions import ConnectionClosedError
from websockets.frames import Close

from fleetsync.auth import AuthProvider
from fleetsync.config import SyncConfig
from fleetsync.connection import ConnectionManager

_END = object()


class FakeTransport:
    """In-memory stand-in for a websockets client connection."""

    def __init__(self):
        self.sent: list[str] = []
        self.closed: tuple[int, str] | None = None
        self.close_code: int | None = None
        self.close_reason: str | None = None
        self._queue: asyncio.Queue = asyncio.Queue()

    def feed(self, message):
        if isinstance(message, dict):
            message = json.dumps(message)
        self._queue.put_nowait(message)

    def drop(self, code: int, reason: str = ""):
        """Simulate the server closing the connection."""
        self._queue.put_nowait(Close(code, reason))

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._queue.get()
        if isinstance(item, Close):
            if item.code in (1000, 1001):
                self.close_code = item.code
                self.close_reason = item.reason
                raise StopAsyncIteration
            raise ConnectionClosedError(item, None)
        return item

    async def send(self, message):
        if self.closed is not None:
            raise ConnectionClosedError(None, None)
        self.sent.append(message)

    async def close(self, code=1000, reason=""):
        if self.closed is None:
            self.closed = (code, reason)
            self._queue.put_nowait(Close(code, reason))

    def sent_frames(self):
        return [json.loads(m) for m in self.sent]


class FakeTransportFactory:
    """Records open attempts; raises queued errors before returning transports."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.transports: list[FakeTransport] = []
        self.errors: list[Exception] = []
        self.gate: asyncio.Event | None = None
        self.transport_cls = FakeTransport

    async def __call__(self, url, headers):
        self.calls.append((url, headers))
        if self.gate is not None:
            await self.gate.wait()
        if self.errors:
            raise self.errors.pop(0)
        transport = self.transport_cls()
        self.transports.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.transports[-1]


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


async def wait_for(predicate, timeout: float = 2.0):
    """Poll *predicate* until it holds or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def auth():
    a = MagicMock(spec=AuthProvider)
    a.current_credential.return_value = "test-jwt"
    a.is_expired.return_value = False
    return a


@pytest.fixture
def config():
    return SyncConfig(
        url="ws://console.test/ws?type=frontend",
        heartbeat_interval=3600.0,
        reconnect_delay=0.01,
        connect_timeout=1.0,
    )


@pytest.fixture
def factory():
    return FakeTransportFactory()


@pytest.fixture
def received():
    return []


@pytest.fixture
def invalidated():
    return []


@pytest.fixture
def manager(config, auth, factory, clock, received, invalidated):
    return ConnectionManager(
        config,
        auth,
        transport_factory=factory,
        on_message=received.append,
        on_session_invalidated=invalidated.append,
        clock=clock,
    )
