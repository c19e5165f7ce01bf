"""Tests for the client subscription adapter."""

import asyncio
import json
from contextlib import suppress
from datetime import UTC, datetime
from types import SimpleNamespace
from uuid import uuid4

import httpx
import pytest
import websockets
from websockets.exceptions import WebSocketException

from healthqueue.client.events import QueueEventBus
from healthqueue.client.subscription import QueueClientError, QueueSubscriptionClient
from healthqueue.client.transports import PollingTransport, TransportClosed, WebSocketTransport
from healthqueue.schemas.auth import UserRole
from healthqueue.schemas.queue import QueueChangedEvent, QueueChangeReason, QueueStatus


def make_event() -> QueueChangedEvent:
    return QueueChangedEvent(
        doctor_id=uuid4(),
        patient_id=uuid4(),
        entry_id=uuid4(),
        reason=QueueChangeReason.JOINED,
        status=QueueStatus.WAITING,
        timestamp=datetime.now(UTC),
    )


class ScriptedTransport:
    """Transport fed by the test: events, None (invalidate) or exceptions."""

    def __init__(self, failing_connects: int = 0):
        self.failing_connects = failing_connects
        self.connects = 0
        self.closed = False
        self._items: asyncio.Queue = asyncio.Queue()

    def push(self, item) -> None:
        self._items.put_nowait(item)

    async def connect(self) -> None:
        self.connects += 1
        if self.failing_connects:
            self.failing_connects -= 1
            raise TransportClosed("connection refused")

    async def receive(self):
        item = await self._items.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True
        self._items.put_nowait(TransportClosed("closed"))


class FakeApi:
    """Records requests and answers like the queue API."""

    def __init__(self):
        self.requests: list[str] = []
        self.view_version = 0
        self.join_error: tuple[int, dict] | None = None
        self.view_errors = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(f"{request.method} {request.url.path}")
        assert request.headers["Authorization"] == "Bearer token"

        if request.method == "POST":
            if self.join_error:
                status_code, body = self.join_error
                return httpx.Response(status_code, json=body)
            return httpx.Response(201, json={"id": str(uuid4()), "status": "waiting"})

        if self.view_errors:
            self.view_errors -= 1
            return httpx.Response(503, json={"error": "BusyException", "message": "busy"})

        self.view_version += 1
        return httpx.Response(200, json={"entry": None, "version": self.view_version})

    @property
    def view_requests(self) -> int:
        return sum(1 for r in self.requests if r.startswith("GET"))


async def eventually(condition, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not condition():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def api() -> FakeApi:
    return FakeApi()


@pytest.fixture
def make_client(api):
    def factory(transport, role=UserRole.PATIENT, identity=None, **kwargs):
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(api.handler), base_url="http://test"
        )
        return QueueSubscriptionClient(
            "http://test",
            "token",
            role,
            identity or str(uuid4()),
            transport,
            http_client=http,
            initial_backoff=0.01,
            **kwargs,
        )

    return factory


def test_view_path_per_role(make_client):
    transport = ScriptedTransport()
    identity = str(uuid4())

    assert make_client(transport, UserRole.PATIENT, identity).view_path == (
        f"/api/v1/queue/patients/{identity}/status"
    )
    assert make_client(transport, UserRole.DOCTOR, identity).view_path == (
        f"/api/v1/queue/doctor/{identity}"
    )
    assert make_client(transport, UserRole.ADMIN, identity).view_path == (
        "/api/v1/admin/queues/overview"
    )


async def test_refetches_on_connect_and_on_every_event(make_client, api):
    transport = ScriptedTransport()
    client = make_client(transport)
    received = []
    client.events.on_queue_changed(received.append)
    event = make_event()

    task = asyncio.create_task(client.run())
    transport.push(event)
    transport.push(None)
    await eventually(lambda: api.view_requests == 3)

    assert received == [event]
    assert client.view == {"entry": None, "version": 3}
    assert client.stale is False

    await client.close()
    await task
    assert transport.closed


async def test_reconnects_and_resyncs_after_drop(make_client, api):
    transport = ScriptedTransport()
    client = make_client(transport)

    task = asyncio.create_task(client.run())
    await eventually(lambda: api.view_requests == 1)
    transport.push(TransportClosed("network down"))
    await eventually(lambda: transport.connects == 2 and api.view_requests == 2)

    assert client.stale is False

    await client.close()
    await task


async def test_view_is_stale_while_disconnected(make_client, api):
    transport = ScriptedTransport()
    client = make_client(transport, max_backoff=60.0)
    client.initial_backoff = 60.0

    task = asyncio.create_task(client.run())
    await eventually(lambda: api.view_requests == 1)
    transport.push(TransportClosed("network down"))
    await eventually(lambda: client.stale)

    assert client.view == {"entry": None, "version": 1}

    task.cancel()
    with suppress(asyncio.CancelledError):
        await task


async def test_gives_up_after_max_attempts(make_client):
    transport = ScriptedTransport(failing_connects=5)
    client = make_client(transport)

    with pytest.raises(TransportClosed):
        await client.run(max_attempts=2)

    assert transport.connects == 2
    assert client.stale is True


async def test_mutation_refetches_after_confirmation(make_client, api):
    client = make_client(ScriptedTransport())
    doctor_id = uuid4()

    result = await client.join(doctor_id)

    assert result["status"] == "waiting"
    assert api.requests == [
        "POST /api/v1/queue/join",
        f"GET {client.view_path}",
    ]
    assert client.view is not None


async def test_failed_mutation_leaves_view_untouched(make_client, api):
    client = make_client(ScriptedTransport())
    await client.refresh()
    view = client.view
    api.join_error = (409, {"error": "ConflictException", "message": "Already queued"})

    with pytest.raises(QueueClientError) as exc_info:
        await client.join(uuid4())

    assert exc_info.value.error == "ConflictException"
    assert exc_info.value.status_code == 409
    assert not exc_info.value.retryable
    assert client.view is view
    assert api.view_requests == 1


async def test_busy_error_is_retryable(make_client, api):
    client = make_client(ScriptedTransport())
    api.join_error = (503, {"error": "BusyException", "message": "Queue is busy"})

    with pytest.raises(QueueClientError) as exc_info:
        await client.join(uuid4())

    assert exc_info.value.retryable


async def test_event_bus_unsubscribe_and_failing_handler():
    bus = QueueEventBus()
    seen = []

    def broken(event):
        raise RuntimeError("handler bug")

    async def collect(event):
        seen.append(event)

    bus.on_queue_changed(broken)
    unsubscribe = bus.on_queue_changed(collect)
    event = make_event()

    await bus.emit(event)
    unsubscribe()
    unsubscribe()
    await bus.emit(make_event())

    assert seen == [event]
    assert len(bus) == 1


async def test_polling_transport_invalidates_until_closed():
    transport = PollingTransport(interval=0.01)
    await transport.connect()

    assert await transport.receive() is None

    await transport.close()
    with pytest.raises(TransportClosed):
        await transport.receive()


HELLO = json.dumps({"type": "connected", "role": "patient", "channels": ["patient:1"]})


class FakeSocket:
    """Server side of one WebSocket session, replaying scripted frames."""

    def __init__(self, frames: list[str]):
        self.frames = list(frames)
        self.closed = False
        self._closed_event = asyncio.Event()

    async def recv(self) -> str:
        if self.frames:
            return self.frames.pop(0)
        await self._closed_event.wait()
        raise WebSocketException("connection closed")

    async def close(self) -> None:
        self.closed = True
        self._closed_event.set()


@pytest.fixture
def sockets(monkeypatch):
    """Every websockets.connect call opens the next scripted socket."""
    opened: list[FakeSocket] = []
    scripts: list[list[str]] = []

    async def fake_connect(url, **kwargs):
        socket = FakeSocket(scripts.pop(0) if scripts else [HELLO])
        opened.append(socket)
        return socket

    monkeypatch.setattr(websockets, "connect", fake_connect)
    return SimpleNamespace(opened=opened, scripts=scripts)


async def test_reconnect_closes_previous_socket(sockets):
    transport = WebSocketTransport("ws://test/api/v1/ws/queue", "token")

    await transport.connect()
    await transport.connect()

    first, second = sockets.opened
    assert first.closed
    assert not second.closed
    assert transport.channels == ["patient:1"]

    await transport.close()
    assert second.closed


@pytest.mark.parametrize("frame", ["not json", "[1, 2]", '{"type": "pong"}'])
async def test_bad_handshake_is_transport_closed(sockets, frame):
    sockets.scripts.append([frame])
    transport = WebSocketTransport("ws://test/api/v1/ws/queue", "token")

    with pytest.raises(TransportClosed):
        await transport.connect()

    assert sockets.opened[0].closed


async def test_malformed_event_becomes_invalidation(sockets):
    event = make_event()
    sockets.scripts.append(
        [
            HELLO,
            '{"type": "pong"}',
            '{"type": "queue_changed", "doctor_id": "nope"}',
            "[]",
            event.model_dump_json(),
        ]
    )
    transport = WebSocketTransport("ws://test/api/v1/ws/queue", "token")
    await transport.connect()

    assert await transport.receive() is None
    assert await transport.receive() == event


async def test_failed_refresh_reconnects_without_leaking_sockets(sockets, make_client, api):
    api.view_errors = 1
    transport = WebSocketTransport("ws://test/api/v1/ws/queue", "token")
    client = make_client(transport)

    task = asyncio.create_task(client.run())
    await eventually(lambda: api.view_requests == 2 and not client.stale)

    first, second = sockets.opened
    assert first.closed
    assert not second.closed

    await client.close()
    await task
    assert second.closed
