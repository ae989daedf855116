"""Shared fixtures: an in-memory transport and a mock HTTP client."""

import asyncio
from collections import defaultdict

import httpx
import pytest
import pytest_asyncio

from supersocket.connection import SuperSocket
from supersocket.errors import TransportError
from supersocket.types import CloseEvent, ConnectionConfig, ReadyState

BASE_URL = "wss://example.test/ws"


class FakeHandle:
    """TransportHandle driven by the test instead of a network."""

    def __init__(self, url, protocols):
        self.url = url
        self.protocols = protocols
        self.ready_state = ReadyState.CONNECTING
        self.sent = []
        self.close_calls = []
        self._listeners = defaultdict(list)

    def on(self, event, callback):
        self._listeners[event].append(callback)

    def send(self, data):
        if self.ready_state != ReadyState.OPEN:
            raise TransportError("not open")
        self.sent.append(data)

    def close(self, code=1000, reason=""):
        self.close_calls.append((code, reason))
        self.ready_state = ReadyState.CLOSED

    async def wait_closed(self):
        return None

    # -- Drivers --

    def emit_open(self):
        self.ready_state = ReadyState.OPEN
        self._emit("open", None)

    def emit_message(self, data):
        self._emit("message", data)

    def emit_error(self, message="boom"):
        self.ready_state = ReadyState.CLOSED
        self._emit("error", TransportError(message))
        self._emit("close", CloseEvent(1006, message, was_clean=False))

    def emit_close(self, code=1006, reason=""):
        self.ready_state = ReadyState.CLOSED
        self._emit("close", CloseEvent(code, reason, was_clean=code == 1000))

    def _emit(self, event, payload):
        for callback in list(self._listeners[event]):
            callback(payload)


class FakeTransport:
    """Records every handle it opens.

    behavior:
        ``"manual"`` -- handles stay CONNECTING until the test drives them.
        ``"open"``   -- handles open on the next loop iteration.
        ``"fail"``   -- handles error out on the next loop iteration.
    """

    def __init__(self, behavior="manual"):
        self.behavior = behavior
        self.handles = []

    def open(self, url, protocols=None):
        handle = FakeHandle(url, protocols)
        self.handles.append(handle)
        loop = asyncio.get_running_loop()
        if self.behavior == "open":
            loop.call_soon(handle.emit_open)
        elif self.behavior == "fail":
            loop.call_soon(handle.emit_error, "connection refused")
        return handle

    @property
    def last(self):
        return self.handles[-1]

    @property
    def opens(self):
        return len(self.handles)


class HttpRecorder:
    """httpx.MockTransport handler answering with a fixed status."""

    def __init__(self, status=200, fail=False):
        self.status = status
        self.fail = fail
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        if self.fail:
            raise httpx.ConnectError("collector unreachable", request=request)
        return httpx.Response(self.status)


@pytest.fixture()
def transport():
    return FakeTransport()


@pytest.fixture()
def http_recorder():
    return HttpRecorder()


@pytest_asyncio.fixture()
async def http_client(http_recorder):
    client = httpx.AsyncClient(transport=httpx.MockTransport(http_recorder))
    yield client
    await client.aclose()


@pytest_asyncio.fixture()
async def make_socket(transport, http_client):
    """Factory building sockets on the fake transport; closes them on teardown."""
    created = []

    def factory(url=BASE_URL, protocols=None, **options):
        sock = SuperSocket(
            url,
            protocols,
            ConnectionConfig(**options),
            transport=transport,
            http_client=http_client,
        )
        created.append(sock)
        return sock

    yield factory

    for sock in created:
        await sock.close()


async def settle(rounds=3):
    """Let call_soon callbacks and fired tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)
