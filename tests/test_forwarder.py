"""Tests for the fire-and-forget EventForwarder."""

import asyncio

import httpx
import pytest

from supersocket.errors import ForwardingError
from supersocket.forwarder import EventForwarder
from supersocket.types import ForwardSpec

from tests.conftest import HttpRecorder

SPEC = ForwardSpec(
    on_message="https://collector.test/message",
    on_error="https://collector.test/error",
    headers={"X-Api-Key": "k"},
)


def _forwarder(recorder, spec=SPEC):
    failures = []
    http = httpx.AsyncClient(transport=httpx.MockTransport(recorder))
    return EventForwarder(spec, http, on_failure=failures.append), failures, http


class TestEventForwarder:
    @pytest.mark.asyncio
    async def test_forward_message(self):
        recorder = HttpRecorder()
        fwd, failures, http = _forwarder(recorder)
        fwd.forward_message('{"a":1}')
        assert fwd.pending == 1
        await fwd.drain()
        await http.aclose()

        request = recorder.requests[0]
        assert str(request.url) == "https://collector.test/message"
        assert request.content == b'{"a":1}'
        assert request.headers["X-Api-Key"] == "k"
        assert failures == []

    @pytest.mark.asyncio
    async def test_forward_error(self):
        recorder = HttpRecorder()
        fwd, failures, http = _forwarder(recorder)
        fwd.forward_error("timeout")
        await fwd.drain()
        await http.aclose()
        assert str(recorder.requests[0].url) == "https://collector.test/error"
        assert recorder.requests[0].content == b"timeout"

    @pytest.mark.asyncio
    async def test_unconfigured_endpoints_skipped(self):
        recorder = HttpRecorder()
        fwd, _, http = _forwarder(recorder, ForwardSpec())
        fwd.forward_message("x")
        fwd.forward_error("y")
        assert fwd.pending == 0
        await http.aclose()
        assert recorder.requests == []

    @pytest.mark.asyncio
    async def test_message_failure_reported(self):
        fwd, failures, http = _forwarder(HttpRecorder(fail=True))
        fwd.forward_message("x")
        await fwd.drain()
        await http.aclose()
        assert len(failures) == 1
        assert isinstance(failures[0], ForwardingError)

    @pytest.mark.asyncio
    async def test_error_status_reported(self):
        fwd, failures, http = _forwarder(HttpRecorder(status=503))
        fwd.forward_message("x")
        await fwd.drain()
        await http.aclose()
        assert len(failures) == 1

    @pytest.mark.asyncio
    async def test_error_forwarding_failure_reported(self):
        fwd, failures, http = _forwarder(HttpRecorder(fail=True))
        fwd.forward_error("boom")
        await fwd.drain()
        await http.aclose()
        assert len(failures) == 1
        assert failures[0].event == "error"

    @pytest.mark.asyncio
    async def test_message_failure_tagged(self):
        fwd, failures, http = _forwarder(HttpRecorder(status=500))
        fwd.forward_message("x")
        await fwd.drain()
        await http.aclose()
        assert failures[0].event == "message"

    @pytest.mark.asyncio
    async def test_drain_timeout_cancels_stragglers(self):
        async def slow(request):
            await asyncio.sleep(10)
            return httpx.Response(200)

        http = httpx.AsyncClient(transport=httpx.MockTransport(slow))
        fwd = EventForwarder(SPEC, http, on_failure=lambda exc: None)
        fwd.forward_message("x")
        await fwd.drain(timeout=0.05)
        assert fwd.pending == 0
        await http.aclose()

    @pytest.mark.asyncio
    async def test_cancel(self):
        fwd, _, http = _forwarder(HttpRecorder())
        fwd.forward_message("x")
        fwd.cancel()
        assert fwd.pending == 0
        await http.aclose()
