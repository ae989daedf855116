# =============================================================================
# SuperSocket -- Transport
# =============================================================================
#
# The state machine only sees the Transport / TransportHandle protocols:
#   open(url, protocols) -> handle
#   handle.send(data), handle.close(code, reason), handle.on(event, cb)
#   handle.ready_state
#
# WebSocketTransport implements them on top of ``websockets``.
# =============================================================================

from __future__ import annotations

import asyncio
from collections import defaultdict
from typing import Any, Callable, Mapping, Protocol, Sequence

import websockets
import websockets.asyncio.client
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from ._logging import logger
from .constants import MAX_MESSAGE_SIZE, WS_CLOSE_ABNORMAL, WS_CLOSE_NORMAL
from .errors import TransportError
from .types import CloseEvent, ReadyState

TRANSPORT_EVENTS = ("open", "close", "message", "error")

Listener = Callable[[Any], Any]


class TransportHandle(Protocol):
    """One connection attempt and, once open, the live connection."""

    @property
    def ready_state(self) -> ReadyState: ...

    def send(self, data: str | bytes) -> None: ...

    def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None: ...

    def on(self, event: str, callback: Listener) -> None: ...

    async def wait_closed(self) -> None: ...


class Transport(Protocol):
    def open(self, url: str, protocols: Sequence[str] | None = None) -> TransportHandle: ...


class WebSocketHandle:
    """A ``websockets`` client connection driven by a background task.

    Events:
        ``open`` (no payload), ``message`` (str | bytes), ``error``
        (:class:`TransportError`), ``close`` (:class:`CloseEvent`). ``close``
        is emitted exactly once, after any ``error``.
    """

    def __init__(
        self,
        url: str,
        protocols: Sequence[str] | None = None,
        *,
        ping_interval: float | None = None,
        extra_headers: Mapping[str, str] | None = None,
        max_size: int = MAX_MESSAGE_SIZE,
    ) -> None:
        self._url = url
        self._protocols = list(protocols) if protocols else None
        self._ping_interval = ping_interval
        self._extra_headers = dict(extra_headers or {})
        self._max_size = max_size

        self._ready_state = ReadyState.CONNECTING
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self._ws: websockets.asyncio.client.ClientConnection | None = None
        self._outbox: asyncio.Queue[str | bytes] = asyncio.Queue()
        self._task: asyncio.Task[None] | None = None
        self._writer_task: asyncio.Task[None] | None = None
        self._close_task: asyncio.Task[None] | None = None
        self._closed_emitted = False

    # -- TransportHandle ------------------------------------------------------

    @property
    def ready_state(self) -> ReadyState:
        return self._ready_state

    def on(self, event: str, callback: Listener) -> None:
        if event not in TRANSPORT_EVENTS:
            raise ValueError(f"Unknown transport event: {event!r}")
        self._listeners[event].append(callback)

    def start(self) -> None:
        self._task = asyncio.ensure_future(self._run())

    def send(self, data: str | bytes) -> None:
        if self._ready_state != ReadyState.OPEN:
            raise TransportError("Cannot send: connection is not open")
        self._outbox.put_nowait(data)

    def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None:
        if self._ready_state in (ReadyState.CLOSING, ReadyState.CLOSED):
            return

        if self._ws is None:
            # Still handshaking: abandon the attempt
            self._ready_state = ReadyState.CLOSED
            if self._task is not None:
                self._task.cancel()
            self._emit_close(CloseEvent(code, reason, was_clean=False))
            return

        self._ready_state = ReadyState.CLOSING
        self._close_task = asyncio.ensure_future(self._ws.close(code, reason))

    async def wait_closed(self) -> None:
        tasks = [t for t in (self._task, self._close_task) if t is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # -- Internal -------------------------------------------------------------

    async def _run(self) -> None:
        try:
            self._ws = await websockets.asyncio.client.connect(
                self._url,
                subprotocols=self._protocols,
                additional_headers=self._extra_headers,
                ping_interval=self._ping_interval,
                max_size=self._max_size,
                open_timeout=None,  # the state machine owns the timeout
            )
        except asyncio.CancelledError:
            return
        except Exception as exc:
            logger.debug("Handshake with %s failed: %s", self._url, exc)
            self._ready_state = ReadyState.CLOSED
            self._emit("error", TransportError(f"Failed to connect: {exc}"))
            self._emit_close(CloseEvent(WS_CLOSE_ABNORMAL, str(exc), was_clean=False))
            return

        if self._ready_state != ReadyState.CONNECTING:
            # close() raced the handshake
            await self._ws.close()
            return

        self._ready_state = ReadyState.OPEN
        self._writer_task = asyncio.create_task(self._write_loop())
        self._emit("open", None)

        close_event: CloseEvent
        try:
            async for message in self._ws:
                self._emit("message", message)
            close_event = self._close_event_from_ws(was_clean=True)
        except ConnectionClosedOK:
            close_event = self._close_event_from_ws(was_clean=True)
        except ConnectionClosed as exc:
            self._ready_state = ReadyState.CLOSED
            self._emit("error", TransportError(f"Connection lost: {exc}"))
            close_event = self._close_event_from_ws(was_clean=False)
        except asyncio.CancelledError:
            close_event = CloseEvent(WS_CLOSE_ABNORMAL, "cancelled", was_clean=False)
        finally:
            if self._writer_task is not None:
                self._writer_task.cancel()
                self._writer_task = None

        self._ready_state = ReadyState.CLOSED
        self._emit_close(close_event)

    async def _write_loop(self) -> None:
        assert self._ws is not None
        while True:
            data = await self._outbox.get()
            try:
                await self._ws.send(data)
            except ConnectionClosed:
                logger.debug("Send failed: connection closed")
                return

    def _close_event_from_ws(self, *, was_clean: bool) -> CloseEvent:
        ws = self._ws
        code = ws.close_code if ws is not None and ws.close_code is not None else WS_CLOSE_ABNORMAL
        reason = ws.close_reason if ws is not None and ws.close_reason else ""
        return CloseEvent(code, reason, was_clean=was_clean)

    def _emit_close(self, event: CloseEvent) -> None:
        if self._closed_emitted:
            return
        self._closed_emitted = True
        self._emit("close", event)

    def _emit(self, event: str, payload: Any) -> None:
        for callback in list(self._listeners[event]):
            try:
                callback(payload)
            except Exception:
                logger.exception("Transport listener for '%s' failed", event)


class WebSocketTransport:
    """Default :class:`Transport` backed by ``websockets``.

    Args:
        ping_interval: Keep-alive ping period in seconds, ``None`` to disable.
        extra_headers: Additional HTTP headers for the handshake.
        max_size: Largest incoming frame accepted, in bytes.
    """

    def __init__(
        self,
        *,
        ping_interval: float | None = None,
        extra_headers: Mapping[str, str] | None = None,
        max_size: int = MAX_MESSAGE_SIZE,
    ) -> None:
        self._ping_interval = ping_interval
        self._extra_headers = extra_headers
        self._max_size = max_size

    def open(self, url: str, protocols: Sequence[str] | None = None) -> WebSocketHandle:
        handle = WebSocketHandle(
            url,
            protocols,
            ping_interval=self._ping_interval,
            extra_headers=self._extra_headers,
            max_size=self._max_size,
        )
        handle.start()
        return handle
