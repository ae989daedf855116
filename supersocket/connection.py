# =============================================================================
# SuperSocket -- Connection State Machine
# =============================================================================
#
# Lifecycle, lock discipline and recovery around a single transport handle:
#
#   UNINITIALIZED -> CONNECTING -> OPEN -> CLOSING -> CLOSED -> CONNECTING ...
#
# Locks:
#   connect lock    phase == CONNECTING, one handshake in flight at a time
#   reconnect lock  RetryController.active, one retry loop at a time
#
# Reconnection is scheduled from the close path only. Errors always end in a
# close (transport or synthesized by disconnect()), so the retry loop can never
# be armed twice for the same failure.
# =============================================================================

from __future__ import annotations

import asyncio
from collections import defaultdict
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence

import httpx

from ._logging import logger
from .auth import AuthGate
from .constants import WS_CLOSE_NORMAL
from .errors import (
    AuthRejectedError,
    ConnectionTimeoutError,
    DecryptionError,
    ForwardingError,
    InsecureSchemeError,
    InvalidUrlError,
    SuperSocketError,
    TransportError,
)
from .forwarder import EventForwarder
from .framer import MessageFramer
from .offline_queue import OfflineQueue
from .retry import RetryController
from .transport import Transport, TransportHandle, WebSocketTransport
from .types import (
    CloseEvent,
    ConnectionConfig,
    ConnectionState,
    ErrorEvent,
    ErrorKind,
    MessageEvent,
    OpenEvent,
    ReadyState,
)
from .urls import build_url

EVENT_NAMES = ("open", "message", "close", "error")

EventHandler = Callable[[Any], Any]
AsyncEventHandler = Callable[[Any], Awaitable[Any]]

_READY_TO_STATE = {
    ReadyState.CONNECTING: ConnectionState.CONNECTING,
    ReadyState.OPEN: ConnectionState.OPEN,
    ReadyState.CLOSING: ConnectionState.CLOSING,
    ReadyState.CLOSED: ConnectionState.CLOSED,
}

_FAILURE_KINDS: dict[type[SuperSocketError], ErrorKind] = {
    InvalidUrlError: ErrorKind.INVALID_URL,
    InsecureSchemeError: ErrorKind.INSECURE_SCHEME,
    AuthRejectedError: ErrorKind.AUTH_REJECTED,
}


class Phase(str, Enum):
    """Internal lifecycle phase. CONNECTING doubles as the connect lock."""

    IDLE = "idle"
    CONNECTING = "connecting"
    OPEN = "open"


@dataclass
class PendingTimers:
    """Timers owned by the state machine, cancelled together on open."""

    timeout: asyncio.Task[None] | None = None
    retry: RetryController | None = None


class SuperSocket:
    """Resilient single-connection WebSocket client.

    Construction validates the URL but performs no I/O and never raises;
    a bad URL is kept in :attr:`failure` and reported by :meth:`start`.

    Args:
        url: ``wss://`` (or ``ws://`` with ``secure_only=False``) base URL.
        protocols: Subprotocol name or list of names.
        config: Connection options. Defaults to :class:`ConnectionConfig()`.
        transport: Transport used to open connections. Defaults to
            :class:`~supersocket.transport.WebSocketTransport`.
        http_client: Client for the auth and forwarding calls. One is
            created (and closed by :meth:`close`) when omitted.

    Example::

        sock = SuperSocket("wss://example.com/ws", config=ConnectionConfig(max_retries=3))
        sock.onmessage = lambda event: print(event.data)
        await sock.start()
        sock.send({"hello": "world"})
        ...
        await sock.close()
    """

    def __init__(
        self,
        url: str,
        protocols: str | Sequence[str] | None = None,
        config: ConnectionConfig | None = None,
        *,
        transport: Transport | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config or ConnectionConfig()
        cfg = self._config

        if isinstance(protocols, str):
            self._protocols = [protocols]
        else:
            self._protocols = list(protocols or [])

        self._failure: SuperSocketError | None = None
        self._url = ""
        try:
            self._url = build_url(url, cfg.query_params, secure_only=cfg.secure_only)
        except (InvalidUrlError, InsecureSchemeError) as exc:
            logger.error("SuperSocket error: %s", exc)
            self._failure = exc

        self._transport: Transport = transport or WebSocketTransport(
            ping_interval=cfg.ping_interval,
            extra_headers=cfg.extra_headers,
            max_size=cfg.max_message_size,
        )
        self._http = http_client
        self._owns_http = http_client is None
        self._forwarder: EventForwarder | None = None

        # Services
        self._framer = MessageFramer(cfg.chunk_size_kb, cfg.cipher)
        self._offline_queue = OfflineQueue(enabled=cfg.offline_queue)

        # State
        self._phase = Phase.IDLE
        self._handle: TransportHandle | None = None
        self._handle_closed = False
        self._total_retry = 0
        self._closed_by_caller = False
        self._timers = PendingTimers(
            retry=RetryController(cfg.reconnect_delay, self._retry_tick)
        )

        # Single-slot callbacks (last assignment wins)
        self.onopen: EventHandler | AsyncEventHandler | None = None
        self.onmessage: EventHandler | AsyncEventHandler | None = None
        self.onclose: EventHandler | AsyncEventHandler | None = None
        self.onerror: EventHandler | AsyncEventHandler | None = None

        # Additional subscribers registered with on()
        self._handlers: dict[str, list[EventHandler | AsyncEventHandler]] = defaultdict(
            list
        )
        self._background_tasks: set[asyncio.Task[Any]] = set()

    # -- Context manager ------------------------------------------------------

    async def __aenter__(self) -> SuperSocket:
        await self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    # -- Properties -----------------------------------------------------------

    @property
    def url(self) -> str:
        """Computed URL including the serialized query parameters."""
        return self._url

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def ready_state(self) -> ReadyState | None:
        """Transport ready-state, ``None`` before the first attempt."""
        if self._handle is None:
            return None
        return self._handle.ready_state

    @property
    def state(self) -> ConnectionState:
        if self._handle is None:
            return ConnectionState.UNINITIALIZED
        return _READY_TO_STATE[self._handle.ready_state]

    @property
    def is_open(self) -> bool:
        return (
            self._handle is not None
            and not self._handle_closed
            and self._handle.ready_state == ReadyState.OPEN
        )

    @property
    def total_retry_count(self) -> int:
        """Connection attempts since the last successful open."""
        return self._total_retry

    @property
    def failure(self) -> SuperSocketError | None:
        """Terminal construction or auth failure, if any."""
        return self._failure

    @property
    def queued_count(self) -> int:
        return self._offline_queue.size

    @property
    def reconnecting(self) -> bool:
        assert self._timers.retry is not None
        return self._timers.retry.active

    # -- Lifecycle ------------------------------------------------------------

    async def start(self) -> bool:
        """Run the auth gate (if configured) and the first connection attempt.

        Returns:
            True if a connection attempt was started. False after a
            construction or auth failure, which is reported to the error
            handlers and never retried.
        """
        if self._failure is not None:
            self._report_failure(self._failure)
            return False

        spec = self._config.authenticate
        if spec is not None:
            try:
                await AuthGate(spec, self._get_http()).check()
            except AuthRejectedError as exc:
                self._failure = exc
                self._report_failure(exc)
                return False

        self.connect()
        return True

    def connect(self) -> None:
        """Open a new transport handle unless one is already live.

        Calling this after :meth:`close` re-enables automatic reconnection.
        """
        if self._failure is not None:
            logger.debug("connect() ignored: %s", self._failure)
            return
        if self._phase is not Phase.IDLE:
            return

        self._closed_by_caller = False
        self._enter_connecting()

    def disconnect(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None:
        """Close the current handle and emit the close event right away."""
        handle = self._handle
        if handle is None or self._handle_closed:
            return
        handle.close(code, reason)
        self._on_close(handle, CloseEvent(code, reason, was_clean=code == WS_CLOSE_NORMAL))

    async def close(self, code: int = WS_CLOSE_NORMAL, reason: str = "") -> None:
        """Caller-initiated shutdown: no automatic reconnection follows."""
        self._closed_by_caller = True
        self._cancel_timers()

        handle = self._handle
        self.disconnect(code, reason)
        if handle is not None:
            await handle.wait_closed()

        forwarder = self._forwarder
        if forwarder is not None and self._config.forward is not None:
            await forwarder.drain(timeout=self._config.forward.timeout)
            self._forwarder = None
        if self._owns_http and self._http is not None:
            await self._http.aclose()
            self._http = None

    # -- Send -----------------------------------------------------------------

    def send(self, payload: Any) -> bool:
        """Send *payload*, or buffer it while the connection is not open.

        Every payload, strings included, goes out as ASCII-only compact
        JSON. Frames larger than ``chunk_size_kb`` are split into chunk
        envelopes; a group that fails partway is dropped, not re-queued.

        Returns:
            True if written to the transport, False if queued or dropped.
        """
        return self._write(self._framer.serialize(payload))

    def _write(self, text: str, *, enqueued_at: float | None = None) -> bool:
        handle = self._handle
        if handle is None or not self.is_open:
            if self._offline_queue.enqueue(text, enqueued_at=enqueued_at):
                logger.debug("Not connected, queued message (%d pending)", self._offline_queue.size)
            return False

        frames = self._framer.frames(text)
        if len(frames) > 1:
            logger.debug("Sending message as %d chunks", len(frames))
        sent = 0
        try:
            for frame in frames:
                handle.send(frame)
                sent += 1
        except TransportError as exc:
            if sent:
                # A partly sent chunk group is never re-queued
                logger.warning(
                    "Send failed after %d/%d chunks (%s), message dropped",
                    sent,
                    len(frames),
                    exc,
                )
                return False
            logger.warning("Send failed (%s), queueing message", exc)
            self._offline_queue.enqueue(text, enqueued_at=enqueued_at)
            return False
        return True

    # -- Handler registration -------------------------------------------------

    def on(
        self, event: str
    ) -> Callable[[EventHandler | AsyncEventHandler], EventHandler | AsyncEventHandler]:
        """Decorator registering an extra handler for ``open``, ``message``,
        ``close`` or ``error``.

        Example::

            @sock.on("message")
            async def handle(event: MessageEvent):
                print(event.data)
        """
        if event not in EVENT_NAMES:
            raise ValueError(f"Unknown event: {event!r}")

        def decorator(
            fn: EventHandler | AsyncEventHandler,
        ) -> EventHandler | AsyncEventHandler:
            self._handlers[event].append(fn)
            return fn

        return decorator

    def off(self, event: str, fn: EventHandler | AsyncEventHandler) -> None:
        """Remove a handler registered with :meth:`on`."""
        handlers = self._handlers.get(event, [])
        if fn in handlers:
            handlers.remove(fn)

    # -- Transitions ----------------------------------------------------------

    def _set_phase(self, phase: Phase) -> None:
        if phase is self._phase:
            return
        logger.debug("Phase: %s -> %s", self._phase.value, phase.value)
        self._phase = phase

    def _enter_connecting(self) -> None:
        self._total_retry += 1
        self._set_phase(Phase.CONNECTING)
        logger.info("Connecting to %s (attempt %d)", self._url, self._total_retry)

        handle = self._transport.open(self._url, self._protocols)
        self._handle = handle
        self._handle_closed = False
        handle.on("open", lambda _event: self._on_open(handle))
        handle.on("close", lambda event: self._on_close(handle, event))
        handle.on("message", lambda data: self._on_message(handle, data))
        handle.on("error", lambda exc: self._on_transport_error(handle, exc))

        self._cancel_timeout()
        self._timers.timeout = asyncio.ensure_future(self._timeout_after(handle))

    def _on_open(self, handle: TransportHandle) -> None:
        if handle is not self._handle or self._handle_closed:
            return

        self._set_phase(Phase.OPEN)
        self._total_retry = 0
        self._cancel_timers()
        logger.info("Connected to %s", self._url)

        self._flush_offline_queue()
        self._dispatch("open", OpenEvent())

    def _on_close(self, handle: TransportHandle, event: CloseEvent) -> None:
        if handle is not self._handle or self._handle_closed:
            return

        self._handle_closed = True
        self._set_phase(Phase.IDLE)
        self._cancel_timeout()
        logger.info("Connection closed: code=%d reason=%s", event.code, event.reason)

        self._dispatch("close", event)

        if self._reconnect_eligible():
            self._start_retry()

    def _on_message(self, handle: TransportHandle, raw: str | bytes) -> None:
        if handle is not self._handle or self._handle_closed:
            return

        try:
            data = self._framer.decode(raw)
        except DecryptionError as exc:
            logger.warning("Dropping undecryptable frame: %s", exc)
            self._dispatch("error", ErrorEvent(ErrorKind.DECRYPTION, str(exc), exc))
            return

        forwarder = self._get_forwarder()
        if forwarder is not None:
            forwarder.forward_message(data)

        self._dispatch("message", MessageEvent(data=data, raw=raw))

    def _on_transport_error(self, handle: TransportHandle, exc: Any) -> None:
        if handle is not self._handle or self._handle_closed:
            return
        if not isinstance(exc, SuperSocketError):
            exc = TransportError(str(exc))
        self._handle_error(ErrorEvent(ErrorKind.TRANSPORT, str(exc), exc))

    def _on_forwarding_failure(self, exc: ForwardingError) -> None:
        event = ErrorEvent(ErrorKind.FORWARDING, str(exc), exc)
        if exc.event == "error":
            # Reported only: never forwarded again, the error path already ran
            logger.warning("Connection error (%s): %s", event.kind.value, event.message)
            self._dispatch("error", event)
            return
        self._handle_error(event)

    def _handle_error(self, event: ErrorEvent) -> None:
        """Tear the handle down, forward the error, then notify handlers.

        The close synthesized by disconnect() is what arms the retry loop.
        """
        if self._phase is Phase.CONNECTING:
            self._set_phase(Phase.IDLE)
        logger.warning("Connection error (%s): %s", event.kind.value, event.message)

        self.disconnect(reason=event.message)

        forwarder = self._get_forwarder()
        if forwarder is not None:
            forwarder.forward_error(event.message)

        self._dispatch("error", event)

    def _report_failure(self, exc: SuperSocketError) -> None:
        kind = _FAILURE_KINDS.get(type(exc), ErrorKind.TRANSPORT)
        self._dispatch("error", ErrorEvent(kind, str(exc), exc))

    # -- Timers ---------------------------------------------------------------

    async def _timeout_after(self, handle: TransportHandle) -> None:
        timeout = self._config.connection_timeout
        try:
            await asyncio.sleep(timeout)
        except asyncio.CancelledError:
            return

        if handle is not self._handle or handle.ready_state != ReadyState.CONNECTING:
            return
        self._timers.timeout = None

        if self.reconnecting:
            # The retry loop owns recovery; free the lock for its next tick.
            logger.warning("Reconnect attempt timed out after %.1fs", timeout)
            self._set_phase(Phase.IDLE)
            self.disconnect(reason="timeout")
            return

        exc = ConnectionTimeoutError(f"Connection timed out after {timeout}s")
        self._handle_error(ErrorEvent(ErrorKind.TIMEOUT, "timeout", exc))

    def _reconnect_eligible(self) -> bool:
        return (
            not self._config.disable_reconnect
            and not self._closed_by_caller
            and not self.reconnecting
            and self._total_retry <= self._config.max_retries
        )

    def _start_retry(self) -> None:
        assert self._timers.retry is not None
        if self._timers.retry.start():
            logger.info(
                "Reconnecting every %.1fs (attempt %d/%d)",
                self._config.reconnect_delay,
                self._total_retry + 1,
                self._config.max_retries + 1,
            )

    def _retry_tick(self) -> bool:
        if self._total_retry > self._config.max_retries:
            logger.error(
                "Max reconnect attempts (%d) reached, giving up",
                self._config.max_retries,
            )
            return False
        self.connect()
        return True

    def _cancel_timeout(self) -> None:
        task = self._timers.timeout
        self._timers.timeout = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _cancel_timers(self) -> None:
        self._cancel_timeout()
        if self._timers.retry is not None:
            self._timers.retry.cancel()

    # -- Offline queue --------------------------------------------------------

    def _flush_offline_queue(self) -> None:
        entries = self._offline_queue.drain()
        if not entries:
            return
        logger.info("Flushing %d offline-queued messages", len(entries))
        for entry in entries:
            self._write(entry.payload, enqueued_at=entry.enqueued_at)

    # -- Dispatch -------------------------------------------------------------

    def _dispatch(self, event: str, payload: Any) -> None:
        """Call the assigned callback, then handlers registered with on()."""
        handlers: list[EventHandler | AsyncEventHandler] = []
        assigned = getattr(self, f"on{event}")
        if assigned is not None:
            handlers.append(assigned)
        handlers.extend(self._handlers.get(event, []))

        for handler in handlers:
            try:
                result = handler(payload)
                if asyncio.iscoroutine(result):
                    self._fire_task(result)
            except Exception as exc:
                logger.error("Handler error for '%s': %s", event, exc)

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    # -- HTTP collaborators ---------------------------------------------------

    def _get_http(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    def _get_forwarder(self) -> EventForwarder | None:
        spec = self._config.forward
        if spec is None:
            return None
        if self._forwarder is None:
            self._forwarder = EventForwarder(
                spec, self._get_http(), on_failure=self._on_forwarding_failure
            )
        return self._forwarder
