# =============================================================================
# SuperSocket -- Event Forwarder
# =============================================================================
#
# Best-effort POST of incoming messages and errors to HTTP collectors.
# Calls run as background tasks; the caller never waits on them.
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Any, Callable

import httpx

from ._logging import logger
from .errors import ForwardingError
from .types import ForwardSpec


class EventForwarder:
    """Fire-and-forget forwarding of events to HTTP endpoints.

    Args:
        spec: Endpoints, headers and timeout.
        http: Client used for the calls.
        on_failure: Called with a :class:`ForwardingError` whenever a call
            fails; its ``event`` tells message and error forwarding apart.
    """

    def __init__(
        self,
        spec: ForwardSpec,
        http: httpx.AsyncClient,
        on_failure: Callable[[ForwardingError], Any],
    ) -> None:
        self._spec = spec
        self._http = http
        self._on_failure = on_failure
        self._background_tasks: set[asyncio.Task[Any]] = set()

    @property
    def pending(self) -> int:
        return len(self._background_tasks)

    def forward_message(self, data: str | bytes) -> None:
        if self._spec.on_message:
            self._fire_task(self._post(self._spec.on_message, data, event="message"))

    def forward_error(self, message: str) -> None:
        if self._spec.on_error:
            self._fire_task(self._post(self._spec.on_error, message, event="error"))

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight forwarding calls, cancelling any still running
        after *timeout* seconds."""
        if not self._background_tasks:
            return
        logger.debug("Waiting for %d forwarding calls", self.pending)
        _, still_running = await asyncio.wait(set(self._background_tasks), timeout=timeout)
        if still_running:
            logger.warning("Cancelling %d forwarding calls still running", len(still_running))
            self.cancel()

    def cancel(self) -> None:
        for task in self._background_tasks:
            task.cancel()
        self._background_tasks.clear()

    def _fire_task(self, coro: Any) -> None:
        """Schedule a coroutine with a strong reference to prevent GC."""
        task = asyncio.ensure_future(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def _post(self, endpoint: str, body: str | bytes, *, event: str) -> None:
        content = body.encode("utf-8") if isinstance(body, str) else body
        try:
            response = await self._http.post(
                endpoint,
                headers=self._spec.headers,
                content=content,
                timeout=self._spec.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Cannot forward %s to %s: %s", event, endpoint, exc)
            self._on_failure(ForwardingError(f"Cannot forward to route: {exc}", event=event))
