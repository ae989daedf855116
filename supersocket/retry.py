# =============================================================================
# SuperSocket -- Retry Controller
# =============================================================================
#
# Fixed-interval reconnect loop (no exponential growth, no jitter).
# =============================================================================

from __future__ import annotations

import asyncio
from typing import Callable

from ._logging import logger


class RetryController:
    """Calls *tick* every *interval* seconds until it returns False.

    Only one loop runs at a time: :meth:`start` is a no-op while a loop is
    active, which is what serializes reconnect scheduling.

    Args:
        interval: Seconds between two ticks.
        tick: Invoked on each tick. Return False to end the loop.
    """

    def __init__(self, interval: float, tick: Callable[[], bool]) -> None:
        self._interval = interval
        self._tick = tick
        self._task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> bool:
        """Start the loop. Returns False if one is already running."""
        if self.active:
            return False
        self._task = asyncio.ensure_future(self._run())
        return True

    def cancel(self) -> None:
        if self._task is None:
            return
        # A tick may cancel its own loop (e.g. connect() succeeding synchronously)
        if self._task is not asyncio.current_task():
            self._task.cancel()
        self._task = None

    async def _run(self) -> None:
        me = asyncio.current_task()
        while True:
            try:
                await asyncio.sleep(self._interval)
            except asyncio.CancelledError:
                return

            if not self._tick():
                logger.debug("Retry loop finished")
                break
            if self._task is not me:
                # cancelled from inside the tick
                return

        if self._task is me:
            self._task = None
