# =============================================================================
# SuperSocket -- Offline Queue
# =============================================================================
#
# Buffers outgoing payloads while the connection is not open and hands them
# back, oldest first, when it opens again.
#
# In-memory and unbounded: there is no eviction or back-pressure policy.
# =============================================================================

from __future__ import annotations

import itertools
import time
from dataclasses import dataclass, field
from typing import Any

from ._logging import logger


@dataclass(order=True)
class QueuedMessage:
    """A payload waiting for the connection to open.

    Ordered by ``(enqueued_at, sequence)`` so equal timestamps keep
    insertion order.
    """

    enqueued_at: float
    sequence: int
    payload: Any = field(compare=False)


class OfflineQueue:
    """In-memory queue of sends issued while the connection was down.

    Args:
        enabled: Whether payloads are buffered at all. When disabled,
            :meth:`enqueue` drops the payload. Default True.
    """

    def __init__(self, *, enabled: bool = True) -> None:
        self._enabled = enabled
        self._entries: list[QueuedMessage] = []
        self._counter = itertools.count()

    @property
    def size(self) -> int:
        return len(self._entries)

    def enqueue(self, payload: Any, *, enqueued_at: float | None = None) -> bool:
        """Buffer *payload*.

        *enqueued_at* keeps the original position of a payload that is put
        back after a failed flush.

        Returns True if buffered, False if the queue is disabled.
        """
        if not self._enabled:
            logger.debug("Offline queue disabled, dropping message")
            return False

        self._entries.append(
            QueuedMessage(
                enqueued_at=time.monotonic() if enqueued_at is None else enqueued_at,
                sequence=next(self._counter),
                payload=payload,
            )
        )
        return True

    def drain(self) -> list[QueuedMessage]:
        """Take a snapshot of every queued entry, oldest first.

        The snapshot is removed from the queue before it is returned, so
        payloads enqueued while the caller dispatches it land in a fresh
        queue and are not part of the snapshot.
        """
        snapshot, self._entries = self._entries, []
        snapshot.sort()
        return snapshot
