"""In-memory batch queue for the known-human track.

Messages are held here until the scheduled delivery time, when the delivery
job drains the queue in one go.  The queue is process-local and ephemeral: a
restart loses anything still queued.

Every operation takes a lock so the queue can be shared across threads; no
operation awaits, so asyncio tasks never observe a half-finished enqueue or
drain.
"""

from __future__ import annotations

import logging
import threading

from sovereign.core.metrics import FilterMetrics
from sovereign.models import BatchedMessage

logger = logging.getLogger(__name__)


class MessageBatchQueue:
    """FIFO holding area for batched messages.

    Parameters
    ----------
    metrics:
        Optional metrics wrapper used to publish the queue depth gauge.
    """

    def __init__(self, *, metrics: FilterMetrics | None = None) -> None:
        self._queue: list[BatchedMessage] = []
        self._lock = threading.Lock()
        self._metrics = metrics or FilterMetrics()

    def enqueue(self, msg: BatchedMessage) -> None:
        """Add a message to the end of the queue."""
        with self._lock:
            self._queue.append(msg)
            depth = len(self._queue)
        self._metrics.batch_queue_depth_add(1)
        logger.debug("Batched message from %s (queue depth=%d)", msg.sender_id, depth)

    def drain(self) -> list[BatchedMessage]:
        """Return all queued messages in insertion order and clear the queue."""
        with self._lock:
            batch = self._queue
            self._queue = []
        self._metrics.batch_queue_depth_add(-len(batch))
        if batch:
            logger.info("Drained %d batched message(s)", len(batch))
        return batch

    def peek(self) -> tuple[BatchedMessage, ...]:
        """Return a snapshot of the queued messages without draining."""
        with self._lock:
            return tuple(self._queue)

    @property
    def size(self) -> int:
        """Number of queued messages."""
        with self._lock:
            return len(self._queue)

    def __len__(self) -> int:
        return self.size
