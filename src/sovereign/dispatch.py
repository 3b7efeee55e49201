"""Bridge between the sovereign filter and the inbound dispatch pipeline.

Wraps the pipeline's dispatch call so every inbound message is classified and
routed by the filter before it can reach any reply-generation step.

Behavior by classification:

- **priority-human**: passed to the normal dispatch call with its raw body.
- **known-human**: enqueued for batched delivery; the pipeline is not invoked.
- **system-noise**: archived silently; the pipeline is not invoked.

When the filter is disabled, every message goes straight to the pipeline and
neither the registry nor the batch queue is touched.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, assert_never

from sovereign.batch_queue import MessageBatchQueue
from sovereign.config import DEFAULT_FILTER_CONFIG, FilterConfig
from sovereign.db import Database
from sovereign.filter import apply_sovereign_filter
from sovereign.models import (
    Classification,
    FilterAction,
    InboundMessage,
    SovereignFilterOutcome,
)
from sovereign.storage.base import SovereignStore
from sovereign.storage.postgres import PostgresSovereignStore

logger = logging.getLogger(__name__)

DispatchFn = Callable[[InboundMessage], Awaitable[Any]]

# Process-wide queue used when the caller does not supply one.
_default_batch_queue = MessageBatchQueue()


def default_batch_queue() -> MessageBatchQueue:
    """Return the process-wide batch queue shared by default dispatch calls."""
    return _default_batch_queue


# Per-call pools waiting for their touch tasks before closing.
_closing: set[asyncio.Task] = set()


async def _close_after_touches(db: Database, touches: set[asyncio.Task]) -> None:
    try:
        if touches:
            await asyncio.wait(touches)
    finally:
        await db.close()


def _schedule_close(db: Database, touches: set[asyncio.Task]) -> None:
    """Close a per-call pool once the touches started on it have finished."""
    task = asyncio.create_task(_close_after_touches(db, touches), name="sovereign-close-pool")
    _closing.add(task)
    task.add_done_callback(_closing.discard)


class ReplyDispatcher(Protocol):
    """The slice of the pipeline's reply dispatcher the filter needs."""

    def mark_complete(self) -> None:
        """Signal that no reply will be produced for the current message."""
        ...


@dataclass(frozen=True)
class SovereignDispatchResult:
    """Result of sovereign-aware dispatch.

    Attributes
    ----------
    intercepted:
        ``True`` when the message was batched or archived instead of being
        passed to the pipeline.
    outcome:
        The filter outcome.  A disabled filter reports
        ``deliver-raw`` / ``priority-human``.
    dispatch_result:
        Whatever the pipeline's dispatch call returned; ``None`` when
        intercepted.
    """

    intercepted: bool
    outcome: SovereignFilterOutcome
    dispatch_result: Any = None


async def dispatch_with_sovereign_filter(
    message: InboundMessage,
    *,
    dispatch_fn: DispatchFn,
    dispatcher: ReplyDispatcher,
    config: FilterConfig | None = None,
    store: SovereignStore | None = None,
    batch_queue: MessageBatchQueue | None = None,
) -> SovereignDispatchResult:
    """Dispatch an inbound message through the sovereign filter.

    Parameters
    ----------
    message:
        The inbound message context.
    dispatch_fn:
        Async callable running the normal dispatch pipeline for *message*.
    dispatcher:
        The pipeline's reply dispatcher; marked complete for intercepted
        messages.
    config:
        Filter configuration.  Defaults to the disabled default config.
    store:
        Pre-built registry/archive backend.  When omitted, a PostgreSQL store
        is opened from the config (or environment) for this call and closed
        once its touch task has finished.
    batch_queue:
        Queue for known-human messages.  Defaults to the process-wide queue.

    Raises
    ------
    ConfigError
        If the filter is enabled, no store is given and no database URL is
        configured.
    """
    config = config or DEFAULT_FILTER_CONFIG

    if not config.enabled:
        result = await dispatch_fn(message)
        return SovereignDispatchResult(
            intercepted=False,
            outcome=SovereignFilterOutcome.for_classification(Classification.PRIORITY_HUMAN),
            dispatch_result=result,
        )

    queue = batch_queue if batch_queue is not None else default_batch_queue()

    if store is not None:
        outcome = await apply_sovereign_filter(message, store, queue)
    else:
        db = Database.from_config(config)
        pool = await db.connect()
        touches: set[asyncio.Task] = set()
        try:
            outcome = await apply_sovereign_filter(
                message, PostgresSovereignStore(pool), queue, touches=touches
            )
        finally:
            _schedule_close(db, touches)

    match outcome.action:
        case FilterAction.DELIVER_RAW:
            # Raw body is passed through as-is.
            result = await dispatch_fn(message)
            return SovereignDispatchResult(
                intercepted=False, outcome=outcome, dispatch_result=result
            )
        case FilterAction.BATCH | FilterAction.ARCHIVE:
            dispatcher.mark_complete()
            logger.info(
                "Sovereign filter intercepted message from %s: %s",
                message.effective_sender_id or "<none>",
                outcome.action,
            )
            return SovereignDispatchResult(intercepted=True, outcome=outcome)
        case _:
            assert_never(outcome.action)
