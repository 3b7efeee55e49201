"""Core sovereign filter logic.

Classifies inbound messages into three tracks:

  1. **Priority human** → deliver raw, immediately.
  2. **Known human**    → hold raw, deliver in a scheduled batch.
  3. **System noise**   → archive silently.

Human messages are never summarized; the urgency registry is the sole
authority for who is "priority" vs "known human"; noise is archived and never
pushed.

Side-effect guarantees differ by track.  The last-message touch for human
senders is detached bookkeeping: it runs as a background task and its failure
is only logged.  The archive write for noise is awaited before the outcome is
returned, and any failure propagates, because the archive is the only record
of a suppressed message.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from datetime import UTC, datetime
from typing import assert_never

from opentelemetry import trace

from sovereign.batch_queue import MessageBatchQueue
from sovereign.classifier import classify_sender
from sovereign.core.logging import message_log_context, routing_log_context
from sovereign.core.metrics import FilterMetrics
from sovereign.models import (
    ArchivedNoiseEntry,
    BatchedMessage,
    Classification,
    InboundMessage,
    SovereignFilterOutcome,
)
from sovereign.storage.base import ArchiveStore, ContactRegistry, SovereignStore

logger = logging.getLogger(__name__)

_BASE36 = string.digits + string.ascii_lowercase

_default_metrics = FilterMetrics()

# In-flight touch tasks, removed on completion.
_pending_touches: set[asyncio.Task] = set()


def _fallback_message_id() -> str:
    """Generate ``<epoch-ms>-<6 base36 chars>`` for messages without an id."""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"{int(time.time() * 1000)}-{suffix}"


# ---------------------------------------------------------------------------
# Best-effort registry touch
# ---------------------------------------------------------------------------


async def _touch_last_message(
    registry: ContactRegistry,
    sender_id: str,
    metrics: FilterMetrics,
) -> None:
    try:
        await registry.touch_contact_last_message(sender_id)
    except Exception:
        metrics.record_touch_failure()
        logger.warning(
            "Failed to update last-message timestamp for %s (ignored)",
            sender_id,
            exc_info=True,
            extra={"touch_failed": True, "touch_sender_id": sender_id},
        )


def schedule_touch(
    registry: ContactRegistry,
    sender_id: str,
    *,
    metrics: FilterMetrics | None = None,
) -> asyncio.Task:
    """Start a detached task updating the contact's last-message timestamp.

    The returned task never raises; failures are logged and counted.
    """
    task = asyncio.create_task(
        _touch_last_message(registry, sender_id, metrics or _default_metrics),
        name=f"sovereign-touch-{sender_id}",
    )
    _pending_touches.add(task)
    task.add_done_callback(_pending_touches.discard)
    return task


async def wait_for_pending_touches(timeout_s: float | None = None) -> None:
    """Wait for in-flight touch tasks (graceful shutdown, tests).

    Tasks still running after *timeout_s* are left alone.
    """
    if not _pending_touches:
        return
    _, pending = await asyncio.wait(set(_pending_touches), timeout=timeout_s)
    if pending:
        logger.warning("%d last-message touch task(s) still pending", len(pending))


# ---------------------------------------------------------------------------
# Silent archive helper
# ---------------------------------------------------------------------------


def build_noise_entry(message: InboundMessage, now: datetime | None = None) -> ArchivedNoiseEntry:
    """Build the archive entry for a system-noise message."""
    received_at = now or datetime.now(UTC)
    provider = message.effective_provider
    sender_id = message.sender_identity
    return ArchivedNoiseEntry(
        partition_key=received_at.date().isoformat(),
        row_key=message.message_sid if message.message_sid is not None else _fallback_message_id(),
        provider=provider if provider is not None else "unknown",
        sender_id=sender_id if sender_id is not None else "unknown",
        sender_name=message.sender_name,
        body=message.body if message.body is not None else "",
        received_at=received_at,
        session_key=message.session_key,
    )


async def archive_system_noise(message: InboundMessage, archive: ArchiveStore) -> None:
    """Archive a system-noise message.  Store faults propagate."""
    entry = build_noise_entry(message)
    await archive.archive_noise(entry)
    logger.info(
        "Archived system-noise message %s from %s via %s",
        entry.row_key,
        entry.sender_id,
        entry.provider,
    )


# ---------------------------------------------------------------------------
# Filter entry point
# ---------------------------------------------------------------------------


def _build_batched_message(message: InboundMessage) -> BatchedMessage:
    return BatchedMessage(
        sender_id=message.effective_sender_id,
        sender_name=message.sender_name,
        body=message.body or "",
        provider=message.effective_provider,
        received_at=datetime.now(UTC),
        session_key=message.session_key,
        originating_channel=message.originating_channel,
        originating_to=message.originating_to,
    )


async def apply_sovereign_filter(
    message: InboundMessage,
    store: SovereignStore,
    batch_queue: MessageBatchQueue,
    *,
    metrics: FilterMetrics | None = None,
    touches: set[asyncio.Task] | None = None,
) -> SovereignFilterOutcome:
    """Run the sovereign filter on one inbound message.

    Returns the routing outcome:

    - ``deliver-raw`` → pass through immediately, no summarization.
    - ``batch`` → enqueued for scheduled delivery.
    - ``archive`` → silently stored in the archive.

    Side effects:

    - Schedules a best-effort ``last_message_at`` touch for human senders.
      When *touches* is given, the touch task is added to it so the caller
      can wait on this message's bookkeeping alone.
    - Enqueues a raw ``BatchedMessage`` for known humans.
    - Awaits the archive write for system noise.

    Log records emitted while routing (including the detached touch) carry
    ``sender``, ``provider``, ``message_sid``, ``classification`` and
    ``action``.

    Raises
    ------
    Exception
        Any registry lookup or archive write fault, unchanged.
    """
    metrics = metrics or _default_metrics
    tracer = trace.get_tracer("sovereign")
    with (
        tracer.start_as_current_span("sovereign.filter.apply") as span,
        message_log_context(message),
    ):
        result = await classify_sender(message, store)
        classification = result.classification
        outcome = SovereignFilterOutcome.for_classification(classification)
        span.set_attribute("classification", str(classification))
        span.set_attribute("action", str(outcome.action))
        metrics.record_classification(classification)

        sender_id = message.effective_sender_id
        with routing_log_context(outcome):
            match classification:
                case Classification.PRIORITY_HUMAN:
                    task = schedule_touch(store, sender_id, metrics=metrics)
                case Classification.KNOWN_HUMAN:
                    task = schedule_touch(store, sender_id, metrics=metrics)
                    batch_queue.enqueue(_build_batched_message(message))
                case Classification.SYSTEM_NOISE:
                    task = None
                    await archive_system_noise(message, store)
                    metrics.record_archived()
                case _:
                    assert_never(classification)

            if task is not None and touches is not None:
                touches.add(task)
            logger.debug("Sovereign filter routed message")
        return outcome
