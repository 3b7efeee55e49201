"""Structured logging for the sovereign filter.

Existing ``logging.getLogger(__name__)`` call sites are rendered through
structlog's ProcessorFormatter, either as colored console text or as JSON
lines.

Every record carries:

- ``service``: the process identity passed to :func:`configure_logging`;
- ``trace_id`` / ``span_id``: taken from the active OTel span;
- the routing context of the message being filtered. This means ``sender``,
  ``provider`` and ``message_sid`` from :func:`message_log_context`, plus
  ``classification`` and ``action`` from :func:`routing_log_context`.

The routing context lives in structlog's contextvars. Detached tasks started
while it is bound (the last-message touch) therefore log with the same keys.

Raw message text never reaches a sink: a ``body`` key is replaced by its
length before rendering.

When ``log_root`` is set, JSON lines are also appended to
``{log_root}/sovereign/{service_name}.log``.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from opentelemetry import trace

if TYPE_CHECKING:
    from sovereign.models import InboundMessage, SovereignFilterOutcome

_service_context: ContextVar[str | None] = ContextVar("sovereign_service", default=None)

# Third-party loggers held at WARNING regardless of the root level.
_QUIET_LOGGERS = ("asyncpg", "alembic.runtime.migration")

_LOG_SUBDIR = "sovereign"


def set_service_context(name: str) -> None:
    _service_context.set(name)


def get_service_context() -> str | None:
    return _service_context.get()


# ---------------------------------------------------------------------------
# Routing context
# ---------------------------------------------------------------------------


@contextmanager
def message_log_context(message: InboundMessage) -> Iterator[None]:
    """Bind the identity of *message* to every record logged inside the block."""
    with structlog.contextvars.bound_contextvars(
        sender=message.effective_sender_id or None,
        provider=message.effective_provider,
        message_sid=message.message_sid,
    ):
        yield


@contextmanager
def routing_log_context(outcome: SovereignFilterOutcome) -> Iterator[None]:
    """Bind the routing decision to every record logged inside the block."""
    with structlog.contextvars.bound_contextvars(
        classification=str(outcome.classification),
        action=str(outcome.action),
    ):
        yield


# ---------------------------------------------------------------------------
# Processors
# ---------------------------------------------------------------------------


def add_service_context(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    event_dict["service"] = _service_context.get()
    return event_dict


def add_otel_context(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    """Add ``trace_id``/``span_id``; all zeros outside a recording span."""
    ctx = trace.get_current_span().get_span_context()
    event_dict["trace_id"] = format(ctx.trace_id, "032x")
    event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def redact_message_body(logger, method_name, event_dict: dict) -> dict:  # noqa: ARG001
    """Replace a raw ``body`` value with its length."""
    body = event_dict.get("body")
    if isinstance(body, str):
        event_dict["body"] = f"<{len(body)} chars>"
    return event_dict


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt),
        add_service_context,
        add_otel_context,
        structlog.stdlib.ExtraAdder(),
        redact_message_body,
    ]


def _json_renderers() -> list[structlog.types.Processor]:
    return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]


def _handler(
    handler: logging.Handler,
    renderers: list[structlog.types.Processor],
    pre_chain: list[structlog.types.Processor],
) -> logging.Handler:
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, *renderers],
            foreign_pre_chain=pre_chain,
        )
    )
    return handler


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_root: Path | None = None,
    service_name: str | None = None,
) -> None:
    """Route all stdlib logging through structlog.

    Parameters
    ----------
    level:
        Root log level name; unknown names fall back to INFO.
    fmt:
        ``"text"`` for the colored console renderer, ``"json"`` for JSON lines.
    log_root:
        When set, JSON lines are also written under ``{log_root}/sovereign/``.
    service_name:
        Process identity added to every record and used as the log file name.
    """
    if service_name:
        set_service_context(service_name)

    json_chain = _pre_chain("iso")
    if fmt == "json":
        console_chain = json_chain
        console = _handler(logging.StreamHandler(sys.stderr), _json_renderers(), json_chain)
    else:
        console_chain = _pre_chain("%H:%M:%S")
        console = _handler(
            logging.StreamHandler(sys.stderr), [structlog.dev.ConsoleRenderer()], console_chain
        )
    handlers: list[logging.Handler] = [console]

    if log_root is not None:
        log_dir = Path(log_root) / _LOG_SUBDIR
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = _handler(
            logging.FileHandler(log_dir / f"{service_name or 'sovereign'}.log"),
            _json_renderers(),
            json_chain,
        )
        file_handler.setLevel(logging.DEBUG)
        handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers[:] = handlers
    root.setLevel(logging.getLevelNamesMapping().get(level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[*console_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
