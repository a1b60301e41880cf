"""
Structured logging setup using structlog.

Modules log through the standard library (`logging.getLogger(__name__)` with
`extra=` fields); structlog renders those records together with any context
bound through `bind_context`, the process component and the active trace.
"""

import logging
import sys
from typing import Any

import structlog
from opentelemetry import trace

from taskgraph.config import get_settings

# Third-party loggers that are only useful at WARNING and above
_QUIET_LOGGERS = ("uvicorn.access", "sqlalchemy.engine", "aiosqlite", "httpx")


def add_trace_context(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Attach the current trace and span ids, if a span is recording."""
    span = trace.get_current_span()
    if span and span.is_recording():
        ctx = span.get_span_context()
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def _component_adder(component: str | None):
    def add_component(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        if component:
            event_dict.setdefault("component", component)
        return event_dict

    return add_component


def setup_logging(component: str | None = None, level: str | None = None) -> None:
    """
    Configure structured logging for one process.

    Safe to call more than once; the root handler is replaced, not added.

    Args:
        component: Process role stamped on every record
            (api, worker, reaper or coordinator).
        level: Log level name. Defaults to the configured level.
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.log_level).upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        _component_adder(component),
        add_trace_context,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.stdlib.ExtraAdder(),
    ]

    if settings.log_format == "json":
        renderer: Any = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=shared_processors,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.processors.format_exc_info,
                renderer,
            ],
        )
    )

    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_context(**kwargs: Any) -> None:
    """
    Bind key-value pairs to every record logged from the current context.

    Each asyncio task runs in a copy of its creator's context, so values bound
    inside a task do not leak into other tasks.
    """
    structlog.contextvars.bind_contextvars(**kwargs)
