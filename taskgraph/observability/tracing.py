"""
OpenTelemetry tracing setup.

Spans are opened around lease acquisition, task execution and reclaimer
sweeps. Until `setup_tracing` runs they go to the default no-op provider, so
library users and tests pay nothing and never try to reach a collector.
"""

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.sqlalchemy import SQLAlchemyInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Tracer

from taskgraph import __version__
from taskgraph.config import get_settings

_tracer: Tracer | None = None


def setup_tracing(component: str | None = None, enable_console_export: bool = False) -> Tracer:
    """
    Install a tracer provider exporting over OTLP.

    Args:
        component: Process role recorded on the resource.
        enable_console_export: Also print finished spans to stdout.

    Returns:
        Tracer: The scheduler's tracer.
    """
    global _tracer

    settings = get_settings()

    attributes = {
        "service.name": settings.otel_service_name,
        "service.version": __version__,
    }
    if component:
        attributes["taskgraph.component"] = component

    provider = TracerProvider(resource=Resource.create(attributes))
    provider.add_span_processor(
        BatchSpanProcessor(
            OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint, insecure=True)
        )
    )
    if enable_console_export:
        provider.add_span_processor(BatchSpanProcessor(ConsoleSpanExporter()))

    trace.set_tracer_provider(provider)
    _tracer = trace.get_tracer("taskgraph", __version__)
    return _tracer


def setup_tracing_from_settings(component: str | None = None) -> None:
    """Install exporters only when tracing is enabled in settings."""
    if get_settings().otel_enabled:
        setup_tracing(component)


def instrument_fastapi(app: Any) -> None:
    FastAPIInstrumentor.instrument_app(app)


def instrument_sqlalchemy(engine: Any) -> None:
    """
    Trace every statement sent through an engine.

    Args:
        engine: The synchronous engine behind an AsyncEngine.
    """
    SQLAlchemyInstrumentor().instrument(engine=engine)


def get_tracer() -> Tracer:
    """Get the scheduler's tracer (a no-op tracer before setup_tracing)."""
    if _tracer is None:
        return trace.get_tracer("taskgraph", __version__)
    return _tracer
