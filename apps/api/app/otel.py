from __future__ import annotations

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from app.context import get_actor_id, get_correlation_id
from app.core.config import Settings, get_settings


TRACER_NAME = "leadhive"

_provider: TracerProvider | None = None
_exporters_attached = False


def _tracer_provider(settings: Settings, service_name: str | None = None) -> TracerProvider:
    """Install the process-wide provider once; later calls reuse it."""

    global _provider
    if _provider is None:
        resource = Resource.create(
            {
                "service.name": service_name or settings.otel_service_name,
                "service.version": settings.app_version,
                "deployment.environment": settings.app_env,
            }
        )
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def configure_tracing(settings: Settings | None = None) -> TracerProvider | None:
    settings = settings or get_settings()
    if not settings.otel_enabled:
        return None

    global _exporters_attached
    provider = _tracer_provider(settings)
    if _exporters_attached:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        exporter = OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)
        provider.add_span_processor(BatchSpanProcessor(exporter))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    _exporters_attached = True
    return provider


def setup_inmemory_otel(service_name: str = "leadhive-api") -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _tracer_provider(get_settings(), service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


@contextmanager
def start_span(name: str, **attributes: Any) -> Iterator[trace.Span]:
    """Open a span carrying the request's correlation and actor ids.

    Attributes whose value is None are left off the span.
    """

    context_attributes = {"correlation_id": get_correlation_id(), "actor_id": get_actor_id()}
    with trace.get_tracer(TRACER_NAME).start_as_current_span(name) as span:
        for key, value in {**context_attributes, **attributes}.items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def correlation_request_hook() -> Callable[[Any, dict[str, Any]], None]:
    """Server hook that copies an inbound X-Correlation-Id onto the request span."""

    def hook(span: Any, scope: dict[str, Any]) -> None:
        if span is None or not span.is_recording():
            return
        for name, value in scope.get("headers", []):
            if name == b"x-correlation-id":
                span.set_attribute("correlation_id", value.decode("latin-1"))
                break

    return hook
