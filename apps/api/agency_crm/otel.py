from __future__ import annotations

import os
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter, SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

SERVICE_NAME = "agency-crm-api"

_provider: TracerProvider | None = None
_exporters_installed = False


def tracer_provider(service_name: str = SERVICE_NAME) -> TracerProvider:
    """Return the process tracer provider, registering it globally on first use."""
    global _provider
    if _provider is None:
        resource = Resource.create(
            {"service.name": service_name, "service.version": os.getenv("APP_VERSION", "0.1.0")}
        )
        _provider = TracerProvider(resource=resource)
        trace.set_tracer_provider(_provider)
    return _provider


def _environment_processors() -> list[SpanProcessor]:
    processors: list[SpanProcessor] = []
    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    if endpoint:
        # Requires the `otlp` extra.
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter

        processors.append(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    if os.getenv("OTEL_CONSOLE_EXPORTER", "false").lower() == "true":
        processors.append(SimpleSpanProcessor(ConsoleSpanExporter()))
    return processors


def configure_tracing(enabled: bool, service_name: str = SERVICE_NAME) -> TracerProvider | None:
    global _exporters_installed
    if not enabled:
        return None

    provider = tracer_provider(service_name)
    if not _exporters_installed:
        for processor in _environment_processors():
            provider.add_span_processor(processor)
        _exporters_installed = True
    return provider


def capture_spans(service_name: str = SERVICE_NAME) -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    tracer_provider(service_name).add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_tracer(name: str) -> trace.Tracer:
    return trace.get_tracer(name)


def server_request_hook(span: Any, scope: dict[str, Any]) -> None:
    if span is None or not span.is_recording():
        return
    for name, value in scope.get("headers", []):
        if name == b"x-correlation-id":
            span.set_attribute("correlation_id", value.decode("latin-1"))
            return
