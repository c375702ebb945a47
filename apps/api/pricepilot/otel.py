from __future__ import annotations

from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
)
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from pricepilot.core.config import get_settings
from pricepilot.shops.service import normalize_shop_domain


_exporters_configured = False
_provider: TracerProvider | None = None


def _tracer_provider() -> TracerProvider:
    """Install the process-wide provider once; later calls reuse it."""
    global _provider

    if _provider is None:
        settings = get_settings()
        _provider = TracerProvider(
            resource=Resource.create(
                {
                    "service.name": settings.otel_service_name,
                    "service.version": settings.app_version,
                    "deployment.environment": settings.app_env,
                    "shopify.api_version": settings.shopify_api_version,
                }
            )
        )
        trace.set_tracer_provider(_provider)
    return _provider


def setup_otel() -> TracerProvider | None:
    global _exporters_configured

    settings = get_settings()
    if not settings.otel_enabled:
        return None

    provider = _tracer_provider()
    if _exporters_configured:
        return provider

    if settings.otel_exporter_otlp_endpoint:
        provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=settings.otel_exporter_otlp_endpoint)))
    if settings.otel_console_exporter:
        provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))

    _exporters_configured = True
    return provider


def setup_inmemory_otel() -> InMemorySpanExporter:
    exporter = InMemorySpanExporter()
    _tracer_provider().add_span_processor(SimpleSpanProcessor(exporter))
    return exporter


def get_fastapi_server_request_hook():
    """Tag each server span with the correlation id and the calling shop."""

    def server_request_hook(span, scope: dict[str, Any]) -> None:  # type: ignore[no-untyped-def]
        if span is None or not span.is_recording():
            return
        headers = dict(scope.get("headers", []))
        correlation_raw = headers.get(b"x-correlation-id")
        if correlation_raw:
            span.set_attribute("correlation_id", correlation_raw.decode("utf-8"))
        shop_raw = headers.get(b"x-shop-domain", b"").decode("utf-8")
        if shop_raw.strip():
            span.set_attribute("shop_domain", normalize_shop_domain(shop_raw))

    return server_request_hook
