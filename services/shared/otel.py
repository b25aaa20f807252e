from __future__ import annotations

from typing import Any

from services.shared.runtime import RuntimeConfig


def setup_otel(config: RuntimeConfig) -> None:
    """Best-effort OpenTelemetry initialization.

    - Only activates when GATEWAY_OTEL_ENABLED=1
    - Stays a no-op when the `otel` extra isn't installed
    """

    if not config.otel_enabled:
        return

    try:
        from opentelemetry import trace  # type: ignore
        from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter  # type: ignore
        from opentelemetry.sdk.resources import Resource  # type: ignore
        from opentelemetry.sdk.trace import TracerProvider  # type: ignore
        from opentelemetry.sdk.trace.export import BatchSpanProcessor  # type: ignore
    except ImportError:
        return

    resource = Resource.create({"service.name": config.otel_service_name})
    provider = TracerProvider(resource=resource)

    exporter_kwargs: dict[str, Any] = {}
    if config.otel_exporter_otlp_endpoint:
        exporter_kwargs["endpoint"] = config.otel_exporter_otlp_endpoint

    exporter = OTLPSpanExporter(**exporter_kwargs)
    provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)


def instrument_fastapi(app: Any, config: RuntimeConfig) -> None:
    if not config.otel_enabled:
        return
    try:
        from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor  # type: ignore
    except ImportError:
        return

    FastAPIInstrumentor.instrument_app(app)
