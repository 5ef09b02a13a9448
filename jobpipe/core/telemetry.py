from __future__ import annotations

from dataclasses import dataclass, field
import logging
import os
from typing import Literal

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import DEPLOYMENT_ENVIRONMENT, SERVICE_NAME, SERVICE_NAMESPACE, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased

from jobpipe.core.config import Settings

Component = Literal["api", "worker"]

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s trace_id=%(trace_id)s span_id=%(span_id)s %(message)s"
_ZERO_TRACE_ID = "0" * 32
_ZERO_SPAN_ID = "0" * 16

_base_record_factory = logging.getLogRecordFactory()
_httpx_instrumentor = HTTPXClientInstrumentor()


@dataclass(slots=True)
class TelemetryRuntime:
    component: Component
    provider: TracerProvider | None = None
    instrumented_apps: list[FastAPI] = field(default_factory=list)

    @property
    def enabled(self) -> bool:
        return self.provider is not None


def configure_logging() -> None:
    _install_trace_ids_on_records()
    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)


def setup_telemetry(settings: Settings, *, component: Component, app: FastAPI | None = None) -> TelemetryRuntime:
    """Install the tracer provider for one pipeline process.

    The API and the worker share a service name; ``jobpipe.component`` tells
    their spans apart and ``jobpipe.storage_backend`` marks in-memory runs.
    """
    runtime = TelemetryRuntime(component=component)
    if not settings.otel_enabled:
        return runtime

    if settings.otel_log_correlation:
        _install_trace_ids_on_records()

    runtime.provider = TracerProvider(
        resource=Resource.create(
            {
                SERVICE_NAME: settings.otel_service_name,
                SERVICE_NAMESPACE: "jobpipe",
                DEPLOYMENT_ENVIRONMENT: settings.environment,
                "jobpipe.component": component,
                "jobpipe.storage_backend": settings.storage_backend,
            }
        ),
        sampler=ParentBased(TraceIdRatioBased(settings.otel_trace_sample_ratio)),
    )
    exporter = _span_exporter(settings)
    if exporter is None:
        logging.getLogger(__name__).info("no OTLP endpoint configured; %s spans stay in-process", component)
    else:
        runtime.provider.add_span_processor(BatchSpanProcessor(exporter))
    trace.set_tracer_provider(runtime.provider)

    # Detail-fetch and AI calls go through httpx.
    _httpx_instrumentor.instrument(tracer_provider=runtime.provider)
    if app is not None:
        FastAPIInstrumentor.instrument_app(app, tracer_provider=runtime.provider, excluded_urls="health")
        runtime.instrumented_apps.append(app)
    return runtime


def shutdown_telemetry(runtime: TelemetryRuntime) -> None:
    if runtime.provider is None:
        return
    for app in runtime.instrumented_apps:
        FastAPIInstrumentor.uninstrument_app(app)
    _httpx_instrumentor.uninstrument()
    runtime.provider.force_flush()
    runtime.provider.shutdown()
    runtime.provider = None


def _span_exporter(settings: Settings) -> OTLPSpanExporter | None:
    endpoint = (
        settings.otel_exporter_otlp_endpoint
        or os.getenv("OTEL_EXPORTER_OTLP_TRACES_ENDPOINT")
        or os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT")
    )
    if not endpoint:
        return None
    # Without explicit headers the exporter reads OTEL_EXPORTER_OTLP_HEADERS itself.
    headers = _parse_headers(settings.otel_exporter_otlp_headers)
    return OTLPSpanExporter(endpoint=endpoint, headers=headers or None)


def _parse_headers(raw: str | None) -> dict[str, str]:
    pairs = (item.partition("=") for item in (raw or "").split(","))
    return {key.strip(): value.strip() for key, sep, value in pairs if sep and key.strip()}


def _install_trace_ids_on_records() -> None:
    if getattr(logging.getLogRecordFactory(), "_jobpipe_trace_ids", False):
        return

    def record_factory(*args: object, **kwargs: object) -> logging.LogRecord:
        record = _base_record_factory(*args, **kwargs)
        context = trace.get_current_span().get_span_context()
        record.trace_id = format(context.trace_id, "032x") if context.is_valid else _ZERO_TRACE_ID
        record.span_id = format(context.span_id, "016x") if context.is_valid else _ZERO_SPAN_ID
        return record

    record_factory._jobpipe_trace_ids = True  # type: ignore[attr-defined]
    logging.setLogRecordFactory(record_factory)
