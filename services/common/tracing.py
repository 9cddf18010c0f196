"""OpenTelemetry wiring: one provider per process, FastAPI and httpx instrumentation, stage spans."""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

from fastapi import FastAPI
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPGrpcExporter,
)
from opentelemetry.exporter.otlp.proto.http.trace_exporter import (  # type: ignore[attr-defined]
    OTLPSpanExporter as OTLPHttpExporter,
)
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, SpanExporter
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import Span, Status, StatusCode
from opentelemetry.trace import TracerProvider as APITracerProvider

from .config import ServiceSettings

_LOGGER = logging.getLogger(__name__)
_TRACER_NAME = "services.ledger"
_INSTRUMENTED_APPS: set[int] = set()
_httpx_instrumented = False


def _span_exporter(settings: ServiceSettings) -> SpanExporter | None:
    endpoint = settings.tracing_endpoint
    if endpoint is None:
        return None
    if settings.tracing_protocol == "grpc":
        return OTLPGrpcExporter(endpoint=endpoint, insecure=settings.tracing_insecure)
    return OTLPHttpExporter(endpoint=endpoint)


def _build_provider(settings: ServiceSettings) -> TracerProvider:
    resource = Resource.create(
        {
            "service.name": settings.app_name,
            "deployment.environment": settings.environment,
            "ledger.marketplace_id": settings.marketplace_id,
        }
    )
    provider = TracerProvider(
        resource=resource,
        sampler=ParentBased(TraceIdRatioBased(settings.tracing_sample_rate)),
    )
    exporter = _span_exporter(settings)
    if exporter is None:
        _LOGGER.warning(
            "Tracing enabled for %s without an OTLP endpoint; spans stay in-process.",
            settings.app_name,
        )
    else:
        provider.add_span_processor(BatchSpanProcessor(exporter))
    return provider


def _current_or_new_provider(settings: ServiceSettings) -> APITracerProvider:
    installed = trace.get_tracer_provider()
    if isinstance(installed, TracerProvider):
        return installed
    trace.set_tracer_provider(_build_provider(settings))
    # set_tracer_provider is first-writer-wins; read back whichever provider is active.
    return trace.get_tracer_provider()


def configure_tracing(app: FastAPI | None, settings: ServiceSettings) -> None:
    """Install tracing when ``settings.enable_tracing`` is set; safe to call repeatedly.

    ``app`` may be ``None`` for scripts that only need the upstream httpx calls traced.
    """

    global _httpx_instrumented
    if not settings.enable_tracing:
        return

    provider = _current_or_new_provider(settings)
    if app is not None and id(app) not in _INSTRUMENTED_APPS:
        FastAPIInstrumentor().instrument_app(app, tracer_provider=provider)
        _INSTRUMENTED_APPS.add(id(app))
    if not _httpx_instrumented:
        HTTPXClientInstrumentor().instrument(tracer_provider=provider)
        _httpx_instrumented = True


@contextmanager
def stage_span(stage: str, **attributes: Any) -> Iterator[Span]:
    """Open a span for one pipeline stage, marking it failed if the stage raises."""

    tracer = trace.get_tracer(_TRACER_NAME)
    with tracer.start_as_current_span(f"ledger.{stage}", record_exception=False) as span:
        for key, value in attributes.items():
            if value is not None:
                span.set_attribute(f"ledger.{key}", str(value))
        try:
            yield span
        except Exception as exc:
            span.record_exception(exc)
            span.set_status(Status(StatusCode.ERROR, str(exc)))
            raise
