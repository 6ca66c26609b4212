"""OpenTelemetry setup and initialization."""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog
from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.grpc import (
    GrpcInstrumentorClient,
    GrpcInstrumentorServer,
)
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.sdk.trace.sampling import ALWAYS_ON
from opentelemetry.trace import Tracer

from servicetrace.observability.configuration import TelemetryConfiguration
from servicetrace.observability.exceptions import TelemetryNotInitializedError
from servicetrace.observability.middleware import FilteredTracingMiddleware
from servicetrace.observability.processors import (
    ExceptionRecordingProcessor,
    SpanEnrichmentProcessor,
)
from servicetrace.observability.routes import build_route_filter
from servicetrace.observability.structlog_processor import add_trace_context

if TYPE_CHECKING:
    from fastapi import FastAPI

logger = structlog.get_logger()

# Ambient pipeline for code that does not receive the Telemetry object
_telemetry: "Telemetry | None" = None


@dataclass
class Telemetry:
    """A configured tracing pipeline.

    Returned by setup_telemetry. Pass it explicitly where possible; the most
    recently created instance is also reachable through get_telemetry().
    """

    config: TelemetryConfiguration
    tracer_provider: TracerProvider
    tracer: Tracer
    export_processor: ExceptionRecordingProcessor
    source_tracers: dict[str, Tracer] = field(default_factory=dict)

    def tracer_for(self, source: str) -> Tracer:
        """Get the tracer for a named source on this pipeline."""
        if source == self.config.app_name:
            return self.tracer
        if source not in self.source_tracers:
            self.source_tracers[source] = self.tracer_provider.get_tracer(source)
        return self.source_tracers[source]

    def add_exporter(self, exporter: SpanExporter, *, batch: bool = True) -> None:
        """Attach an exporter behind the exception recording processor.

        Args:
            exporter: Any OpenTelemetry span exporter.
            batch: Export asynchronously through a BatchSpanProcessor. When
                False, spans are exported synchronously as they end.
        """
        if batch:
            processor = BatchSpanProcessor(exporter)
        else:
            processor = SimpleSpanProcessor(exporter)
        self.export_processor.add_exporter(processor)

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        """Export all finished spans that are still buffered."""
        return self.tracer_provider.force_flush(timeout_millis)

    def shutdown(self) -> None:
        """Flush and shut down the pipeline and its exporters."""
        self.tracer_provider.shutdown()


def setup_telemetry(
    config: TelemetryConfiguration,
    *,
    app: "FastAPI | None" = None,
) -> Telemetry:
    """Build a tracing pipeline and make it the ambient one.

    Every call creates an independent pipeline; the newest replaces the
    ambient instance. Call this while building the app, before it serves
    requests, since middleware cannot be added once the app has started.

    Args:
        config: Telemetry options.
        app: Optional FastAPI app whose requests are traced through the
            route filter.

    Returns:
        The configured Telemetry.
    """
    global _telemetry

    resource = Resource.create(
        {
            SERVICE_NAME: config.service_name,
            SERVICE_VERSION: config.service_version,
        }
    )

    tracer_provider = TracerProvider(resource=resource, sampler=ALWAYS_ON)
    tracer_provider.add_span_processor(SpanEnrichmentProcessor())

    export_processor = ExceptionRecordingProcessor(
        error_status=config.error_status_on_exception
    )
    tracer_provider.add_span_processor(export_processor)

    telemetry = Telemetry(
        config=config,
        tracer_provider=tracer_provider,
        tracer=tracer_provider.get_tracer(config.app_name),
        export_processor=export_processor,
    )
    for source in config.sources:
        telemetry.tracer_for(source)

    if config.traces_endpoint:
        telemetry.add_exporter(OTLPSpanExporter(endpoint=config.traces_endpoint))

    if config.console_exporter:
        telemetry.add_exporter(ConsoleSpanExporter())

    # Libraries calling trace.get_tracer() land in this pipeline; only the
    # first provider set in a process takes effect
    trace.set_tracer_provider(tracer_provider)

    if config.configure_logging:
        _configure_structlog()

    if app is not None:
        app.add_middleware(
            FilteredTracingMiddleware,
            route_filter=build_route_filter(config),
            tracer_provider=tracer_provider,
        )

    _instrument_libraries(config, tracer_provider)

    if config.traces_endpoint:
        logger.info(
            "telemetry_export_active",
            service=config.service_name,
            endpoint=config.traces_endpoint,
        )
    else:
        logger.info("telemetry_export_disabled", service=config.service_name)

    if _telemetry is not None:
        logger.warning(
            "telemetry_replaced",
            previous=_telemetry.config.service_name,
            current=config.service_name,
        )
    _telemetry = telemetry

    return telemetry


def get_telemetry() -> Telemetry:
    """Get the ambient telemetry pipeline.

    Raises:
        TelemetryNotInitializedError: If setup_telemetry has not run.
    """
    if _telemetry is None:
        raise TelemetryNotInitializedError("get_telemetry")
    return _telemetry


def shutdown_telemetry() -> None:
    """Shut down the ambient pipeline and flush any pending spans.

    This should be called during application shutdown to ensure all
    spans are exported before the process exits.
    """
    global _telemetry

    if _telemetry is None:
        return

    _telemetry.shutdown()
    _uninstrument_libraries(_telemetry.config)
    _telemetry = None


def _instrument_libraries(
    config: TelemetryConfiguration, tracer_provider: TracerProvider
) -> None:
    # Instrumentors are process-wide; a second pipeline keeps the first binding
    if config.instrument_httpx:
        HTTPXClientInstrumentor().instrument(tracer_provider=tracer_provider)

    if config.instrument_grpc_client:
        GrpcInstrumentorClient().instrument(tracer_provider=tracer_provider)

    if config.instrument_grpc_server:
        GrpcInstrumentorServer().instrument(tracer_provider=tracer_provider)


def _uninstrument_libraries(config: TelemetryConfiguration) -> None:
    if config.instrument_httpx:
        HTTPXClientInstrumentor().uninstrument()

    if config.instrument_grpc_client:
        GrpcInstrumentorClient().uninstrument()

    if config.instrument_grpc_server:
        GrpcInstrumentorServer().uninstrument()


def _configure_structlog() -> None:
    """Render log events as JSON carrying trace_id, span_id and app_location."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            add_trace_context,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.dict_tracebacks,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=logging.INFO,
    )
