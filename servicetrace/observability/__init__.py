"""Observability module wiring services into OpenTelemetry tracing."""

from servicetrace.observability.configuration import (
    RequestFilter,
    TelemetryConfiguration,
)
from servicetrace.observability.exceptions import TelemetryNotInitializedError
from servicetrace.observability.middleware import FilteredTracingMiddleware
from servicetrace.observability.processors import (
    ExceptionRecordingProcessor,
    SpanEnrichmentProcessor,
)
from servicetrace.observability.routes import build_route_filter, should_trace
from servicetrace.observability.setup import (
    Telemetry,
    get_telemetry,
    setup_telemetry,
    shutdown_telemetry,
)
from servicetrace.observability.structlog_processor import add_trace_context
from servicetrace.observability.tracing import (
    baggage_scope,
    fail_current_span,
    get_current_span,
    get_current_span_id,
    get_current_trace_id,
    record_exception,
    set_baggage,
    set_json_tag,
    set_tag,
    start_span,
    traced,
)

__all__ = [
    "ExceptionRecordingProcessor",
    "FilteredTracingMiddleware",
    "RequestFilter",
    "SpanEnrichmentProcessor",
    "Telemetry",
    "TelemetryConfiguration",
    "TelemetryNotInitializedError",
    "add_trace_context",
    "baggage_scope",
    "build_route_filter",
    "fail_current_span",
    "get_current_span",
    "get_current_span_id",
    "get_current_trace_id",
    "get_telemetry",
    "record_exception",
    "set_baggage",
    "set_json_tag",
    "set_tag",
    "setup_telemetry",
    "should_trace",
    "shutdown_telemetry",
    "start_span",
    "traced",
]
