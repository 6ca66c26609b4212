"""Span processors that tag spans and route them to exporters.

OpenTelemetry freezes a span's attributes before ``on_end`` runs, so the
enrichment tags are written in ``on_start``, where every value they need is
already known. Status corrections for completed spans are applied on the
export path by forwarding an amended copy of the span.
"""

import os

import structlog
from opentelemetry import baggage
from opentelemetry.attributes import BoundedAttributes
from opentelemetry.context import Context
from opentelemetry.sdk.trace import Event, ReadableSpan, Span, SpanProcessor
from opentelemetry.sdk.util import BoundedList
from opentelemetry.trace import Status, StatusCode

logger = structlog.get_logger()

APP_LOCATION_ENV = "APP_LOCATION"
APP_LOCATION_DEFAULT = "NotFound"

SPAN_ID_TAG = "Span_Id"
TRACE_ID_TAG = "Trace_Id"
PARENT_ID_TAG = "Parent_Id"
APP_LOCATION_TAG = "AppLocation"
BAGGAGE_TAG_PREFIX = "baggage."

EXCEPTION_EVENT = "exception"


def get_app_location() -> str:
    """Read the deployment location label from the environment."""
    return os.environ.get(APP_LOCATION_ENV) or APP_LOCATION_DEFAULT


def format_trace_id(trace_id: int) -> str:
    """Render a trace id as 32 lowercase hex characters."""
    return format(trace_id, "032x")


def format_span_id(span_id: int) -> str:
    """Render a span id as 16 lowercase hex characters."""
    return format(span_id, "016x")


class SpanEnrichmentProcessor(SpanProcessor):
    """Tag every span with its identifiers and deployment location.

    Baggage found in the parent context is copied onto the span as
    ``baggage.<key>`` tags so values set with set_baggage reach descendants.
    """

    def on_start(self, span: Span, parent_context: Context | None = None) -> None:
        span_context = span.get_span_context()
        parent = span.parent

        span.set_attributes(
            {
                SPAN_ID_TAG: format_span_id(span_context.span_id),
                TRACE_ID_TAG: format_trace_id(span_context.trace_id),
                PARENT_ID_TAG: format_span_id(parent.span_id) if parent else "",
                APP_LOCATION_TAG: get_app_location(),
            }
        )

        for key, value in baggage.get_all(context=parent_context).items():
            span.set_attribute(f"{BAGGAGE_TAG_PREFIX}{key}", str(value))


class ExceptionRecordingProcessor(SpanProcessor):
    """Forward completed spans to the export processors.

    Spans carrying an exception event and no explicit status are forwarded
    with ERROR status when ``error_status`` is enabled.
    """

    def __init__(self, *, error_status: bool = False) -> None:
        self._error_status = error_status
        self._exporters: tuple[SpanProcessor, ...] = ()

    @property
    def exporters(self) -> tuple[SpanProcessor, ...]:
        return self._exporters

    def add_exporter(self, processor: SpanProcessor) -> None:
        """Append an export processor (batch or simple) to the pipeline."""
        self._exporters = (*self._exporters, processor)

    def on_start(self, span: Span, parent_context: Context | None = None) -> None:
        for processor in self._exporters:
            processor.on_start(span, parent_context=parent_context)

    def on_end(self, span: ReadableSpan) -> None:
        if self._error_status and span.status.status_code is StatusCode.UNSET:
            exception_event = _find_exception_event(span)
            if exception_event is not None:
                span = _with_error_status(span, exception_event)

        for processor in self._exporters:
            processor.on_end(span)

    def shutdown(self) -> None:
        for processor in self._exporters:
            processor.shutdown()

    def force_flush(self, timeout_millis: int = 30000) -> bool:
        # Flush every processor even if an earlier one timed out
        results = [
            processor.force_flush(timeout_millis) for processor in self._exporters
        ]
        return all(results)


def _find_exception_event(span: ReadableSpan) -> Event | None:
    for event in span.events:
        if event.name == EXCEPTION_EVENT:
            return event
    return None


def _with_error_status(span: ReadableSpan, exception_event: Event) -> ReadableSpan:
    attributes = exception_event.attributes or {}
    exception_type = attributes.get("exception.type", "Exception")
    description = f"{exception_type}: {attributes.get('exception.message', '')}"

    logger.debug("span_marked_failed", span_name=span.name, error=description)

    # Bounded containers carry the dropped counts reported to exporters
    span_attributes = BoundedAttributes(attributes=span.attributes, immutable=True)
    span_attributes.dropped = span.dropped_attributes
    events = BoundedList.from_seq(None, span.events)
    events.dropped = span.dropped_events
    links = BoundedList.from_seq(None, span.links)
    links.dropped = span.dropped_links

    return ReadableSpan(
        name=span.name,
        context=span.get_span_context(),
        parent=span.parent,
        resource=span.resource,
        attributes=span_attributes,
        events=events,
        links=links,
        kind=span.kind,
        status=Status(StatusCode.ERROR, description),
        start_time=span.start_time,
        end_time=span.end_time,
        instrumentation_scope=span.instrumentation_scope,
    )
