"""Tests for the span enrichment and exception recording processors."""

from unittest.mock import MagicMock

import pytest
from opentelemetry.sdk.trace import SpanLimits, TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import Status, StatusCode, Tracer

from servicetrace.observability import (
    ExceptionRecordingProcessor,
    SpanEnrichmentProcessor,
    baggage_scope,
)
from servicetrace.observability.processors import (
    APP_LOCATION_TAG,
    PARENT_ID_TAG,
    SPAN_ID_TAG,
    TRACE_ID_TAG,
)


class TestSpanEnrichmentProcessor:
    """Tests for SpanEnrichmentProcessor."""

    @pytest.fixture
    def exporter(self) -> InMemorySpanExporter:
        return InMemorySpanExporter()

    @pytest.fixture
    def tracer(self, exporter: InMemorySpanExporter) -> Tracer:
        provider = TracerProvider()
        provider.add_span_processor(SpanEnrichmentProcessor())
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        return provider.get_tracer("test")

    def test_adds_exactly_four_tags(
        self,
        tracer: Tracer,
        exporter: InMemorySpanExporter,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """A bare span carries span id, trace id, parent id and location."""
        monkeypatch.setenv("APP_LOCATION", "eu-west-1")

        with tracer.start_as_current_span("root"):
            pass

        (span,) = exporter.get_finished_spans()
        attrs = dict(span.attributes or {})
        assert set(attrs) == {
            SPAN_ID_TAG,
            TRACE_ID_TAG,
            PARENT_ID_TAG,
            APP_LOCATION_TAG,
        }
        assert attrs[SPAN_ID_TAG] == format(span.context.span_id, "016x")
        assert attrs[TRACE_ID_TAG] == format(span.context.trace_id, "032x")
        assert attrs[PARENT_ID_TAG] == ""
        assert attrs[APP_LOCATION_TAG] == "eu-west-1"

    def test_child_span_gets_parent_id(
        self, tracer: Tracer, exporter: InMemorySpanExporter
    ) -> None:
        """Parent_Id holds the parent's span id."""
        with tracer.start_as_current_span("parent"):  # noqa: SIM117
            with tracer.start_as_current_span("child"):
                pass

        spans = {span.name: span for span in exporter.get_finished_spans()}
        parent_id = format(spans["parent"].context.span_id, "016x")
        assert spans["child"].attributes[PARENT_ID_TAG] == parent_id
        assert spans["child"].attributes[TRACE_ID_TAG] == (
            spans["parent"].attributes[TRACE_ID_TAG]
        )

    def test_missing_location_defaults_to_not_found(
        self,
        tracer: Tracer,
        exporter: InMemorySpanExporter,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """An unset APP_LOCATION is tagged as NotFound."""
        monkeypatch.delenv("APP_LOCATION", raising=False)

        with tracer.start_as_current_span("op"):
            pass

        (span,) = exporter.get_finished_spans()
        assert span.attributes[APP_LOCATION_TAG] == "NotFound"

    def test_location_is_read_per_span(
        self,
        tracer: Tracer,
        exporter: InMemorySpanExporter,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Changing APP_LOCATION at runtime affects later spans."""
        monkeypatch.setenv("APP_LOCATION", "first")
        with tracer.start_as_current_span("one"):
            pass
        monkeypatch.setenv("APP_LOCATION", "second")
        with tracer.start_as_current_span("two"):
            pass

        finished = exporter.get_finished_spans()
        locations = [s.attributes[APP_LOCATION_TAG] for s in finished]
        assert locations == ["first", "second"]

    def test_copies_baggage_onto_new_spans(
        self, tracer: Tracer, exporter: InMemorySpanExporter
    ) -> None:
        """Baggage in the parent context becomes baggage.<key> tags."""
        with baggage_scope(tenant="acme"):  # noqa: SIM117
            with tracer.start_as_current_span("op"):
                pass

        (span,) = exporter.get_finished_spans()
        assert span.attributes["baggage.tenant"] == "acme"


class TestExceptionRecordingProcessor:
    """Tests for ExceptionRecordingProcessor."""

    @pytest.fixture
    def exporter(self) -> InMemorySpanExporter:
        return InMemorySpanExporter()

    def make_tracer(
        self, exporter: InMemorySpanExporter, *, error_status: bool
    ) -> Tracer:
        processor = ExceptionRecordingProcessor(error_status=error_status)
        processor.add_exporter(SimpleSpanProcessor(exporter))
        provider = TracerProvider()
        provider.add_span_processor(processor)
        return provider.get_tracer("test")

    def test_marks_span_with_exception_as_error(
        self, exporter: InMemorySpanExporter
    ) -> None:
        """A recorded exception yields ERROR status when the flag is set."""
        tracer = self.make_tracer(exporter, error_status=True)

        with tracer.start_as_current_span("op") as span:
            span.record_exception(ValueError("boom"))

        (finished,) = exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.ERROR
        assert finished.status.description == "ValueError: boom"
        assert [event.name for event in finished.events] == ["exception"]

    def test_failed_copy_keeps_dropped_counts(
        self, exporter: InMemorySpanExporter
    ) -> None:
        """Counts of attributes and events dropped by span limits survive."""
        processor = ExceptionRecordingProcessor(error_status=True)
        processor.add_exporter(SimpleSpanProcessor(exporter))
        provider = TracerProvider(
            span_limits=SpanLimits(max_attributes=1, max_events=1)
        )
        provider.add_span_processor(processor)
        tracer = provider.get_tracer("test")

        with tracer.start_as_current_span("op") as span:
            span.set_attribute("first", 1)
            span.set_attribute("second", 2)
            span.add_event("checkpoint")
            span.record_exception(ValueError("boom"))

        (finished,) = exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.ERROR
        assert finished.dropped_attributes == 1
        assert finished.dropped_events == 1
        assert [event.name for event in finished.events] == ["exception"]

    def test_leaves_status_unset_without_flag(
        self, exporter: InMemorySpanExporter
    ) -> None:
        """Without the flag, exception events do not change status."""
        tracer = self.make_tracer(exporter, error_status=False)

        with tracer.start_as_current_span("op") as span:
            span.record_exception(ValueError("boom"))

        (finished,) = exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.UNSET

    def test_keeps_explicit_status(self, exporter: InMemorySpanExporter) -> None:
        """An explicitly set status is never overridden."""
        tracer = self.make_tracer(exporter, error_status=True)

        with tracer.start_as_current_span("op") as span:
            span.record_exception(ValueError("handled"))
            span.set_status(Status(StatusCode.OK))

        (finished,) = exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.OK

    def test_forwards_spans_without_exception_unchanged(
        self, exporter: InMemorySpanExporter
    ) -> None:
        """Spans without exception events are exported as they are."""
        tracer = self.make_tracer(exporter, error_status=True)

        with tracer.start_as_current_span("op") as span:
            span.set_attribute("key", "value")

        (finished,) = exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.UNSET
        assert finished.attributes["key"] == "value"

    def test_independent_of_enrichment_order(
        self, exporter: InMemorySpanExporter
    ) -> None:
        """Enrichment tags survive regardless of processor registration order."""
        processor = ExceptionRecordingProcessor(error_status=True)
        processor.add_exporter(SimpleSpanProcessor(exporter))
        provider = TracerProvider()
        provider.add_span_processor(processor)
        provider.add_span_processor(SpanEnrichmentProcessor())
        tracer = provider.get_tracer("test")

        with tracer.start_as_current_span("op") as span:
            span.record_exception(RuntimeError("late"))

        (finished,) = exporter.get_finished_spans()
        assert finished.status.status_code == StatusCode.ERROR
        assert SPAN_ID_TAG in finished.attributes

    def test_flush_and_shutdown_reach_every_exporter(self) -> None:
        """force_flush and shutdown are forwarded to all export processors."""
        first, second = MagicMock(), MagicMock()
        first.force_flush.return_value = True
        second.force_flush.return_value = False
        processor = ExceptionRecordingProcessor()
        processor.add_exporter(first)
        processor.add_exporter(second)

        assert processor.force_flush(100) is False
        processor.shutdown()

        first.force_flush.assert_called_once_with(100)
        second.force_flush.assert_called_once_with(100)
        first.shutdown.assert_called_once()
        second.shutdown.assert_called_once()
        assert processor.exporters == (first, second)
