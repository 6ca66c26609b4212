"""Structlog processor correlating log events with the active span."""

from typing import Any

from opentelemetry import trace

from servicetrace.observability.processors import (
    format_span_id,
    format_trace_id,
    get_app_location,
)


def add_trace_context(
    logger: Any,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Add trace_id, span_id and app_location to a log event.

    Ids are only added inside a valid span context; app_location is the
    same label the enrichment processor puts on spans.

    Args:
        logger: The logger instance (unused, required by structlog API).
        method_name: The log method name (unused, required by structlog API).
        event_dict: The log event dictionary to enrich.

    Returns:
        The enriched event dictionary.
    """
    span_context = trace.get_current_span().get_span_context()

    if span_context.is_valid:
        event_dict["trace_id"] = format_trace_id(span_context.trace_id)
        event_dict["span_id"] = format_span_id(span_context.span_id)

    event_dict.setdefault("app_location", get_app_location())
    return event_dict
