"""Span helpers for instrumenting application code.

All helpers that touch "the current span" are no-ops returning None when no
recording span is active. Starting a span needs the ambient pipeline and
raises TelemetryNotInitializedError before setup_telemetry has run.
"""

import inspect
import json
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from functools import wraps
from typing import Any, ParamSpec, TypeVar, overload

from opentelemetry import baggage, context, trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode
from opentelemetry.util.types import Attributes
from pydantic_core import to_jsonable_python

from servicetrace.observability.processors import (
    BAGGAGE_TAG_PREFIX,
    format_span_id,
    format_trace_id,
)
from servicetrace.observability.setup import get_telemetry

P = ParamSpec("P")
R = TypeVar("R")

_PRIMITIVE_TYPES = (str, bool, int, float)


@contextmanager
def start_span(
    name: str,
    kind: SpanKind = SpanKind.INTERNAL,
    *,
    attributes: Attributes = None,
    record_exception: bool = True,
) -> Iterator[Span | None]:
    """Start a span on the ambient tracer and make it current.

    Exceptions escaping the block are recorded on the span and, when the
    pipeline has error_status_on_exception set, mark it as ERROR.

    Args:
        name: Span name.
        kind: Span kind, internal by default.
        attributes: Initial span attributes.
        record_exception: Record escaping exceptions as span events.

    Yields:
        The new span, or None if it is not being recorded.

    Raises:
        TelemetryNotInitializedError: If setup_telemetry has not run.
    """
    telemetry = get_telemetry()

    with telemetry.tracer.start_as_current_span(
        name,
        kind=kind,
        attributes=attributes,
        record_exception=record_exception,
        set_status_on_exception=telemetry.config.error_status_on_exception,
    ) as span:
        yield span if span.is_recording() else None


def get_current_span() -> Span | None:
    """Get the active recording span, if any."""
    span = trace.get_current_span()
    if span.is_recording():
        return span
    return None


def fail_current_span(exc: BaseException) -> Span | None:
    """Record an exception on the current span and mark it as failed.

    The exception itself is not re-raised.

    Returns:
        The current span, or None when no span is active.
    """
    span = get_current_span()
    if span is None:
        return None

    span.record_exception(exc)
    span.set_status(Status(StatusCode.ERROR, f"{type(exc).__name__}: {exc}"))
    return span


def record_exception(exc: BaseException) -> Span | None:
    """Record a handled exception on the current span without failing it."""
    span = get_current_span()
    if span is None:
        return None

    span.record_exception(exc)
    return span


def set_tag(value: Any, tag: str) -> Span | None:
    """Set a tag on the current span.

    Strings, numbers, booleans and homogeneous sequences of them are set as
    they are; anything else is stored as JSON.
    """
    span = get_current_span()
    if span is None:
        return None

    if _is_attribute_value(value):
        span.set_attribute(tag, value)
    else:
        span.set_attribute(tag, to_json(value))
    return span


def set_json_tag(value: Any, tag: str) -> Span | None:
    """Set a tag holding the JSON form of value on the current span."""
    span = get_current_span()
    if span is None:
        return None

    span.set_attribute(tag, to_json(value))
    return span


def set_baggage(value: Any, tag: str) -> Span | None:
    """Propagate a value to the current span and every span started below it.

    The value is stored as OpenTelemetry baggage in the current context; the
    enrichment processor copies it onto descendant spans as ``baggage.<tag>``.
    The baggage stays attached until the enclosing span scope exits.

    Returns:
        The current span, or None when no span is active. Nothing is
        attached without an active span.
    """
    span = get_current_span()
    if span is None:
        return None

    serialized = _serialize(value)
    context.attach(baggage.set_baggage(tag, serialized))
    span.set_attribute(f"{BAGGAGE_TAG_PREFIX}{tag}", serialized)
    return span


@contextmanager
def baggage_scope(**values: Any) -> Iterator[None]:
    """Attach baggage for the duration of the block."""
    ctx = context.get_current()
    for key, value in values.items():
        ctx = baggage.set_baggage(key, _serialize(value), context=ctx)
    token = context.attach(ctx)
    try:
        yield
    finally:
        context.detach(token)


def get_current_trace_id() -> str | None:
    """Get the current trace ID as a hex string.

    Returns:
        The trace ID as a 32-character hex string, or None if no active trace.
    """
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        return format_trace_id(span_context.trace_id)
    return None


def get_current_span_id() -> str | None:
    """Get the current span ID as a hex string.

    Returns:
        The span ID as a 16-character hex string, or None if no active span.
    """
    span_context = trace.get_current_span().get_span_context()
    if span_context.is_valid:
        return format_span_id(span_context.span_id)
    return None


def to_json(value: Any) -> str:
    """Serialize a value, pydantic models and dataclasses included, to JSON."""
    return json.dumps(to_jsonable_python(value, fallback=str))


@overload
def traced(  # noqa: UP047
    func: Callable[P, R],
) -> Callable[P, R]: ...


@overload
def traced(
    func: None = None,
    *,
    span_name: str | None = None,
    attributes: dict[str, str | int | float | bool] | None = None,
    record_exception: bool = True,
) -> Callable[[Callable[P, R]], Callable[P, R]]: ...


def traced(  # noqa: UP047
    func: Callable[P, R] | None = None,
    *,
    span_name: str | None = None,
    attributes: dict[str, str | int | float | bool] | None = None,
    record_exception: bool = True,
) -> Callable[P, R] | Callable[[Callable[P, R]], Callable[P, R]]:
    """Decorator to run a function inside a span on the ambient tracer.

    Works with both sync and async functions. Can be used with or without
    parentheses. The tracer is resolved at call time, so decorated functions
    may be defined before setup_telemetry runs. Exceptions always mark the
    span as failed and are re-raised.

    Args:
        func: The function to trace (when used without parentheses).
        span_name: Name for the span (defaults to function name).
        attributes: Static attributes to add to the span.
        record_exception: Whether to record exceptions on the span.

    Returns:
        The decorated function.

    Examples:
        @traced
        def my_function():
            ...

        @traced(span_name="custom.name", attributes={"key": "value"})
        async def my_async_function():
            ...
    """

    def decorator(fn: Callable[P, R]) -> Callable[P, R]:
        name = span_name or fn.__name__

        if inspect.iscoroutinefunction(fn):

            @wraps(fn)
            async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> Any:
                with start_span(
                    name, attributes=attributes, record_exception=record_exception
                ) as span:
                    try:
                        return await fn(*args, **kwargs)
                    except Exception as e:
                        if span is not None:
                            span.set_status(Status(StatusCode.ERROR, str(e)))
                        raise

            return async_wrapper  # type: ignore[return-value]
        else:

            @wraps(fn)
            def sync_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
                with start_span(
                    name, attributes=attributes, record_exception=record_exception
                ) as span:
                    try:
                        return fn(*args, **kwargs)
                    except Exception as e:
                        if span is not None:
                            span.set_status(Status(StatusCode.ERROR, str(e)))
                        raise

            return sync_wrapper

    if func is not None:
        return decorator(func)
    return decorator


def _is_attribute_value(value: Any) -> bool:
    if isinstance(value, _PRIMITIVE_TYPES):
        return True
    if isinstance(value, list | tuple):
        item_types = {type(item) for item in value}
        return len(item_types) <= 1 and all(
            isinstance(item, _PRIMITIVE_TYPES) for item in value
        )
    return False


def _serialize(value: Any) -> str:
    if isinstance(value, str):
        return value
    return to_json(value)
