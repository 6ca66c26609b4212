"""Shared fixtures for telemetry tests."""

from collections.abc import Callable, Iterator
from typing import Any

import pytest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

import servicetrace.observability.setup as setup_module
from servicetrace.observability import (
    Telemetry,
    TelemetryConfiguration,
    setup_telemetry,
)


@pytest.fixture(autouse=True)
def reset_ambient_telemetry(monkeypatch: pytest.MonkeyPatch) -> None:
    """Start every test without an ambient pipeline."""
    monkeypatch.setattr(setup_module, "_telemetry", None)


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    """In-memory exporter collecting finished spans."""
    return InMemorySpanExporter()


@pytest.fixture
def make_config() -> Callable[..., TelemetryConfiguration]:
    """Build a configuration with library instrumentation and logging setup off."""

    def factory(**overrides: Any) -> TelemetryConfiguration:
        options: dict[str, Any] = {
            "app_name": "orders",
            "app_name_prefix": "test-",
            "instrument_httpx": False,
            "instrument_grpc_client": False,
            "instrument_grpc_server": False,
            "configure_logging": False,
        }
        options.update(overrides)
        return TelemetryConfiguration(**options)

    return factory


@pytest.fixture
def make_telemetry(
    make_config: Callable[..., TelemetryConfiguration],
    span_exporter: InMemorySpanExporter,
) -> Iterator[Callable[..., Telemetry]]:
    """Set up pipelines exporting synchronously into span_exporter."""
    created: list[Telemetry] = []

    def factory(*, app: Any = None, **overrides: Any) -> Telemetry:
        telemetry = setup_telemetry(make_config(**overrides), app=app)
        telemetry.add_exporter(span_exporter, batch=False)
        created.append(telemetry)
        return telemetry

    yield factory

    for telemetry in created:
        telemetry.shutdown()


@pytest.fixture
def telemetry(make_telemetry: Callable[..., Telemetry]) -> Telemetry:
    """Default ambient pipeline."""
    return make_telemetry()
