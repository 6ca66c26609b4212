"""Immutable telemetry options shared by setup and the route filter."""

from collections.abc import Callable

from pydantic import BaseModel, ConfigDict, HttpUrl
from starlette.requests import HTTPConnection

# Returns True when the request must NOT be traced.
RequestFilter = Callable[[HTTPConnection], bool]


class TelemetryConfiguration(BaseModel):
    """Options for a telemetry pipeline.

    Attributes:
        app_name: Name of the traced application; also the name of its tracer.
        app_name_prefix: Prepended to app_name to form the exported service name.
        error_status_on_exception: Mark spans as ERROR when an exception
            propagates through them.
        ignore_routes: Path substrings that are never traced. None or empty
            means every route is traced.
        sources: Additional instrumentation scope names to trace.
        endpoint: OTLP/HTTP collector base URL. None disables network export.
        console_exporter: Also print finished spans to stdout.
        request_filter: Caller predicate; returning True skips the request.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    app_name: str
    app_name_prefix: str
    error_status_on_exception: bool = False
    ignore_routes: tuple[str, ...] | None = None
    sources: tuple[str, ...] = ()
    endpoint: HttpUrl | None = None
    console_exporter: bool = False
    request_filter: RequestFilter | None = None
    service_version: str = "0.0.0"

    # Library instrumentation toggles
    instrument_httpx: bool = True
    instrument_grpc_client: bool = True
    instrument_grpc_server: bool = True

    # Configure structlog with trace context injection during setup
    configure_logging: bool = True

    @property
    def service_name(self) -> str:
        """Exported service name."""
        return f"{self.app_name_prefix}{self.app_name}"

    @property
    def traces_endpoint(self) -> str | None:
        """Full OTLP/HTTP traces URL, or None when export is disabled."""
        if self.endpoint is None:
            return None
        return f"{str(self.endpoint).rstrip('/')}/v1/traces"
