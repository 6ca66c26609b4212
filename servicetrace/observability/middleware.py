"""ASGI middleware applying the route filter in front of request tracing.

Requests accepted by the filter run through OpenTelemetry's ASGI middleware,
which opens the server span and records unhandled exceptions on it. Skipped
requests go straight to the wrapped application and produce no span.

Usage:
    app = FastAPI()
    app.add_middleware(
        FilteredTracingMiddleware,
        route_filter=build_route_filter(config),
        tracer_provider=provider,
    )
"""

from collections.abc import Callable

from opentelemetry.instrumentation.asgi import OpenTelemetryMiddleware
from opentelemetry.trace import TracerProvider
from starlette.requests import HTTPConnection, Request
from starlette.types import ASGIApp, Receive, Scope, Send

_TRACED_SCOPES = frozenset({"http", "websocket"})


class FilteredTracingMiddleware:
    """Trace only the requests the route filter accepts."""

    def __init__(
        self,
        app: ASGIApp,
        *,
        route_filter: Callable[[HTTPConnection], bool],
        tracer_provider: TracerProvider | None = None,
    ) -> None:
        """Initialize the middleware.

        Args:
            app: The ASGI application to wrap.
            route_filter: Returns True for requests that should be traced.
            tracer_provider: Provider for server spans (global one if None).
        """
        self.app = app
        self.route_filter = route_filter
        self.traced_app = OpenTelemetryMiddleware(app, tracer_provider=tracer_provider)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] in _TRACED_SCOPES and self.route_filter(_connection(scope)):
            await self.traced_app(scope, receive, send)
            return

        await self.app(scope, receive, send)


def _connection(scope: Scope) -> HTTPConnection:
    if scope["type"] == "http":
        return Request(scope)
    return HTTPConnection(scope)
