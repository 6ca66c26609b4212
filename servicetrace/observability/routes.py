"""Route filter policy deciding which incoming requests get a server span."""

from collections.abc import Callable, Iterable

from starlette.requests import HTTPConnection

from servicetrace.observability.configuration import TelemetryConfiguration

# Health checks, metrics scraping, dependency checks and API docs are never traced.
ALWAYS_IGNORED_FRAGMENTS: tuple[str, ...] = (
    "isalive",
    "metrics",
    "dependencies",
    "swagger",
)
ROOT_PATH = "/"


def is_always_ignored(path: str) -> bool:
    """Check a path against the built-in exclusion floor."""
    if path == ROOT_PATH:
        return True
    return any(fragment in path for fragment in ALWAYS_IGNORED_FRAGMENTS)


def should_trace(path: str, ignore_routes: Iterable[str] | None = None) -> bool:
    """Decide whether a request path should be traced.

    Args:
        path: Request path, e.g. "/api/orders/42".
        ignore_routes: Case-sensitive substrings. A path containing any of
            them is skipped. None or empty traces every path.

    Returns:
        True to record a span, False to skip the request.
    """
    if is_always_ignored(path):
        return False

    if not ignore_routes:
        return True

    return not any(route in path for route in ignore_routes)


def build_route_filter(
    config: TelemetryConfiguration,
) -> Callable[[HTTPConnection], bool]:
    """Build the request predicate installed into the tracing middleware.

    The caller-supplied request_filter runs first; when it returns True the
    request is skipped without consulting the ignore list.
    """
    request_filter = config.request_filter
    ignore_routes = config.ignore_routes

    def route_filter(request: HTTPConnection) -> bool:
        if request_filter is not None and request_filter(request):
            return False
        return should_trace(request.url.path, ignore_routes)

    return route_filter
