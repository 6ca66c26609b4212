#!/usr/bin/env python3
"""CLI script to send a test trace through the configured pipeline.

Reads TELEMETRY_* settings (or .env), builds the pipeline and emits a small
parent/child trace so collector connectivity can be checked by hand.

Usage:
    uv run python scripts/send_test_span.py
    uv run python scripts/send_test_span.py --endpoint http://localhost:4318 --console
"""

import argparse
import sys
from pathlib import Path

# Add project root to path so we can import modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from servicetrace.config import TelemetrySettings
from servicetrace.observability import (
    fail_current_span,
    get_current_trace_id,
    set_tag,
    setup_telemetry,
    shutdown_telemetry,
    start_span,
)


def send_test_trace(endpoint: str | None, console: bool, fail: bool) -> int:
    """Emit one test trace and flush it.

    Args:
        endpoint: Collector URL overriding TELEMETRY_ENDPOINT.
        console: Also print spans to stdout.
        fail: Mark the child span as failed.

    Returns:
        Exit code (0 for success, 1 for failure).
    """
    overrides: dict[str, object] = {"console_exporter": console}
    if endpoint is not None:
        overrides["endpoint"] = endpoint
    settings = TelemetrySettings(**overrides)

    if settings.endpoint is None and not console:
        print("✗ Error: no exporter configured", file=sys.stderr)
        print("  Set TELEMETRY_ENDPOINT, pass --endpoint or --console", file=sys.stderr)
        return 1

    telemetry = setup_telemetry(settings.to_configuration())

    try:
        with start_span("servicetrace.test"):
            trace_id = get_current_trace_id()
            set_tag({"script": "send_test_span"}, "payload")
            with start_span("servicetrace.test.child"):
                if fail:
                    fail_current_span(RuntimeError("requested failure"))

        if not telemetry.force_flush():
            print("✗ Error: spans were not flushed in time", file=sys.stderr)
            return 1
    finally:
        shutdown_telemetry()

    print(f"✓ Sent test trace for {telemetry.config.service_name}")
    print(f"  Trace ID: {trace_id}")
    return 0


def main() -> None:
    """Parse arguments and send the trace."""
    parser = argparse.ArgumentParser(
        description="Send a test trace to the configured exporters",
    )
    parser.add_argument("--endpoint", help="OTLP/HTTP collector URL")
    parser.add_argument(
        "--console",
        action="store_true",
        help="Print spans to stdout",
    )
    parser.add_argument(
        "--fail",
        action="store_true",
        help="Mark the child span as failed",
    )

    args = parser.parse_args()
    sys.exit(send_test_trace(args.endpoint, args.console, args.fail))


if __name__ == "__main__":
    main()
