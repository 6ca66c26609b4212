"""Service tracing glue for OpenTelemetry."""
