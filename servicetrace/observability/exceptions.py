"""Custom exceptions for telemetry operations."""


class TelemetryNotInitializedError(RuntimeError):
    """Raised when the ambient telemetry is used before setup_telemetry ran."""

    def __init__(self, operation: str = "telemetry access") -> None:
        self.operation = operation
        super().__init__(
            f"Telemetry not initialized ({operation}). Call setup_telemetry first."
        )
