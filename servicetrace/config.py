"""Telemetry configuration loaded with pydantic-settings."""

from functools import lru_cache

from pydantic import HttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict

from servicetrace.observability.configuration import TelemetryConfiguration


class TelemetrySettings(BaseSettings):
    """Telemetry settings loaded from TELEMETRY_* environment variables.

    List values (ignore_routes, sources) are given as JSON arrays, e.g.
    TELEMETRY_IGNORE_ROUTES='["/internal", "/debug"]'.
    """

    model_config = SettingsConfigDict(
        env_prefix="TELEMETRY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service identity
    app_name: str = "service"
    app_name_prefix: str = ""
    service_version: str = "0.1.0"

    # Export
    endpoint: HttpUrl | None = None  # OTLP/HTTP collector, e.g. http://localhost:4318
    console_exporter: bool = False

    # Span policy
    error_status_on_exception: bool = False
    ignore_routes: list[str] | None = None
    sources: list[str] = []

    # Library instrumentation
    instrument_httpx: bool = True
    instrument_grpc_client: bool = True
    instrument_grpc_server: bool = True

    configure_logging: bool = True

    def to_configuration(self) -> TelemetryConfiguration:
        """Build the immutable options value used by setup_telemetry."""
        return TelemetryConfiguration(
            app_name=self.app_name,
            app_name_prefix=self.app_name_prefix,
            service_version=self.service_version,
            endpoint=self.endpoint,
            console_exporter=self.console_exporter,
            error_status_on_exception=self.error_status_on_exception,
            ignore_routes=self.ignore_routes,
            sources=self.sources,
            instrument_httpx=self.instrument_httpx,
            instrument_grpc_client=self.instrument_grpc_client,
            instrument_grpc_server=self.instrument_grpc_server,
            configure_logging=self.configure_logging,
        )


@lru_cache
def get_settings() -> TelemetrySettings:
    """Get cached settings instance."""
    return TelemetrySettings()
