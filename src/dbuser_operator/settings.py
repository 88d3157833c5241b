"""Centralized operator settings using pydantic-settings.

This module provides a single source of truth for all operator configuration
loaded from environment variables. Uses pydantic for automatic validation,
type coercion, and documentation.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from dbuser_operator import __version__


class Settings(BaseSettings):
    """Operator configuration loaded from environment variables.

    All settings have sensible defaults for production use. Override via
    environment variables as documented per field.
    """

    model_config = SettingsConfigDict(
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Operator identification
    operator_name: str = Field(
        default="dbuser-operator",
        description="Name of the operator deployment",
        validation_alias="OPERATOR_NAME",
    )
    operator_version: str = Field(
        default=__version__,
        description="Operator version used to validate the resource-version annotation",
        validation_alias="OPERATOR_VERSION",
    )

    # Logging configuration
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)",
    )
    json_logs: bool = Field(
        default=True,
        validation_alias="JSON_LOGS",
        description="Enable JSON formatted logging for structured log aggregation",
    )
    correlation_ids: bool = Field(
        default=True,
        validation_alias="CORRELATION_IDS",
        description="Enable correlation IDs in logs for request tracing",
    )

    # Namespace watching
    namespaces: str = Field(
        default="",
        validation_alias="DBUSER_OPERATOR_NAMESPACES",
        description="Comma-separated list of namespaces to watch (empty = all namespaces)",
    )

    # Metrics and observability
    metrics_port: int = Field(
        default=8081,
        validation_alias="METRICS_PORT",
        description="Port for Prometheus metrics endpoint",
    )
    metrics_host: str = Field(
        default="0.0.0.0",
        validation_alias="METRICS_HOST",
        description="Host address to bind metrics server",
    )
    tracing_enabled: bool = Field(
        default=False,
        validation_alias="OTEL_TRACING_ENABLED",
        description="Enable OpenTelemetry tracing",
    )
    tracing_endpoint: str = Field(
        default="http://localhost:4317",
        validation_alias="OTEL_EXPORTER_OTLP_ENDPOINT",
        description="OTLP collector endpoint (gRPC)",
    )
    tracing_sample_rate: float = Field(
        default=1.0,
        validation_alias="OTEL_SAMPLE_RATE",
        description="Fraction of root traces to sample (0.0-1.0)",
    )

    # Remote database service API
    remote_api_base_url: str = Field(
        default="https://cloud.mongodb.com",
        validation_alias="REMOTE_API_BASE_URL",
        description="Base URL of the remote database service admin API",
    )
    remote_api_public_key: str = Field(
        default="",
        validation_alias="REMOTE_API_PUBLIC_KEY",
        description="Public API key used for digest authentication",
    )
    remote_api_private_key: str = Field(
        default="",
        validation_alias="REMOTE_API_PRIVATE_KEY",
        description="Private API key used for digest authentication",
    )
    remote_api_timeout_seconds: float = Field(
        default=30.0,
        validation_alias="REMOTE_API_TIMEOUT_SECONDS",
        description="Timeout in seconds for remote API requests",
    )

    # Rate limiting for the remote API
    api_global_rate_limit_tps: float = Field(
        default=20.0,
        validation_alias="REMOTE_API_GLOBAL_RATE_LIMIT_TPS",
        description="Global transactions per second limit for remote API calls",
    )
    api_global_burst: int = Field(
        default=40,
        validation_alias="REMOTE_API_GLOBAL_BURST",
        description="Global burst capacity for remote API rate limiting",
    )
    api_project_rate_limit_tps: float = Field(
        default=5.0,
        validation_alias="REMOTE_API_PROJECT_RATE_LIMIT_TPS",
        description="Per-project transactions per second limit for remote API calls",
    )
    api_project_burst: int = Field(
        default=10,
        validation_alias="REMOTE_API_PROJECT_BURST",
        description="Per-project burst capacity for remote API rate limiting",
    )

    # Circuit breaker
    circuit_breaker_fail_max: int = Field(
        default=5,
        validation_alias="CIRCUIT_BREAKER_FAIL_MAX",
        description="Consecutive failures before the remote API circuit opens",
    )
    circuit_breaker_reset_seconds: int = Field(
        default=60,
        validation_alias="CIRCUIT_BREAKER_RESET_SECONDS",
        description="Seconds before an open circuit allows a trial request",
    )

    # Reconciliation behavior
    object_deletion_protection: bool = Field(
        default=False,
        validation_alias="OBJECT_DELETION_PROTECTION",
        description="Keep remote users when their DatabaseUser resource is deleted",
    )
    restricted_mode: bool = Field(
        default=False,
        validation_alias="RESTRICTED_MODE",
        description="Government/restricted cloud mode with a reduced feature set",
    )
    retry_interval_seconds: float = Field(
        default=10.0,
        validation_alias="RETRY_INTERVAL_SECONDS",
        description="Delay before retrying an in-progress or failed reconciliation",
    )
    independent_sync_period_seconds: float = Field(
        default=900.0,
        validation_alias="INDEPENDENT_SYNC_PERIOD_SECONDS",
        description="Re-poll interval for users referencing an external project",
    )
    reconcile_timeout_seconds: float = Field(
        default=300.0,
        validation_alias="RECONCILE_TIMEOUT_SECONDS",
        description="Deadline for a single reconciliation before its status write is abandoned",
    )
    reconcile_jitter_max_seconds: float = Field(
        default=2.0,
        validation_alias="RECONCILE_JITTER_MAX_SECONDS",
        description="Maximum jitter in seconds for reconciliation scheduling",
    )
    max_workers: int = Field(
        default=20,
        validation_alias="MAX_WORKERS",
        description="Maximum number of concurrently processed resources",
    )

    @property
    def watched_namespaces(self) -> list[str] | None:
        """Parse watched namespaces from comma-separated string.

        Returns:
            List of namespace names, or None to watch all namespaces
        """
        if self.namespaces:
            return [ns.strip() for ns in self.namespaces.split(",") if ns.strip()]
        return None


# Global settings instance - initialized once at module import
settings = Settings()
