"""
Prometheus metrics for the database user operator.

This module provides metrics collection for monitoring reconciliation
outcomes, remote API usage, and the connection secrets the operator owns.
"""

import logging
import time
from contextlib import asynccontextmanager

# aiohttp ships with kopf; reuse it for the metrics endpoint
from aiohttp.web import (
    Application,
    AppRunner,
    Request,
    Response,
    TCPSite,
)
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

logger = logging.getLogger(__name__)

# Global metrics registry
_metrics_registry: CollectorRegistry | None = None

# Metrics definitions
RECONCILIATION_TOTAL = Counter(
    "dbuser_operator_reconciliation_total",
    "Total number of reconciliations by outcome",
    ["resource_type", "namespace", "outcome"],
    registry=None,
)

RECONCILIATION_DURATION = Histogram(
    "dbuser_operator_reconciliation_duration_seconds",
    "Time spent on reconciliation operations",
    ["resource_type", "namespace"],
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
    registry=None,
)

RECONCILIATION_ERRORS = Counter(
    "dbuser_operator_reconciliation_errors_total",
    "Total number of unexpected reconciliation errors",
    ["resource_type", "namespace", "error_type"],
    registry=None,
)

STATUS_WRITES_TOTAL = Counter(
    "dbuser_operator_status_writes_total",
    "Status sub-resource writes by result (written, skipped, cancelled, failed)",
    ["resource_type", "result"],
    registry=None,
)

DEPLOYMENTS_READY = Gauge(
    "dbuser_operator_deployments_ready",
    "Deployments that applied the latest database user changes",
    ["namespace", "name", "state"],
    registry=None,
)

CONNECTION_SECRETS_TOTAL = Counter(
    "dbuser_operator_connection_secrets_total",
    "Connection secret operations by action (materialized, reaped)",
    ["namespace", "action"],
    registry=None,
)

REMOTE_API_REQUESTS_TOTAL = Counter(
    "dbuser_operator_remote_api_requests_total",
    "Remote API requests by method and HTTP status",
    ["method", "status"],
    registry=None,
)

REMOTE_API_REQUEST_DURATION = Histogram(
    "dbuser_operator_remote_api_request_duration_seconds",
    "Latency of remote API requests",
    ["method"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
    registry=None,
)

# Rate limiting metrics
RATE_LIMIT_WAIT_SECONDS = Histogram(
    "dbuser_operator_rate_limit_wait_seconds",
    "Time spent waiting for rate limit tokens",
    ["limit_type"],
    buckets=[0.001, 0.01, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0],
    registry=None,
)

RATE_LIMIT_TIMEOUTS_TOTAL = Counter(
    "dbuser_operator_rate_limit_timeouts_total",
    "Total rate limit timeout errors",
    ["limit_type"],
    registry=None,
)

CIRCUIT_BREAKER_STATE = Gauge(
    "dbuser_operator_circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=open, 2=half-open)",
    ["breaker"],
    registry=None,
)

ALL_METRICS = (
    RECONCILIATION_TOTAL,
    RECONCILIATION_DURATION,
    RECONCILIATION_ERRORS,
    STATUS_WRITES_TOTAL,
    DEPLOYMENTS_READY,
    CONNECTION_SECRETS_TOTAL,
    REMOTE_API_REQUESTS_TOTAL,
    REMOTE_API_REQUEST_DURATION,
    RATE_LIMIT_WAIT_SECONDS,
    RATE_LIMIT_TIMEOUTS_TOTAL,
    CIRCUIT_BREAKER_STATE,
)


def get_metrics_registry() -> CollectorRegistry:
    """Get or create the global metrics registry."""
    global _metrics_registry

    if _metrics_registry is None:
        _metrics_registry = CollectorRegistry()
        for metric in ALL_METRICS:
            _metrics_registry.register(metric)

    return _metrics_registry


class MetricsCollector:
    """Collects and manages metrics for the database user operator."""

    def __init__(self):
        self.registry = get_metrics_registry()

    @asynccontextmanager
    async def track_reconciliation(self, resource_type: str, namespace: str):
        """
        Context manager timing a reconciliation and counting unexpected errors.

        Args:
            resource_type: Type of resource being reconciled
            namespace: Namespace of the resource
        """
        start_time = time.time()

        try:
            yield
        except Exception as e:
            RECONCILIATION_ERRORS.labels(
                resource_type=resource_type,
                namespace=namespace,
                error_type=type(e).__name__,
            ).inc()
            raise
        finally:
            RECONCILIATION_DURATION.labels(
                resource_type=resource_type, namespace=namespace
            ).observe(time.time() - start_time)

    def record_outcome(self, resource_type: str, namespace: str, outcome: str) -> None:
        """Count a finished reconciliation by the outcome it ended in."""
        RECONCILIATION_TOTAL.labels(
            resource_type=resource_type, namespace=namespace, outcome=outcome
        ).inc()

    def record_status_write(self, resource_type: str, result: str) -> None:
        """Count a status write attempt by result."""
        STATUS_WRITES_TOTAL.labels(resource_type=resource_type, result=result).inc()

    def update_deployment_readiness(
        self, namespace: str, name: str, ready: int, total: int
    ) -> None:
        """
        Publish how many deployments applied a user's latest changes.

        Args:
            namespace: Namespace of the DatabaseUser
            name: Name of the DatabaseUser
            ready: Deployments that report the change as applied
            total: Deployments the user is scoped to
        """
        DEPLOYMENTS_READY.labels(namespace=namespace, name=name, state="ready").set(
            ready
        )
        DEPLOYMENTS_READY.labels(namespace=namespace, name=name, state="total").set(
            total
        )

    def record_connection_secrets(
        self, namespace: str, action: str, count: int = 1
    ) -> None:
        """Count materialized or reaped connection secrets."""
        if count:
            CONNECTION_SECRETS_TOTAL.labels(namespace=namespace, action=action).inc(
                count
            )

    def record_remote_request(self, method: str, status: str, duration: float) -> None:
        """Record a remote API request and its latency."""
        REMOTE_API_REQUESTS_TOTAL.labels(method=method, status=status).inc()
        REMOTE_API_REQUEST_DURATION.labels(method=method).observe(duration)


class MetricsServer:
    """HTTP server for exposing Prometheus metrics."""

    def __init__(self, port: int = 8081, host: str = "0.0.0.0"):
        """
        Initialize metrics server.

        Args:
            port: Port to serve metrics on
            host: Host interface to bind to
        """
        self.port = port
        self.host = host
        self.app = Application()
        self.runner: AppRunner | None = None
        self.site: TCPSite | None = None
        self.app.router.add_get("/metrics", self._metrics_handler)
        self.app.router.add_get("/healthz", self._healthz_handler)

    async def _metrics_handler(self, request: Request) -> Response:
        """Handle /metrics endpoint for Prometheus scraping."""
        metrics_data = generate_latest(get_metrics_registry())
        return Response(body=metrics_data, headers={"Content-Type": CONTENT_TYPE_LATEST})

    async def _healthz_handler(self, request: Request) -> Response:
        """Liveness endpoint that answers while the event loop is responsive."""
        return Response(text="ok")

    async def start(self) -> None:
        """Start the metrics server."""
        self.runner = AppRunner(self.app)
        await self.runner.setup()

        self.site = TCPSite(self.runner, self.host, self.port)
        await self.site.start()

        logger.info(f"Metrics available at http://{self.host}:{self.port}/metrics")

    async def stop(self) -> None:
        """Stop the metrics server."""
        if self.site:
            await self.site.stop()
            self.site = None

        if self.runner:
            await self.runner.cleanup()
            self.runner = None

        logger.info("Metrics server stopped")

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()


# Global metrics collector instance
metrics_collector = MetricsCollector()
