#!/usr/bin/env python3
"""
Database User Operator - Main entry point for the Kopf-based operator.

This operator keeps database users of a remote database-as-a-service
platform in sync with DatabaseUser resources:
- Creates, updates and deletes remote users from their declared spec
- Publishes per-deployment connection secrets once deployments are ready
- Follows password rotation of the referenced Kubernetes secrets

Usage:
    python -m dbuser_operator.operator
    # Or with kopf directly:
    kopf run -m dbuser_operator.operator --all-namespaces

Environment Variables:
    DBUSER_OPERATOR_NAMESPACES: Comma-separated list of namespaces to watch
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
    REMOTE_API_PUBLIC_KEY / REMOTE_API_PRIVATE_KEY: Remote API credentials
"""

import logging
import random
import sys

import kopf

from dbuser_operator.constants import API_GROUP, DATABASE_USER_FINALIZER

# Import all handler modules to register them with kopf
from dbuser_operator.handlers import (  # noqa: F401
    database_user,
    password_secret,
)
from dbuser_operator.observability.logging import setup_structured_logging
from dbuser_operator.observability.metrics import MetricsServer
from dbuser_operator.observability.tracing import setup_tracing, shutdown_tracing
from dbuser_operator.services import DatabaseUserReconciler, ReconciliationDriver
from dbuser_operator.settings import settings as operator_settings
from dbuser_operator.utils.circuit_breaker import RemoteAPICircuitBreaker
from dbuser_operator.utils.kubernetes import DatabaseUserStore, get_kubernetes_client
from dbuser_operator.utils.rate_limiter import RateLimiter
from dbuser_operator.utils.remote_admin import RemoteAdminClientFactory
from dbuser_operator.utils.secret_manager import SecretManager

# Global reference to metrics server for cleanup
_global_metrics_server: MetricsServer | None = None


def configure_logging() -> None:
    """Configure structured logging for the operator based on operator_settings."""
    setup_structured_logging(
        log_level=operator_settings.log_level.upper(),
        enable_json_formatting=operator_settings.json_logs,
        correlation_id_enabled=operator_settings.correlation_ids,
    )


def get_watched_namespaces() -> list[str] | None:
    """
    Get the list of namespaces to watch from operator_settings.

    Returns:
        List of namespace names, or None to watch all namespaces
    """
    return operator_settings.watched_namespaces


def configure_kopf(settings: kopf.OperatorSettings) -> None:
    """
    Apply the kopf settings the reconciliation model relies on.

    kopf manages the same finalizer the driver adds, so a resource is only
    released once the delete handler succeeded. Handler progress and the
    diff base live in annotations because the status sub-resource is
    rewritten as a whole by every reconciliation.
    """
    settings.watching.reconnect_backoff = 1.0
    settings.persistence.finalizer = DATABASE_USER_FINALIZER
    settings.persistence.progress_storage = kopf.AnnotationsProgressStorage(
        prefix=API_GROUP
    )
    settings.persistence.diffbase_storage = kopf.AnnotationsDiffBaseStorage(
        prefix=API_GROUP
    )

    # Each pod gets a unique priority to enable leader election
    settings.peering.name = operator_settings.operator_name
    settings.peering.priority = random.randint(0, 32767)
    logging.info(
        f"Peering priority set to {settings.peering.priority} for leader election"
    )

    settings.execution.max_workers = operator_settings.max_workers


def build_services(memo: kopf.Memo) -> None:
    """Create the long-lived clients and the reconciliation driver in the memo."""
    k8s_client = get_kubernetes_client()

    memo.rate_limiter = RateLimiter(
        global_rate=operator_settings.api_global_rate_limit_tps,
        global_burst=operator_settings.api_global_burst,
        project_rate=operator_settings.api_project_rate_limit_tps,
        project_burst=operator_settings.api_project_burst,
    )
    logging.info(
        f"Rate limiter initialized: "
        f"global={operator_settings.api_global_rate_limit_tps} TPS "
        f"(burst={operator_settings.api_global_burst}), "
        f"project={operator_settings.api_project_rate_limit_tps} TPS "
        f"(burst={operator_settings.api_project_burst})"
    )
    memo.circuit_breaker = RemoteAPICircuitBreaker(
        name="remote_api",
        fail_max=operator_settings.circuit_breaker_fail_max,
        reset_timeout=operator_settings.circuit_breaker_reset_seconds,
    )

    memo.secrets = SecretManager(k8s_client)
    memo.store = DatabaseUserStore(k8s_client)
    memo.gateways = RemoteAdminClientFactory(
        base_url=operator_settings.remote_api_base_url,
        public_key=operator_settings.remote_api_public_key,
        private_key=operator_settings.remote_api_private_key,
        secrets=memo.secrets,
        timeout=operator_settings.remote_api_timeout_seconds,
        rate_limiter=memo.rate_limiter,
        circuit_breaker=memo.circuit_breaker,
    )

    reconciler = DatabaseUserReconciler(
        memo.store,
        memo.secrets,
        memo.gateways,
        operator_settings.operator_version,
        restricted_mode=operator_settings.restricted_mode,
        deletion_protection=operator_settings.object_deletion_protection,
        independent_sync_period=operator_settings.independent_sync_period_seconds,
    )
    memo.driver = ReconciliationDriver(
        memo.store,
        reconciler,
        retry_interval=operator_settings.retry_interval_seconds,
    )


@kopf.on.startup()
async def startup_handler(
    settings: kopf.OperatorSettings, memo: kopf.Memo, **_
) -> None:
    """
    Operator startup configuration.

    This handler runs once when the operator starts up and configures:
    - kopf persistence, peering and concurrency
    - Tracing and the metrics endpoint
    - Remote API clients with rate limiting and circuit breaking
    - The DatabaseUser reconciliation driver
    """
    logging.info(
        f"Starting Database User Operator {operator_settings.operator_version}..."
    )
    configure_kopf(settings)

    watched_namespaces = get_watched_namespaces()
    if watched_namespaces:
        logging.info(f"Watching namespaces: {', '.join(watched_namespaces)}")
    else:
        logging.info("Watching all namespaces (cluster-wide mode)")

    if operator_settings.restricted_mode:
        logging.info("Running in restricted mode - OIDC users are rejected")
    if operator_settings.object_deletion_protection:
        logging.info("Deletion protection enabled - remote users are kept by default")

    setup_tracing(
        enabled=operator_settings.tracing_enabled,
        endpoint=operator_settings.tracing_endpoint,
        service_name=operator_settings.operator_name,
        sample_rate=operator_settings.tracing_sample_rate,
    )

    # Start metrics server for Prometheus scraping and health checks
    try:
        metrics_server = MetricsServer(
            port=operator_settings.metrics_port, host=operator_settings.metrics_host
        )
        await metrics_server.start()
        logging.info(
            f"Metrics and health endpoints available on "
            f"{operator_settings.metrics_host}:{operator_settings.metrics_port}"
        )

        # OperatorSettings doesn't support custom attributes
        global _global_metrics_server
        _global_metrics_server = metrics_server

    except OSError as e:
        logging.error(f"Failed to start metrics server: {e}")
        logging.warning("Continuing without metrics server")

    build_services(memo)


@kopf.on.cleanup()
async def cleanup_handler(memo: kopf.Memo, **_) -> None:
    """
    Operator cleanup handler.

    Closes the remote API clients, stops the metrics server and flushes
    pending trace spans.
    """
    logging.info("Shutting down Database User Operator...")

    gateways = getattr(memo, "gateways", None)
    if gateways is not None:
        await gateways.close()

    global _global_metrics_server
    if _global_metrics_server:
        await _global_metrics_server.stop()
        _global_metrics_server = None
        logging.info("Metrics server stopped")

    shutdown_tracing()


def main() -> None:
    """
    Main entry point for the operator.

    This function:
    1. Configures logging
    2. Determines namespace scope
    3. Runs the kopf operator
    """
    configure_logging()
    watched_namespaces = get_watched_namespaces()

    try:
        if watched_namespaces:
            kopf.run(
                namespaces=watched_namespaces,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
            )
        else:
            kopf.run(
                clusterwide=True,
                liveness_endpoint="http://0.0.0.0:8080/healthz",
            )
    except KeyboardInterrupt:
        logging.info("Received shutdown signal")
        sys.exit(0)


if __name__ == "__main__":
    main()
