"""
OpenTelemetry distributed tracing for the database user operator.

This module provides:
- Tracer provider setup with an OTLP exporter
- Automatic instrumentation of the httpx client used for the remote API
- A decorator creating one span per kopf handler invocation

Usage:
    from dbuser_operator.observability.tracing import setup_tracing, traced_handler

    setup_tracing(enabled=True, endpoint="http://otel-collector:4317")

    @traced_handler("reconcile_database_user")
    async def ensure_database_user(...):
        ...
"""

import contextlib
import functools
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.instrumentation.httpx import HTTPXClientInstrumentor
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.trace.sampling import ParentBased, TraceIdRatioBased
from opentelemetry.trace import SpanKind, Status, StatusCode, Tracer

logger = logging.getLogger(__name__)

_tracer_provider: TracerProvider | None = None
_initialized: bool = False

P = ParamSpec("P")
R = TypeVar("R")


def setup_tracing(
    enabled: bool = False,
    endpoint: str = "http://localhost:4317",
    service_name: str = "dbuser-operator",
    sample_rate: float = 1.0,
    insecure: bool = True,
) -> TracerProvider | None:
    """
    Initialize OpenTelemetry tracing for the operator.

    Args:
        enabled: Enable tracing (if False, returns None and does nothing)
        endpoint: OTLP collector endpoint (gRPC)
        service_name: Service name for traces
        sample_rate: Sampling rate for root spans (0.0-1.0)
        insecure: Use insecure connection (no TLS)

    Returns:
        TracerProvider if enabled, None otherwise
    """
    global _tracer_provider, _initialized

    if _initialized:
        return _tracer_provider

    if not enabled:
        logger.info("OpenTelemetry tracing is disabled")
        _initialized = True
        return None

    logger.info(
        f"Initializing OpenTelemetry tracing: endpoint={endpoint}, "
        f"service={service_name}, sample_rate={sample_rate}"
    )

    resource = Resource.create(
        {
            "service.name": service_name,
            "service.namespace": "dbuser-operator",
            "deployment.environment": "kubernetes",
        }
    )
    sampler = ParentBased(root=TraceIdRatioBased(sample_rate))
    _tracer_provider = TracerProvider(resource=resource, sampler=sampler)
    _tracer_provider.add_span_processor(
        BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint, insecure=insecure))
    )
    trace.set_tracer_provider(_tracer_provider)

    # Outgoing remote API calls carry the W3C traceparent header
    HTTPXClientInstrumentor().instrument()

    _initialized = True
    return _tracer_provider


def shutdown_tracing() -> None:
    """Shutdown tracing and flush any pending spans."""
    global _tracer_provider, _initialized

    if _tracer_provider is not None:
        logger.info("Shutting down OpenTelemetry tracing")
        _tracer_provider.shutdown()
        _tracer_provider = None

    with contextlib.suppress(Exception):
        HTTPXClientInstrumentor().uninstrument()

    _initialized = False


def get_tracer(name: str = __name__) -> Tracer:
    """Get a tracer instance (no-op when tracing is disabled)."""
    return trace.get_tracer(name)


def traced_handler(
    operation_name: str,
    span_kind: SpanKind = SpanKind.INTERNAL,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """
    Decorator for async kopf handlers that wraps each call in a span.

    The span carries the namespace and name of the handled object and records
    any exception raised by the handler, including kopf retry signals.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @functools.wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            tracer = get_tracer(func.__module__ or __name__)
            attributes = {
                "k8s.namespace": str(kwargs.get("namespace", "unknown")),
                "k8s.resource.name": str(kwargs.get("name", "unknown")),
                "k8s.resource.type": "databaseuser",
                "kopf.handler": getattr(func, "__name__", "unknown"),
            }

            with tracer.start_as_current_span(
                operation_name, kind=span_kind, attributes=attributes
            ) as span:
                try:
                    result = await func(*args, **kwargs)
                    span.set_status(Status(StatusCode.OK))
                    return result
                except Exception as e:
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    span.record_exception(e)
                    raise

        return wrapper

    return decorator


def is_tracing_enabled() -> bool:
    """Check if tracing is currently enabled and initialized."""
    return _initialized and _tracer_provider is not None
