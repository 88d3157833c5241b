"""
Circuit breaker for remote administration API calls.

Wraps aiobreaker so that a failing remote API is given time to recover
instead of being hammered by every reconcile. State changes are exported
through the CIRCUIT_BREAKER_STATE gauge.
"""

import logging
from collections.abc import Callable
from datetime import timedelta
from typing import Any

import aiobreaker
from aiobreaker.state import CircuitHalfOpenState, CircuitOpenState
from opentelemetry import trace

from ..observability.metrics import CIRCUIT_BREAKER_STATE

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

STATE_CLOSED = 0
STATE_OPEN = 1
STATE_HALF_OPEN = 2


def state_value(state: Any) -> int:
    """Map an aiobreaker state object to its gauge value."""
    if isinstance(state, CircuitOpenState):
        return STATE_OPEN
    if isinstance(state, CircuitHalfOpenState):
        return STATE_HALF_OPEN
    return STATE_CLOSED


class _MetricsListener(aiobreaker.CircuitBreakerListener):
    def __init__(self, name: str):
        self.name = name

    def state_change(self, breaker, old, new):
        old_name = getattr(old, "name", type(old).__name__)
        new_name = getattr(new, "name", type(new).__name__)
        logger.warning(
            f"Circuit breaker '{self.name}' state changed: {old_name} -> {new_name}"
        )
        CIRCUIT_BREAKER_STATE.labels(breaker=self.name).set(state_value(new))


class RemoteAPICircuitBreaker:
    """Circuit breaker guarding calls to the remote administration API."""

    def __init__(
        self,
        name: str,
        fail_max: int,
        reset_timeout: int,
    ):
        """
        Initialize circuit breaker.

        Args:
            name: Identifier used in logs and metrics
            fail_max: Number of consecutive failures before opening the circuit
            reset_timeout: Seconds to wait before trying again (half-open)
        """
        self.name = name
        self._breaker = aiobreaker.CircuitBreaker(
            fail_max=fail_max,
            timeout_duration=timedelta(seconds=reset_timeout),
            listeners=[_MetricsListener(name)],
        )
        CIRCUIT_BREAKER_STATE.labels(breaker=name).set(STATE_CLOSED)

    async def call(self, func: Callable[..., Any], *args, **kwargs) -> Any:
        """
        Call an async function with circuit breaker protection.

        Raises:
            aiobreaker.CircuitBreakerError: If the circuit is open
            Exception: Whatever the function raises
        """
        with tracer.start_as_current_span("circuit_breaker_call") as span:
            span.set_attribute("circuit_breaker.name", self.name)
            span.set_attribute("circuit_breaker.state", self.current_state)

            try:
                return await self._breaker.call_async(func, *args, **kwargs)
            except aiobreaker.CircuitBreakerError:
                span.set_attribute("error", True)
                span.set_attribute("circuit_breaker.error", "open")
                raise
            except Exception as e:
                span.set_attribute("error", True)
                span.record_exception(e)
                raise

    @property
    def current_state(self) -> str:
        """Current state name (lowercase)."""
        return self._breaker.current_state.name.lower()
