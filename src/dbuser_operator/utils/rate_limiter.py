"""
Rate limiting for remote administration API calls.

Implements a two-level rate limiting strategy:
1. Global rate limit: protects the remote API quota of the whole operator
2. Per-project rate limit: keeps one busy project from starving the others
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field

from ..observability.metrics import RATE_LIMIT_TIMEOUTS_TOTAL, RATE_LIMIT_WAIT_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class TokenBucket:
    """
    Async token bucket with continuous refill.

    Concurrent acquirers are serialized through an asyncio lock.
    """

    rate: float  # tokens per second
    capacity: int  # maximum burst capacity
    tokens: float = field(init=False)
    last_update: float = field(init=False)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def __post_init__(self):
        self.tokens = float(self.capacity)
        self.last_update = time.monotonic()

    def _refill(self) -> None:
        now = time.monotonic()
        self.tokens = min(self.capacity, self.tokens + (now - self.last_update) * self.rate)
        self.last_update = now

    async def acquire(self, timeout: float | None = None) -> bool:
        """
        Acquire a token, waiting if necessary.

        Args:
            timeout: Maximum time to wait in seconds, None waits forever

        Returns:
            True if a token was acquired, False if the timeout was reached
        """
        start_time = time.monotonic()

        async with self.lock:
            while True:
                self._refill()
                if self.tokens >= 1.0:
                    self.tokens -= 1.0
                    return True

                wait_time = (1.0 - self.tokens) / self.rate
                if timeout is not None:
                    remaining = timeout - (time.monotonic() - start_time)
                    if remaining <= 0:
                        return False
                    wait_time = min(wait_time, remaining)

                await asyncio.sleep(wait_time)

    def available_tokens(self) -> float:
        """Current number of available tokens."""
        elapsed = time.monotonic() - self.last_update
        return min(self.capacity, self.tokens + elapsed * self.rate)


class RateLimiter:
    """
    Two-level rate limiter for remote API calls.

    Example:
        rate_limiter = RateLimiter(
            global_rate=20.0,
            global_burst=40,
            project_rate=5.0,
            project_burst=10,
        )

        await rate_limiter.acquire(project_id="5f1a...")
    """

    def __init__(
        self,
        global_rate: float,
        global_burst: int,
        project_rate: float,
        project_burst: int,
    ):
        self.global_bucket = TokenBucket(global_rate, global_burst)
        self.project_buckets: dict[str, TokenBucket] = {}
        self.project_rate = project_rate
        self.project_burst = project_burst

        logger.info(
            f"Rate limiter initialized: "
            f"global={global_rate} TPS (burst={global_burst}), "
            f"project={project_rate} TPS (burst={project_burst})"
        )

    def _get_project_bucket(self, project_id: str) -> TokenBucket:
        bucket = self.project_buckets.get(project_id)
        if bucket is None:
            bucket = TokenBucket(self.project_rate, self.project_burst)
            self.project_buckets[project_id] = bucket
            logger.debug(
                f"Created rate limit bucket for project '{project_id}': "
                f"{self.project_rate} TPS"
            )
        return bucket

    async def acquire(self, project_id: str | None = None, timeout: float = 30.0) -> None:
        """
        Acquire tokens from the project bucket (when given) and the global bucket.

        Args:
            project_id: Remote project the request is addressed to
            timeout: Maximum total time to wait for tokens (seconds)

        Raises:
            TimeoutError: If tokens cannot be acquired within timeout
        """
        start_time = time.monotonic()

        if project_id:
            bucket = self._get_project_bucket(project_id)
            if not await bucket.acquire(timeout=timeout):
                RATE_LIMIT_TIMEOUTS_TOTAL.labels(limit_type="project").inc()
                logger.warning(
                    f"Project rate limit timeout for '{project_id}' after "
                    f"{time.monotonic() - start_time:.2f}s"
                )
                raise TimeoutError(
                    f"Project rate limit timeout for '{project_id}' "
                    f"(limit: {self.project_rate} req/s)"
                )
            RATE_LIMIT_WAIT_SECONDS.labels(limit_type="project").observe(
                time.monotonic() - start_time
            )

        global_start = time.monotonic()
        remaining_timeout = max(0.1, timeout - (global_start - start_time))
        if not await self.global_bucket.acquire(timeout=remaining_timeout):
            RATE_LIMIT_TIMEOUTS_TOTAL.labels(limit_type="global").inc()
            logger.warning(
                f"Global rate limit timeout after {time.monotonic() - start_time:.2f}s"
            )
            raise TimeoutError(
                f"Global rate limit timeout (limit: {self.global_bucket.rate} req/s)"
            )
        RATE_LIMIT_WAIT_SECONDS.labels(limit_type="global").observe(
            time.monotonic() - global_start
        )
