"""Circuit breaker guarding calls to the embedding provider.

After ``failure_threshold`` consecutive provider failures the breaker opens
and embedding calls fail fast, so indexing and semantic search stop queueing
behind a dead provider. Once ``recovery_timeout`` has passed a single trial
call is let through; its outcome closes or reopens the breaker.

State changes are logged and, when a ``MetricsCollector`` is supplied,
exported as ``knowledge_embedding_breaker_state``.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Tuple, Type, Union
import structlog

from libs.common.metrics import MetricsCollector

logger = structlog.get_logger("search_service.circuit_breaker")


class CircuitBreakerState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Provider calls pass through
    OPEN = "open"          # Provider calls rejected
    HALF_OPEN = "half_open"  # One trial call decides the next state


class CircuitBreakerError(Exception):
    """The embedding provider breaker is open."""
    pass


class CircuitBreaker:
    """Consecutive-failure circuit breaker for the embedding provider."""

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        expected_exception: Union[Type[BaseException], Tuple[Type[BaseException], ...]] = Exception,
        name: str = "embedding_provider",
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsCollector] = None
    ):
        """Configure a circuit breaker.

        Parameters
        - failure_threshold: Consecutive provider failures before opening
        - recovery_timeout: Seconds the breaker stays open before a trial call
        - expected_exception: Exception type(s) counted as provider failures
        - name: Breaker label for logs and metrics
        - clock: Monotonic time source
        - metrics: Optional collector for state and rejection metrics
        """
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self.name = name
        self.metrics = metrics
        self._clock = clock

        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.state = CircuitBreakerState.CLOSED
        self._lock = asyncio.Lock()

        if self.metrics:
            self.metrics.set_breaker_state(self.name, self.state.value)

    async def call(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``func`` unless the breaker is open.

        Raises
        - ``CircuitBreakerError`` while open and inside the recovery timeout
        - whatever ``func`` raises otherwise
        """
        async with self._lock:
            if self.state == CircuitBreakerState.OPEN:
                if not self._recovery_elapsed():
                    if self.metrics:
                        self.metrics.record_breaker_rejection(self.name)
                    logger.warning(
                        "Embedding provider breaker open, rejecting call",
                        breaker=self.name,
                        retry_in_seconds=self._seconds_until_trial()
                    )
                    raise CircuitBreakerError(f"Embedding provider breaker {self.name} is open")
                self._transition(CircuitBreakerState.HALF_OPEN)

        try:
            result = await func(*args, **kwargs)
        except self.expected_exception:
            await self._on_failure()
            raise

        await self._on_success()
        return result

    def _recovery_elapsed(self) -> bool:
        if self.last_failure_time is None:
            return True
        return (self._clock() - self.last_failure_time) >= self.recovery_timeout

    def _seconds_until_trial(self) -> float:
        if self.last_failure_time is None:
            return 0.0
        return max(0.0, self.recovery_timeout - (self._clock() - self.last_failure_time))

    def _transition(self, state: CircuitBreakerState) -> None:
        previous, self.state = self.state, state
        if self.metrics:
            self.metrics.set_breaker_state(self.name, state.value)

        if state is CircuitBreakerState.OPEN:
            logger.warning(
                "Embedding provider breaker opened",
                breaker=self.name,
                previous_state=previous.value,
                failure_count=self.failure_count,
                threshold=self.failure_threshold,
                recovery_timeout=self.recovery_timeout
            )
        elif state is CircuitBreakerState.HALF_OPEN:
            logger.info("Embedding provider breaker allowing trial call", breaker=self.name)
        else:
            logger.info("Embedding provider recovered, breaker closed", breaker=self.name)

    async def _on_success(self):
        async with self._lock:
            self.failure_count = 0
            if self.state == CircuitBreakerState.HALF_OPEN:
                self._transition(CircuitBreakerState.CLOSED)

    async def _on_failure(self):
        async with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()

            # A failed trial call reopens immediately
            if self.state == CircuitBreakerState.HALF_OPEN:
                self._transition(CircuitBreakerState.OPEN)
            elif self.state == CircuitBreakerState.CLOSED and self.failure_count >= self.failure_threshold:
                self._transition(CircuitBreakerState.OPEN)

    def get_state(self) -> CircuitBreakerState:
        return self.state

    def get_stats(self) -> dict:
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self.failure_count,
            "failure_threshold": self.failure_threshold,
            "recovery_timeout": self.recovery_timeout,
            "seconds_until_trial": self._seconds_until_trial() if self.state == CircuitBreakerState.OPEN else 0.0
        }
