"""Retry handler with exponential backoff for embedding provider calls."""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Tuple, Type
import httpx
import structlog

from libs.common.config import EmbeddingConfig

logger = structlog.get_logger("retry_handler")

RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_transient_http_error(exc: BaseException) -> bool:
    """Transport failures, rate limits, and provider-side 5xx are worth retrying."""
    if isinstance(exc, httpx.TransportError):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return False


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 8.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Tuple[Type[BaseException], ...] = (Exception,),
        should_retry: Optional[Callable[[BaseException], bool]] = None
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = retryable_exceptions
        self.should_retry = should_retry


class RetryHandler:
    """Handles retry logic with exponential backoff."""

    def __init__(self, config: RetryConfig, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.config = config
        self._sleep = sleep

    def _is_retryable(self, exc: BaseException) -> bool:
        if not isinstance(exc, self.config.retryable_exceptions):
            return False
        if self.config.should_retry is not None:
            return self.config.should_retry(exc)
        return True

    async def execute_with_retry(
        self,
        func: Callable[..., Awaitable[Any]],
        *args,
        operation_name: str = "unknown",
        **kwargs
    ) -> Any:
        """Await ``func`` until it succeeds, fails permanently, or attempts run out."""
        for attempt in range(self.config.max_attempts):
            try:
                result = await func(*args, **kwargs)

                if attempt > 0:
                    logger.info(
                        "Operation succeeded after retry",
                        operation=operation_name,
                        attempt=attempt + 1,
                        total_attempts=self.config.max_attempts
                    )

                return result

            except Exception as e:
                if not self._is_retryable(e):
                    raise

                if attempt == self.config.max_attempts - 1:
                    logger.error(
                        "Operation failed after all retries",
                        operation=operation_name,
                        attempts=self.config.max_attempts,
                        error=str(e)
                    )
                    raise

                delay = self._calculate_delay(attempt)

                logger.warning(
                    "Operation failed, retrying",
                    operation=operation_name,
                    attempt=attempt + 1,
                    total_attempts=self.config.max_attempts,
                    delay_seconds=delay,
                    error=str(e)
                )

                await self._sleep(delay)

        raise RuntimeError("Retry loop exited without a result")

    def _calculate_delay(self, attempt: int) -> float:
        """Calculate delay for the given attempt."""
        delay = self.config.base_delay * (self.config.exponential_base ** attempt)
        delay = min(delay, self.config.max_delay)

        if self.config.jitter:
            jitter_range = delay * 0.1
            delay += random.uniform(-jitter_range, jitter_range)

        return max(delay, 0.0)


def create_embedding_retry_handler(config: EmbeddingConfig) -> RetryHandler:
    """Retry handler for the embedding HTTP client, tuned from settings."""
    return RetryHandler(RetryConfig(
        max_attempts=config.ml_embedding_retry_attempts,
        base_delay=config.ml_embedding_retry_base_delay,
        max_delay=config.ml_embedding_retry_max_delay,
        retryable_exceptions=(httpx.HTTPError,),
        should_retry=is_transient_http_error
    ))
