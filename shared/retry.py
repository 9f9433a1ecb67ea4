"""
Retry mechanism for resilient operations.
"""

import asyncio
import functools
import random
from typing import Any, Optional, Callable, Awaitable

import httpx

from shared.errors import TransientBackendError
from shared.logging import get_logger


# Failures worth another attempt. 429 never reaches here: the scheduler absorbs it.
TRANSIENT_EXCEPTIONS = (httpx.TransportError, TransientBackendError)

Sleep = Callable[[float], Awaitable[Any]]


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = False):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay to wait after failed attempt number ``attempt`` (1-indexed).

    The wait before attempt k is ``base_delay * exponential_base ** (k - 2)``.
    """
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)


class RetryExecutor:
    """Runs an async operation with exponential backoff on transient failures."""

    def __init__(self,
                 config: Optional[RetryConfig] = None,
                 retry_on: tuple = TRANSIENT_EXCEPTIONS,
                 sleep: Sleep = asyncio.sleep,
                 metrics=None):
        self.config = config or RetryConfig()
        self.retry_on = retry_on
        self._sleep = sleep
        self.metrics = metrics
        self.logger = get_logger("records.retry")

    async def with_retry(self,
                         operation: Callable[[], Awaitable[Any]],
                         max_attempts: Optional[int] = None,
                         base_delay: Optional[float] = None,
                         name: Optional[str] = None) -> Any:
        """Call ``operation`` until it succeeds or attempts run out.

        Non-transient exceptions propagate on the first occurrence. When every
        attempt fails, the last exception is re-raised unchanged.
        """
        config = self.config
        if max_attempts is not None or base_delay is not None:
            config = RetryConfig(
                max_attempts=max_attempts if max_attempts is not None else config.max_attempts,
                base_delay=base_delay if base_delay is not None else config.base_delay,
                max_delay=config.max_delay,
                exponential_base=config.exponential_base,
                jitter=config.jitter,
            )
        label = name or getattr(operation, "__name__", "operation")

        for attempt in range(1, config.max_attempts + 1):
            try:
                result = await operation()
            except self.retry_on as e:
                self._record("failure")
                if attempt == config.max_attempts:
                    self.logger.error(
                        "All retry attempts exhausted",
                        attempt=attempt,
                        max_attempts=config.max_attempts,
                        operation=label,
                        error=str(e)
                    )
                    raise

                delay = calculate_delay(attempt, config)
                self.logger.warning(
                    "Retry attempt failed, waiting before next attempt",
                    attempt=attempt,
                    max_attempts=config.max_attempts,
                    delay=delay,
                    operation=label,
                    error=str(e)
                )
                await self._sleep(delay)
                continue

            if attempt > 1:
                self._record("recovered")
                self.logger.info("Retry succeeded", attempt=attempt, operation=label)
            return result

    def _record(self, outcome: str):
        if self.metrics:
            self.metrics.increment_counter("retry_attempts_total", outcome=outcome)


def retry_on_exception(exceptions: tuple = TRANSIENT_EXCEPTIONS,
                       config: Optional[RetryConfig] = None) -> Callable:
    """Decorator for retrying async functions on exceptions."""

    executor = RetryExecutor(config=config, retry_on=exceptions)

    def decorator(func: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> Any:
            return await executor.with_retry(
                lambda: func(*args, **kwargs),
                name=func.__name__
            )

        return wrapper

    return decorator
