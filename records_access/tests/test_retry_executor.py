"""
Unit tests for the retry executor.
"""

import httpx
import pytest
from unittest.mock import AsyncMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from shared.errors import TerminalBackendError, TransientBackendError
from shared.retry import RetryConfig, RetryExecutor, calculate_delay, retry_on_exception


class DummyMetrics:
    """Minimal metrics collector stub."""

    def __init__(self):
        self.counters = []

    def increment_counter(self, metric_name: str, **labels):
        self.counters.append((metric_name, labels))


class TestCalculateDelay:
    """Test cases for the backoff schedule."""

    def test_delay_doubles_per_attempt(self):
        config = RetryConfig(base_delay=1.0)
        assert [calculate_delay(attempt, config) for attempt in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_delay_is_capped(self):
        config = RetryConfig(base_delay=1.0, max_delay=3.0)
        assert calculate_delay(5, config) == 3.0

    def test_jitter_stays_within_ten_percent(self):
        config = RetryConfig(base_delay=1.0, jitter=True)
        for _ in range(50):
            assert 1.8 <= calculate_delay(2, config) <= 2.2

    def test_max_attempts_must_be_positive(self):
        with pytest.raises(ValueError):
            RetryConfig(max_attempts=0)


class TestRetryExecutor:
    """Test cases for RetryExecutor."""

    @pytest.fixture
    def sleep(self):
        return AsyncMock()

    @pytest.fixture
    def metrics(self):
        return DummyMetrics()

    @pytest.fixture
    def executor(self, sleep, metrics):
        return RetryExecutor(RetryConfig(max_attempts=3, base_delay=1.0), sleep=sleep, metrics=metrics)

    @pytest.mark.asyncio
    async def test_success_on_first_attempt(self, executor, sleep):
        operation = AsyncMock(return_value="ok")

        assert await executor.with_retry(operation) == "ok"
        operation.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exhausted_retries_wait_one_then_two_seconds(self, executor, sleep, metrics):
        """Three failing attempts sleep 1000 ms then 2000 ms and re-raise the last error."""
        errors = [TransientBackendError(f"failure {i}", status_code=503) for i in range(3)]
        operation = AsyncMock(side_effect=errors)

        with pytest.raises(TransientBackendError) as exc_info:
            await executor.with_retry(operation)

        assert exc_info.value is errors[-1]
        assert operation.await_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0]
        assert metrics.counters.count(("retry_attempts_total", {"outcome": "failure"})) == 3

    @pytest.mark.asyncio
    async def test_recovers_after_transport_error(self, executor, sleep, metrics):
        operation = AsyncMock(side_effect=[httpx.ConnectError("refused"), {"records": []}])

        assert await executor.with_retry(operation) == {"records": []}
        assert operation.await_count == 2
        sleep.assert_awaited_once_with(1.0)
        assert ("retry_attempts_total", {"outcome": "recovered"}) in metrics.counters

    @pytest.mark.asyncio
    async def test_terminal_errors_are_not_retried(self, executor, sleep):
        error = TerminalBackendError("Unexpected status 400", status_code=400)
        operation = AsyncMock(side_effect=error)

        with pytest.raises(TerminalBackendError) as exc_info:
            await executor.with_retry(operation)

        assert exc_info.value is error
        operation.assert_awaited_once()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_per_call_overrides(self, executor, sleep):
        operation = AsyncMock(side_effect=TransientBackendError())

        with pytest.raises(TransientBackendError):
            await executor.with_retry(operation, max_attempts=4, base_delay=0.5)

        assert operation.await_count == 4
        assert [call.args[0] for call in sleep.await_args_list] == [0.5, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_decorator_retries_transient_failures(self):
        calls = []

        @retry_on_exception(config=RetryConfig(max_attempts=2, base_delay=0.0))
        async def flaky():
            calls.append(1)
            if len(calls) == 1:
                raise TransientBackendError()
            return "done"

        assert await flaky() == "done"
        assert len(calls) == 2
