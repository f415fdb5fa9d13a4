# tests/unit/test_resilience.py
"""
Unit tests for RetryPolicy, CircuitBreaker and ResilientExecutor
"""
import asyncio

import pytest

from core.resilience import CircuitBreaker, CircuitState, ResilientExecutor, RetryPolicy
from tests.fixtures.mock_data import ManualClock
from utils.errors import CircuitOpenError, InvalidTokenAddressError, RPCError


class Flaky:
    """Fails `failures` times, then returns 'ok'"""

    def __init__(self, failures: int, error: Exception = None):
        self.failures = failures
        self.error = error or RPCError("boom")
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return "ok"


def make_executor(breaker=None, max_retries=2, sleeps=None):
    async def record_sleep(seconds):
        if sleeps is not None:
            sleeps.append(seconds)

    return ResilientExecutor(
        breaker or CircuitBreaker("test", failure_threshold=100),
        RetryPolicy(max_retries=max_retries, backoff_base=0.5, backoff_cap=4.0, jitter=0, call_timeout=1.0),
        sleep=record_sleep,
    )


@pytest.mark.unit
class TestRetryPolicy:
    """Backoff schedule"""

    def test_exponential_backoff_without_jitter(self):
        policy = RetryPolicy(backoff_base=0.5, backoff_cap=4.0, jitter=0)
        assert [policy.delay_for(i) for i in range(5)] == [0.5, 1.0, 2.0, 4.0, 4.0]

    def test_jitter_stays_within_bounds(self):
        policy = RetryPolicy(backoff_base=1.0, backoff_cap=10.0, jitter=0.3)
        for _ in range(50):
            delay = policy.delay_for(1)
            assert 1.4 <= delay <= 2.6

    def test_jittered_delay_never_exceeds_cap(self):
        policy = RetryPolicy(backoff_base=4.0, backoff_cap=4.0, jitter=0.3)
        assert all(policy.delay_for(3) <= 4.0 for _ in range(50))


@pytest.mark.unit
class TestCircuitBreaker:
    """State machine"""

    @pytest.mark.asyncio
    async def test_opens_after_threshold_failures(self):
        clock = ManualClock()
        breaker = CircuitBreaker("rpc", failure_threshold=3, window_seconds=60, cooldown_seconds=30, clock=clock)

        for _ in range(3):
            await breaker.before_call()
            await breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError):
            await breaker.before_call()
        assert breaker.rejected_calls == 1

    @pytest.mark.asyncio
    async def test_failures_outside_window_are_forgotten(self):
        clock = ManualClock()
        breaker = CircuitBreaker("rpc", failure_threshold=3, window_seconds=10, clock=clock)

        for _ in range(2):
            await breaker.record_failure()
        clock.advance(11)
        await breaker.record_failure()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_half_open_admits_single_trial(self):
        clock = ManualClock()
        breaker = CircuitBreaker("rpc", failure_threshold=1, cooldown_seconds=30, clock=clock)
        await breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

        clock.advance(30)
        await breaker.before_call()
        assert breaker.state == CircuitState.HALF_OPEN

        with pytest.raises(CircuitOpenError):
            await breaker.before_call()

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self):
        clock = ManualClock()
        breaker = CircuitBreaker("rpc", failure_threshold=1, cooldown_seconds=5, clock=clock)
        await breaker.record_failure()
        clock.advance(5)

        await breaker.before_call()
        await breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self):
        clock = ManualClock()
        breaker = CircuitBreaker("rpc", failure_threshold=1, cooldown_seconds=5, clock=clock)
        await breaker.record_failure()
        clock.advance(5)

        await breaker.before_call()
        await breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.times_opened == 2

    def test_stats_shape(self):
        stats = CircuitBreaker("birdeye").get_stats()
        assert stats['name'] == "birdeye"
        assert stats['state'] == "CLOSED"
        assert stats['failures_in_window'] == 0


@pytest.mark.unit
class TestResilientExecutor:
    """Retry and breaker interplay"""

    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        sleeps = []
        executor = make_executor(sleeps=sleeps)
        operation = Flaky(failures=2)

        assert await executor.execute(operation) == "ok"
        assert operation.calls == 3
        assert sleeps == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_raises_last_error_when_budget_spent(self):
        executor = make_executor(max_retries=1)
        operation = Flaky(failures=5)

        with pytest.raises(RPCError):
            await executor.execute(operation)
        assert operation.calls == 2

    @pytest.mark.asyncio
    async def test_validation_errors_are_not_retried(self):
        executor = make_executor()
        operation = Flaky(failures=5, error=InvalidTokenAddressError("bad"))

        with pytest.raises(InvalidTokenAddressError):
            await executor.execute(operation)
        assert operation.calls == 1
        assert executor.breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_open_breaker_skips_operation(self):
        breaker = CircuitBreaker("dead", failure_threshold=1, cooldown_seconds=60, clock=ManualClock())
        await breaker.record_failure()
        executor = make_executor(breaker=breaker)
        operation = Flaky(failures=0)

        with pytest.raises(CircuitOpenError):
            await executor.execute(operation)
        assert operation.calls == 0

    @pytest.mark.asyncio
    async def test_breaker_opening_mid_retry_surfaces_original_error(self):
        breaker = CircuitBreaker("rpc", failure_threshold=1, cooldown_seconds=60, clock=ManualClock())
        executor = make_executor(breaker=breaker, max_retries=3)
        operation = Flaky(failures=5)

        with pytest.raises(RPCError):
            await executor.execute(operation)
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_per_attempt_timeout(self):
        async def slow():
            await asyncio.sleep(5)

        executor = ResilientExecutor(
            CircuitBreaker("slow", failure_threshold=100),
            RetryPolicy(max_retries=0, call_timeout=0.05),
        )
        with pytest.raises(asyncio.TimeoutError):
            await executor.execute(slow)
        assert executor.breaker.failure_count == 1
