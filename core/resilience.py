"""
Resilience primitives: retry with exponential backoff and a per-dependency
circuit breaker (CLOSED / OPEN / HALF_OPEN).

Every external call in the scorer goes through a ResilientExecutor. Each
provider owns its own CircuitBreaker so one failing dependency never blocks
the others.
"""

import asyncio
import logging
import random
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, TypeVar

from config.config_manager import ResilienceConfig
from utils.errors import CircuitOpenError, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget for a single logical call"""
    max_retries: int = 2          # retries after the first attempt
    backoff_base: float = 0.5     # seconds
    backoff_cap: float = 4.0      # seconds
    jitter: float = 0.3           # +/- fraction applied to each delay
    call_timeout: float = 8.0     # per attempt deadline in seconds

    @classmethod
    def from_config(cls, config: ResilienceConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            backoff_base=config.backoff_base,
            backoff_cap=config.backoff_cap,
            jitter=config.jitter,
            call_timeout=config.call_timeout,
        )

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number `attempt` (0-based), jittered and capped"""
        delay = min(self.backoff_cap, self.backoff_base * (2 ** attempt))
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return max(0.0, min(self.backoff_cap, delay))


class CircuitState(Enum):
    """Circuit breaker states"""
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    Sliding-window circuit breaker.

    - CLOSED: calls pass, failure timestamps are kept for `window_seconds`
    - OPEN: once `failure_threshold` failures sit inside the window, every
      call is rejected with CircuitOpenError until `cooldown_seconds` pass
    - HALF_OPEN: exactly one trial call is admitted; success closes the
      circuit, failure opens it again
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        window_seconds: float = 60.0,
        cooldown_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.window_seconds = window_seconds
        self.cooldown_seconds = cooldown_seconds
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.opened_at: Optional[float] = None
        self._failures: Deque[float] = deque()
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

        # Stats
        self.total_calls = 0
        self.rejected_calls = 0
        self.times_opened = 0

    @classmethod
    def from_config(cls, name: str, config: ResilienceConfig) -> "CircuitBreaker":
        return cls(
            name,
            failure_threshold=config.failure_threshold,
            window_seconds=config.failure_window,
            cooldown_seconds=config.cooldown,
        )

    @property
    def failure_count(self) -> int:
        self._prune(self._clock())
        return len(self._failures)

    def _prune(self, now: float) -> None:
        while self._failures and now - self._failures[0] > self.window_seconds:
            self._failures.popleft()

    def _transition(self, new_state: CircuitState) -> None:
        if new_state == self.state:
            return
        old_state = self.state
        self.state = new_state
        if new_state == CircuitState.OPEN:
            self.opened_at = self._clock()
            self.times_opened += 1
            logger.warning(
                f"Circuit '{self.name}' {old_state.value} -> OPEN "
                f"({len(self._failures)} failures in {self.window_seconds:.0f}s)"
            )
        else:
            logger.info(f"Circuit '{self.name}' {old_state.value} -> {new_state.value}")

    async def before_call(self) -> None:
        """Admit or reject a call. Raises CircuitOpenError when rejected."""
        async with self._lock:
            now = self._clock()
            self.total_calls += 1

            if self.state == CircuitState.OPEN:
                elapsed = now - (self.opened_at or now)
                if elapsed < self.cooldown_seconds:
                    self.rejected_calls += 1
                    raise CircuitOpenError(self.name, self.cooldown_seconds - elapsed)
                self._transition(CircuitState.HALF_OPEN)

            if self.state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    self.rejected_calls += 1
                    raise CircuitOpenError(self.name, 0.0)
                self._trial_in_flight = True

    async def record_success(self) -> None:
        async with self._lock:
            self._trial_in_flight = False
            if self.state == CircuitState.HALF_OPEN:
                self._failures.clear()
                self._transition(CircuitState.CLOSED)

    async def record_failure(self) -> None:
        async with self._lock:
            now = self._clock()
            self._trial_in_flight = False
            self._failures.append(now)
            self._prune(now)

            if self.state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif self.state == CircuitState.CLOSED and len(self._failures) >= self.failure_threshold:
                self._transition(CircuitState.OPEN)

    async def release(self) -> None:
        """Free the half-open trial slot without judging the dependency"""
        async with self._lock:
            self._trial_in_flight = False

    def reset(self) -> None:
        self.state = CircuitState.CLOSED
        self.opened_at = None
        self._failures.clear()
        self._trial_in_flight = False

    def get_stats(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'state': self.state.value,
            'failures_in_window': self.failure_count,
            'total_calls': self.total_calls,
            'rejected_calls': self.rejected_calls,
            'times_opened': self.times_opened,
        }


class ResilientExecutor:
    """Runs an async operation under a retry policy guarded by a circuit breaker"""

    def __init__(
        self,
        breaker: CircuitBreaker,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.breaker = breaker
        self.policy = policy or RetryPolicy()
        self._sleep = sleep

    @property
    def name(self) -> str:
        return self.breaker.name

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        policy: Optional[RetryPolicy] = None,
    ) -> T:
        """
        Call `operation` until it succeeds or the retry budget is spent.

        Returns the operation's value or raises the last error. While the
        breaker is open the operation is not invoked at all and
        CircuitOpenError is raised. ValidationError is never retried.
        """
        policy = policy or self.policy
        last_error: Optional[BaseException] = None

        for attempt in range(policy.max_retries + 1):
            try:
                await self.breaker.before_call()
            except CircuitOpenError:
                if last_error is not None:
                    logger.debug(f"{self.name}: breaker opened during retries, giving up")
                    raise last_error
                raise

            try:
                result = await asyncio.wait_for(operation(), timeout=policy.call_timeout)
            except ValidationError:
                await self.breaker.release()
                raise
            except asyncio.CancelledError:
                await self.breaker.release()
                raise
            except Exception as e:
                last_error = e
                await self.breaker.record_failure()
                if attempt >= policy.max_retries:
                    break
                wait_time = policy.delay_for(attempt)
                logger.warning(
                    f"{self.name}: attempt {attempt + 1}/{policy.max_retries + 1} failed: "
                    f"{type(e).__name__}: {e}. Retrying in {wait_time:.2f}s..."
                )
                await self._sleep(wait_time)
            else:
                await self.breaker.record_success()
                return result

        logger.warning(f"{self.name}: all {policy.max_retries + 1} attempts failed: {last_error}")
        raise last_error
