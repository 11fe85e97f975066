"""Circuit breaker shared by every LLM call in the process.

States:
- ``closed``: calls pass through. ``failure_threshold`` consecutive failures
  open the circuit.
- ``open``: calls fail fast with :class:`CircuitOpenError`. The first call
  after ``reset_timeout_ms`` since the last failure moves to ``half_open``.
- ``half_open``: calls are attempted. ``success_threshold`` consecutive
  successes close the circuit; any failure opens it again.

Only the bookkeeping is serialized. The wrapped work of concurrent callers
may run at the same time.
"""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from convo_agent.core.types import BreakerState
from convo_agent.errors import CircuitOpenError, TransportError
from convo_agent.log import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RESET_TIMEOUT_MS = 30_000
DEFAULT_SUCCESS_THRESHOLD = 2


@dataclass(frozen=True, slots=True)
class CircuitBreakerStats:
    state: BreakerState
    consecutive_failures: int
    consecutive_successes: int
    failure_threshold: int
    reset_timeout_ms: int
    success_threshold: int
    last_failure_time: Optional[float]
    total_calls: int
    total_failures: int
    total_successes: int
    total_rejected: int


class CircuitBreaker:
    """Three-state circuit breaker around zero-argument async work."""

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout_ms: int = DEFAULT_RESET_TIMEOUT_MS,
        success_threshold: int = DEFAULT_SUCCESS_THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
        name: str = "llm",
    ):
        if failure_threshold < 1 or success_threshold < 1:
            raise ValueError("breaker thresholds must be at least 1")
        if reset_timeout_ms < 0:
            raise ValueError("reset_timeout_ms must not be negative")

        self.name = name
        self._failure_threshold = failure_threshold
        self._reset_timeout_ms = reset_timeout_ms
        self._success_threshold = success_threshold
        self._clock = clock
        self._lock = threading.Lock()

        self._state = BreakerState.CLOSED
        self._failures = 0
        self._successes = 0
        self._last_failure_time: Optional[float] = None
        self._total_calls = 0
        self._total_failures = 0
        self._total_successes = 0
        self._total_rejected = 0

    @property
    def state(self) -> BreakerState:
        with self._lock:
            return self._state

    async def call(self, work: Callable[[], Awaitable[T]]) -> T:
        """Run ``work`` through the breaker.

        Raises :class:`CircuitOpenError` without running ``work`` while the
        circuit is open. Any exception raised by ``work`` is recorded as a
        failure and surfaces as :class:`TransportError`.
        """
        self._admit()

        try:
            result = await work()
        except TransportError:
            self._record_failure()
            raise
        except Exception as e:
            self._record_failure()
            logger.error("circuit_breaker_caught_exception", breaker=self.name, error=repr(e))
            raise TransportError(f"{type(e).__name__}: {e}") from e

        self._record_success()
        return result

    def stats(self) -> CircuitBreakerStats:
        with self._lock:
            return CircuitBreakerStats(
                state=self._state,
                consecutive_failures=self._failures,
                consecutive_successes=self._successes,
                failure_threshold=self._failure_threshold,
                reset_timeout_ms=self._reset_timeout_ms,
                success_threshold=self._success_threshold,
                last_failure_time=self._last_failure_time,
                total_calls=self._total_calls,
                total_failures=self._total_failures,
                total_successes=self._total_successes,
                total_rejected=self._total_rejected,
            )

    def reset(self) -> None:
        """Force the circuit closed and clear the streaks. Totals are kept."""
        with self._lock:
            self._state = BreakerState.CLOSED
            self._failures = 0
            self._successes = 0
            self._last_failure_time = None
        logger.info("circuit_breaker_reset", breaker=self.name)

    # -- bookkeeping (always under the lock) --

    def _admit(self) -> None:
        with self._lock:
            if self._state is BreakerState.OPEN:
                elapsed_ms = self._elapsed_since_failure_ms()
                if elapsed_ms < self._reset_timeout_ms:
                    self._total_rejected += 1
                    retry_after = (self._reset_timeout_ms - elapsed_ms) / 1000
                    logger.warning("circuit_breaker_rejected", breaker=self.name)
                    raise CircuitOpenError(retry_after)
                self._state = BreakerState.HALF_OPEN
                self._successes = 0
                logger.info("circuit_breaker_half_open", breaker=self.name)
            self._total_calls += 1

    def _record_success(self) -> None:
        with self._lock:
            self._total_successes += 1
            self._failures = 0
            if self._state is BreakerState.HALF_OPEN:
                self._successes += 1
                if self._successes >= self._success_threshold:
                    self._state = BreakerState.CLOSED
                    self._successes = 0
                    logger.info("circuit_breaker_closed", breaker=self.name)

    def _record_failure(self) -> None:
        with self._lock:
            self._total_failures += 1
            self._failures += 1
            self._successes = 0
            self._last_failure_time = self._clock()
            if self._state is BreakerState.HALF_OPEN:
                self._state = BreakerState.OPEN
                logger.warning("circuit_breaker_reopened", breaker=self.name)
            elif self._state is BreakerState.CLOSED and self._failures >= self._failure_threshold:
                self._state = BreakerState.OPEN
                logger.warning(
                    "circuit_breaker_opened", breaker=self.name, failures=self._failures
                )

    def _elapsed_since_failure_ms(self) -> float:
        if self._last_failure_time is None:
            return float("inf")
        return (self._clock() - self._last_failure_time) * 1000
