"""
Circuit breaker for outbound dependencies (LLM API, remote vector store).

Policy:
- Opens when the error rate over a sliding window reaches the threshold
  (once a minimum number of calls has been observed)
- Stays open for a fixed cool-down, then goes half-open
- Half-open admits a fraction of calls; 3 successes out of 5 trial calls close
  the circuit, anything worse re-opens it
"""
import time
from collections import deque
from enum import Enum
from threading import Lock
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple

from toolfinder.core.logging import get_logger

logger = get_logger(__name__)

HALF_OPEN_TRIALS = 5
HALF_OPEN_SUCCESSES_TO_CLOSE = 3


class CircuitBreakerOpenError(Exception):
    """Raised when a call is rejected without reaching the dependency."""


class CircuitState(Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """Windowed error-rate circuit breaker usable from async code."""

    def __init__(
        self,
        name: str,
        failure_threshold: float = 0.5,
        time_window_seconds: float = 60.0,
        open_duration_seconds: float = 30.0,
        half_open_test_percentage: float = 0.1,
        min_requests_for_threshold: int = 10,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.time_window_seconds = time_window_seconds
        self.open_duration_seconds = open_duration_seconds
        self.half_open_test_percentage = half_open_test_percentage
        self.min_requests_for_threshold = min_requests_for_threshold
        self._clock = clock

        self._lock = Lock()
        self._state = CircuitState.CLOSED
        self._history: Deque[Tuple[float, bool]] = deque()
        self._opened_at: Optional[float] = None
        self._half_open_seen = 0
        self._trial_successes = 0
        self._trial_failures = 0

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh(self._clock())
            return self._state

    def _refresh(self, now: float) -> None:
        cutoff = now - self.time_window_seconds
        while self._history and self._history[0][0] < cutoff:
            self._history.popleft()

        if self._state is CircuitState.OPEN:
            if self._opened_at is not None and now - self._opened_at >= self.open_duration_seconds:
                self._state = CircuitState.HALF_OPEN
                self._half_open_seen = 0
                self._trial_successes = 0
                self._trial_failures = 0
                logger.info("circuit_breaker_half_open", circuit_breaker=self.name)
            return

        if self._state is CircuitState.CLOSED and len(self._history) >= self.min_requests_for_threshold:
            failures = sum(1 for _, ok in self._history if not ok)
            error_rate = failures / len(self._history)
            if error_rate >= self.failure_threshold:
                self._trip(now)
                logger.warning(
                    "circuit_breaker_opened",
                    circuit_breaker=self.name,
                    error_rate=error_rate,
                    failures=failures,
                    total=len(self._history),
                )

    def _trip(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._history.clear()

    def _admit(self) -> None:
        """Raise CircuitBreakerOpenError unless this call may proceed."""
        with self._lock:
            self._refresh(self._clock())
            if self._state is CircuitState.OPEN:
                raise CircuitBreakerOpenError(
                    f"Circuit breaker {self.name} is OPEN. Service unavailable."
                )
            if self._state is CircuitState.HALF_OPEN:
                self._half_open_seen += 1
                every = max(1, int(round(1 / self.half_open_test_percentage)))
                if self._half_open_seen % every != 0:
                    raise CircuitBreakerOpenError(
                        f"Circuit breaker {self.name} is HALF_OPEN. Skipping test request."
                    )

    def _record(self, success: bool) -> None:
        now = self._clock()
        with self._lock:
            if self._state is not CircuitState.HALF_OPEN:
                self._history.append((now, success))
                return

            if success:
                self._trial_successes += 1
            else:
                self._trial_failures += 1
            if self._trial_successes + self._trial_failures < HALF_OPEN_TRIALS:
                return

            if self._trial_successes >= HALF_OPEN_SUCCESSES_TO_CLOSE:
                self._state = CircuitState.CLOSED
                self._opened_at = None
                logger.info(
                    "circuit_breaker_closed",
                    circuit_breaker=self.name,
                    success_count=self._trial_successes,
                    failure_count=self._trial_failures,
                )
            else:
                self._trip(now)
                logger.warning(
                    "circuit_breaker_reopened",
                    circuit_breaker=self.name,
                    success_count=self._trial_successes,
                    failure_count=self._trial_failures,
                )

    async def call_async(self, func: Callable[..., Awaitable[Any]], *args, **kwargs) -> Any:
        """Await ``func(*args, **kwargs)`` under breaker protection."""
        self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            self._record(False)
            raise
        self._record(True)
        return result

    def reset(self) -> None:
        with self._lock:
            self._state = CircuitState.CLOSED
            self._history.clear()
            self._opened_at = None

    def get_metrics(self) -> dict:
        with self._lock:
            self._refresh(self._clock())
            failures = sum(1 for _, ok in self._history if not ok)
            total = len(self._history)
            return {
                "name": self.name,
                "state": self._state.value,
                "recent_requests": total,
                "recent_failures": failures,
                "error_rate": failures / total if total else 0.0,
                "opened_at": self._opened_at,
            }
