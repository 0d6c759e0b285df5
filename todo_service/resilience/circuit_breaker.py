"""Failure-rate circuit breaker for the read paths."""

import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, Tuple, Type, TypeVar

from todo_service.errors import UnavailableError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject calls
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitBreaker:
    """
    Count-based circuit breaker.

    CLOSED records the outcome of the last ``sliding_window_size`` calls. Once
    at least ``minimum_number_of_calls`` are recorded and the failure rate
    reaches ``failure_rate_threshold`` percent the breaker opens. OPEN rejects
    every call with UnavailableError until ``wait_duration_in_open_state``
    seconds have passed, then HALF_OPEN lets
    ``permitted_calls_in_half_open_state`` probes through; their failure rate
    decides between CLOSED and OPEN.

    Exceptions listed in ``ignore_exceptions`` are business outcomes: they are
    neither successes nor failures and propagate unchanged.
    """

    def __init__(
        self,
        name: str,
        failure_rate_threshold: float = 50.0,
        sliding_window_size: int = 10,
        minimum_number_of_calls: int = 5,
        wait_duration_in_open_state: float = 10.0,
        permitted_calls_in_half_open_state: int = 3,
        ignore_exceptions: Tuple[Type[BaseException], ...] = (),
        clock: Callable[[], float] = time.monotonic,
    ):
        if not 0 < failure_rate_threshold <= 100:
            raise ValueError("failure_rate_threshold must be in (0, 100]")
        if sliding_window_size <= 0 or permitted_calls_in_half_open_state <= 0:
            raise ValueError("window sizes must be greater than 0")
        self.name = name
        self.failure_rate_threshold = failure_rate_threshold
        self.sliding_window_size = sliding_window_size
        self.minimum_number_of_calls = min(minimum_number_of_calls, sliding_window_size)
        self.wait_duration_in_open_state = wait_duration_in_open_state
        self.permitted_calls_in_half_open_state = permitted_calls_in_half_open_state
        self.ignore_exceptions = ignore_exceptions
        self._clock = clock

        self._lock = threading.Lock()
        self._state = CircuitState.CLOSED
        self._outcomes: Deque[bool] = deque(maxlen=sliding_window_size)
        self._opened_at: Optional[float] = None
        self._half_open_permits = 0
        self._half_open_outcomes: List[bool] = []

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._maybe_half_open()
            return self._state

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Execute function through circuit breaker."""
        self._acquire_permission()
        try:
            result = await func(*args, **kwargs)
        except self.ignore_exceptions:
            self._release_permission()
            raise
        except Exception:
            self._record(success=False)
            raise
        except BaseException:
            # Cancelled calls are not outcomes; hand the half-open permit back
            self._release_permission()
            raise
        self._record(success=True)
        return result

    def _maybe_half_open(self) -> None:
        if (
            self._state == CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self.wait_duration_in_open_state
        ):
            self._transition(CircuitState.HALF_OPEN)

    def _acquire_permission(self) -> None:
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.OPEN:
                raise UnavailableError(self.name)
            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_permits >= self.permitted_calls_in_half_open_state:
                    raise UnavailableError(self.name)
                self._half_open_permits += 1

    def _release_permission(self) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN and self._half_open_permits > 0:
                self._half_open_permits -= 1

    def _record(self, success: bool) -> None:
        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._half_open_outcomes.append(success)
                if len(self._half_open_outcomes) >= self.permitted_calls_in_half_open_state:
                    if _failure_rate(self._half_open_outcomes) >= self.failure_rate_threshold:
                        self._transition(CircuitState.OPEN)
                    else:
                        self._transition(CircuitState.CLOSED)
                return

            if self._state == CircuitState.OPEN:
                # Call admitted before the breaker opened; nothing to decide
                return

            self._outcomes.append(success)
            if (
                len(self._outcomes) >= self.minimum_number_of_calls
                and _failure_rate(self._outcomes) >= self.failure_rate_threshold
            ):
                self._transition(CircuitState.OPEN)

    def _transition(self, state: CircuitState) -> None:
        previous = self._state
        self._state = state
        self._half_open_permits = 0
        self._half_open_outcomes = []
        if state == CircuitState.OPEN:
            self._opened_at = self._clock()
            logger.warning(
                "Circuit breaker OPEN",
                extra={"breaker": self.name, "previous": previous.value},
            )
        elif state == CircuitState.CLOSED:
            self._outcomes.clear()
            self._opened_at = None
            logger.info("Circuit breaker CLOSED", extra={"breaker": self.name})
        else:
            logger.info("Circuit breaker entering HALF_OPEN state", extra={"breaker": self.name})

    def get_state(self) -> Dict[str, Any]:
        """Get current circuit breaker state for monitoring."""
        with self._lock:
            self._maybe_half_open()
            return {
                "state": self._state.value,
                "buffered_calls": len(self._outcomes),
                "failure_rate": _failure_rate(self._outcomes) if self._outcomes else None,
            }


def _failure_rate(outcomes) -> float:
    outcomes = list(outcomes)
    failures = sum(1 for ok in outcomes if not ok)
    return failures * 100.0 / len(outcomes)
