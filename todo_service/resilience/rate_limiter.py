import logging
import threading
import time
from typing import Any, Awaitable, Callable, Dict, TypeVar

from todo_service.errors import RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RateLimiter:
    """
    Fail-fast rate limiter.

    Grants ``limit_for_period`` permits per ``limit_refresh_period`` seconds;
    the permit count resets at the start of each period. A call over the limit
    raises RateLimitedError without invoking the operation.
    """

    def __init__(
        self,
        name: str,
        limit_for_period: int = 100,
        limit_refresh_period: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit_for_period <= 0:
            raise ValueError("limit_for_period must be greater than 0")
        if limit_refresh_period <= 0:
            raise ValueError("limit_refresh_period must be greater than 0")
        self.name = name
        self.limit_for_period = limit_for_period
        self.limit_refresh_period = limit_refresh_period
        self._clock = clock
        self._lock = threading.Lock()
        self._period_start = clock()
        self._used = 0
        self.rejected = 0

    def acquire(self) -> None:
        """Take one permit or raise RateLimitedError."""
        with self._lock:
            now = self._clock()
            elapsed = now - self._period_start
            if elapsed >= self.limit_refresh_period:
                # Align to the period boundary so periods do not drift
                periods = int(elapsed // self.limit_refresh_period)
                self._period_start += periods * self.limit_refresh_period
                self._used = 0

            if self._used >= self.limit_for_period:
                self.rejected += 1
                logger.warning("Rate limit exceeded", extra={"limiter": self.name})
                raise RateLimitedError(self.name)
            self._used += 1

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        self.acquire()
        return await func(*args, **kwargs)

    def get_state(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "available_permits": max(self.limit_for_period - self._used, 0),
                "rejected": self.rejected,
            }
