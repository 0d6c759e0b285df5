import logging
from typing import Optional
from uuid import UUID

from todo_service.errors import UnavailableError
from todo_service.models import TodoResponse
from todo_service.resilience.circuit_breaker import CircuitBreaker
from todo_service.resilience.rate_limiter import RateLimiter
from todo_service.services.todo_service import TodoService

logger = logging.getLogger(__name__)


class ResilientTodoReader:
    """
    Read paths of the lifecycle engine behind admission control and failure
    isolation: rate limiter -> circuit breaker -> engine.

    Either layer may be None. An open breaker degrades reads to a fallback
    (placeholder item, empty listing); rate limiting always surfaces
    RateLimitedError.
    """

    def __init__(
        self,
        service: TodoService,
        rate_limiter: Optional[RateLimiter] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        self.service = service
        self.rate_limiter = rate_limiter
        self.circuit_breaker = circuit_breaker

    async def get_by_id(self, item_id: UUID) -> TodoResponse:
        self._admit()
        try:
            return await self._guarded(self.service.get_by_id, item_id)
        except UnavailableError as e:
            logger.error("Fallback getById triggered: %s", e, extra={"todo_id": str(item_id)})
            return TodoResponse.unavailable(item_id)

    async def list(self, all: bool = False) -> list[TodoResponse]:
        self._admit()
        try:
            return await self._guarded(self.service.list, all)
        except UnavailableError as e:
            logger.error("Fallback list triggered: %s", e, extra={"all": all})
            return []

    def _admit(self) -> None:
        if self.rate_limiter is not None:
            self.rate_limiter.acquire()

    async def _guarded(self, func, *args):
        if self.circuit_breaker is None:
            return await func(*args)
        return await self.circuit_breaker.call(func, *args)
