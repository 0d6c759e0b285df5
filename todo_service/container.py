import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker
from sqlmodel.ext.asyncio.session import AsyncSession

from todo_service.cache.layer import CacheLayer, build_cache_layer
from todo_service.core.config import Settings
from todo_service.database import create_engine_from_settings, create_session_factory
from todo_service.errors import NotFoundError, ValidationError
from todo_service.repositories.todo_repository import TodoRepository
from todo_service.resilience.circuit_breaker import CircuitBreaker
from todo_service.resilience.rate_limiter import RateLimiter
from todo_service.resilience.reader import ResilientTodoReader
from todo_service.scheduler.past_due import PastDueScheduler, PastDueSweep
from todo_service.services.todo_service import TodoService

logger = logging.getLogger(__name__)


@dataclass
class TodoServices:
    engine: Optional[AsyncEngine]
    repository: TodoRepository
    cache: CacheLayer
    todos: TodoService
    reader: ResilientTodoReader
    sweep: PastDueSweep
    scheduler: PastDueScheduler

    async def aclose(self) -> None:
        await self.scheduler.stop()
        await self.cache.close()
        if self.engine is not None:
            await self.engine.dispose()


def build_services(
    settings: Settings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    cache: Optional[CacheLayer] = None,
) -> TodoServices:
    """Construct the lifecycle engine and its collaborators from settings."""
    engine = None
    if session_factory is None:
        engine = create_engine_from_settings(settings)
        session_factory = create_session_factory(engine)

    repository = TodoRepository(session_factory)
    cache = cache or build_cache_layer(settings)
    todos = TodoService(repository, cache)

    rate_limiter = None
    if settings.rate_limit_enabled:
        rate_limiter = RateLimiter(
            "todoRateLimiter",
            limit_for_period=settings.rate_limit_for_period,
            limit_refresh_period=settings.rate_limit_refresh_period_seconds,
        )

    circuit_breaker = None
    if settings.circuit_breaker_enabled:
        circuit_breaker = CircuitBreaker(
            "todoServiceCB",
            failure_rate_threshold=settings.circuit_failure_rate_threshold,
            sliding_window_size=settings.circuit_sliding_window_size,
            minimum_number_of_calls=settings.circuit_minimum_number_of_calls,
            wait_duration_in_open_state=settings.circuit_wait_duration_open_seconds,
            permitted_calls_in_half_open_state=settings.circuit_permitted_calls_in_half_open,
            ignore_exceptions=(NotFoundError, ValidationError),
        )

    sweep = PastDueSweep(repository, cache)
    return TodoServices(
        engine=engine,
        repository=repository,
        cache=cache,
        todos=todos,
        reader=ResilientTodoReader(todos, rate_limiter, circuit_breaker),
        sweep=sweep,
        scheduler=PastDueScheduler(sweep, settings.sweep_interval_seconds),
    )
