"""Shared fixtures: a throwaway SQLite database per test and the wired services."""

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from todo_service.cache.layer import TODO_BY_ID, TODO_LIST, CacheLayer, MemoryCacheRegion
from todo_service.core.config import Settings
from todo_service.database import (
    create_db_and_tables,
    create_engine_from_settings,
    create_session_factory,
)
from todo_service.repositories.todo_repository import TodoRepository
from todo_service.scheduler.past_due import PastDueSweep
from todo_service.services.todo_service import TodoService


class FakeClock:
    """Settable wall clock for engine and sweep."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'todos.db'}",
        cache_backend="memory",
        sweep_enabled=False,
    )


@pytest_asyncio.fixture
async def engine(settings):
    engine = create_engine_from_settings(settings)
    await create_db_and_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def repository(engine):
    return TodoRepository(create_session_factory(engine))


@pytest.fixture
def cache():
    return CacheLayer(
        by_id=MemoryCacheRegion(TODO_BY_ID),
        by_listing_flag=MemoryCacheRegion(TODO_LIST),
    )


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def service(repository, cache, clock):
    return TodoService(repository, cache, clock=clock)


@pytest.fixture
def sweep(repository, cache, clock):
    return PastDueSweep(repository, cache, clock=clock)
