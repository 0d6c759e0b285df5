import logging
from datetime import datetime
from typing import Callable
from uuid import UUID

from sqlmodel.ext.asyncio.session import AsyncSession

from todo_service.cache.layer import TODO_BY_ID, TODO_LIST, CacheLayer
from todo_service.errors import ImmutablePastDueError, NotFoundError, ValidationError
from todo_service.models import TodoItem, TodoResponse, TodoStatus, as_utc, get_utc_now
from todo_service.repositories.todo_repository import TodoRepository

logger = logging.getLogger(__name__)


class TodoService:
    """
    Lifecycle engine for todo items.

    Every mutation reads the item, checks the immutability guard and writes it
    back inside one write transaction of the repository. Cache refreshes and
    invalidations run only after that transaction has committed.
    """

    def __init__(
        self,
        repository: TodoRepository,
        cache: CacheLayer,
        clock: Callable[[], datetime] = get_utc_now,
    ):
        self.repository = repository
        self.cache = cache
        self._clock = clock

    async def create(self, description: str, due_datetime: datetime | None) -> TodoResponse:
        _require_description(description)
        if due_datetime is None:
            raise ValidationError("due_datetime is required")

        logger.info("Creating new todo", extra={"description": description})
        async with self.repository.transaction(write=True) as db:
            item = TodoItem(
                description=description,
                status=TodoStatus.NOT_DONE,
                creation_datetime=self._clock(),
                due_datetime=as_utc(due_datetime),
                done_datetime=None,
            )
            item = await self.repository.save(db, item)
            snapshot = TodoResponse.from_item(item)

        await self.cache.invalidate(TODO_LIST)
        logger.info("Created todo", extra={"todo_id": str(snapshot.id)})
        return snapshot

    async def update_description(self, item_id: UUID, description: str) -> TodoResponse:
        _require_description(description)
        logger.info("Updating description", extra={"todo_id": str(item_id)})

        async with self.repository.transaction(write=True) as db:
            item = await self._load_mutable(db, item_id)
            item.description = description
            item = await self.repository.save(db, item)
            snapshot = TodoResponse.from_item(item)

        await self._publish(snapshot)
        return snapshot

    async def mark_done(self, item_id: UUID) -> TodoResponse:
        logger.info("Marking todo as done", extra={"todo_id": str(item_id)})

        async with self.repository.transaction(write=True) as db:
            item = await self._load_mutable(db, item_id)
            item.status = TodoStatus.DONE
            item.done_datetime = self._clock()
            item = await self.repository.save(db, item)
            snapshot = TodoResponse.from_item(item)

        await self._publish(snapshot)
        return snapshot

    async def mark_not_done(self, item_id: UUID) -> TodoResponse:
        logger.info("Marking todo as not done", extra={"todo_id": str(item_id)})

        async with self.repository.transaction(write=True) as db:
            item = await self._load_mutable(db, item_id)
            item.status = TodoStatus.NOT_DONE
            item.done_datetime = None
            item = await self.repository.save(db, item)
            snapshot = TodoResponse.from_item(item)

        await self._publish(snapshot)
        return snapshot

    async def get_by_id(self, item_id: UUID) -> TodoResponse:
        async def loader() -> TodoResponse:
            logger.info("Fetching todo", extra={"todo_id": str(item_id)})
            async with self.repository.transaction() as db:
                item = await self.repository.get(db, item_id)
                if item is None:
                    logger.warning("Todo not found", extra={"todo_id": str(item_id)})
                    raise NotFoundError(item_id)
                return TodoResponse.from_item(item)

        return await self.cache.get_or_load(TODO_BY_ID, item_id, loader)

    async def list(self, all: bool = False) -> list[TodoResponse]:
        async def loader() -> list[TodoResponse]:
            logger.info("Listing todos", extra={"all": all})
            async with self.repository.transaction() as db:
                if all:
                    items = await self.repository.find_all(db)
                else:
                    items = await self.repository.find_by_status(db, TodoStatus.NOT_DONE)
                todos = [TodoResponse.from_item(item) for item in items]
            logger.info("Retrieved %d todos", len(todos))
            return todos

        return await self.cache.get_or_load(TODO_LIST, bool(all), loader)

    async def _load_mutable(self, db: AsyncSession, item_id: UUID) -> TodoItem:
        # Guard reads the row inside the caller's transaction, never the cache
        item = await self.repository.get(db, item_id, for_update=True)
        if item is None:
            logger.warning("Todo not found", extra={"todo_id": str(item_id)})
            raise NotFoundError(item_id)
        if item.status == TodoStatus.PAST_DUE:
            logger.warning(
                "Attempted to modify immutable past due todo",
                extra={"todo_id": str(item_id)},
            )
            raise ImmutablePastDueError(item_id)
        return item

    async def _publish(self, snapshot: TodoResponse) -> None:
        await self.cache.refresh(TODO_BY_ID, snapshot.id, snapshot)
        await self.cache.invalidate(TODO_LIST)


def _require_description(description: str | None) -> None:
    if description is None or not description.strip():
        raise ValidationError("description must not be blank")
