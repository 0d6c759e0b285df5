import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Iterable
from uuid import UUID

from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from todo_service.models import TodoItem, TodoStatus

logger = logging.getLogger(__name__)


class TodoRepository:
    """
    Durable storage of todo items.

    Query methods run inside the session handed to them; ``transaction()``
    produces that session and is the unit of atomicity:

    - commit when the block exits normally, rollback when it raises
    - ``write=True`` units are serialized within the process, and the rows a
      write unit reads with ``for_update=True`` are locked at the database
      (``SELECT ... FOR UPDATE``) where the backend supports it
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory
        self._write_lock = asyncio.Lock()

    @asynccontextmanager
    async def transaction(self, write: bool = False) -> AsyncIterator[AsyncSession]:
        if not write:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session
            return

        async with self._write_lock:
            async with self._session_factory() as session:
                async with session.begin():
                    yield session

    async def get(
        self, db: AsyncSession, item_id: UUID, for_update: bool = False
    ) -> TodoItem | None:
        return await db.get(TodoItem, item_id, with_for_update=for_update or None)

    async def save(self, db: AsyncSession, item: TodoItem) -> TodoItem:
        db.add(item)
        await db.flush()
        await db.refresh(item)
        return item

    async def save_all(self, db: AsyncSession, items: Iterable[TodoItem]) -> None:
        db.add_all(list(items))
        await db.flush()

    async def find_all(self, db: AsyncSession) -> list[TodoItem]:
        query = select(TodoItem).order_by(TodoItem.creation_datetime, TodoItem.id)
        result = await db.exec(query)
        return list(result.all())

    async def find_by_status(
        self, db: AsyncSession, status: TodoStatus
    ) -> list[TodoItem]:
        query = (
            select(TodoItem)
            .where(TodoItem.status == status)
            .order_by(TodoItem.creation_datetime, TodoItem.id)
        )
        result = await db.exec(query)
        return list(result.all())

    async def find_by_status_and_due_before(
        self,
        db: AsyncSession,
        status: TodoStatus,
        before: datetime,
        for_update: bool = False,
    ) -> list[TodoItem]:
        query = (
            select(TodoItem)
            .where(TodoItem.status == status)
            .where(TodoItem.due_datetime < before)
            .order_by(TodoItem.creation_datetime, TodoItem.id)
        )
        if for_update:
            query = query.with_for_update()
        result = await db.exec(query)
        return list(result.all())
