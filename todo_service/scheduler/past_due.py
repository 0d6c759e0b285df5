import asyncio
import logging
from datetime import datetime
from typing import Callable, Optional

from todo_service.cache.layer import CacheLayer
from todo_service.models import TodoStatus, get_utc_now
from todo_service.repositories.todo_repository import TodoRepository

logger = logging.getLogger(__name__)


class PastDueSweep:
    """Transitions overdue NOT_DONE items to PAST_DUE in one batch."""

    def __init__(
        self,
        repository: TodoRepository,
        cache: CacheLayer,
        clock: Callable[[], datetime] = get_utc_now,
    ):
        self.repository = repository
        self.cache = cache
        self._clock = clock

    async def mark_past_due_if_required(self) -> int:
        """
        Mark every NOT_DONE item whose due time is before now as PAST_DUE.

        The batch commits as a whole or not at all; repository errors
        propagate and leave the cache untouched. Returns the number of items
        changed.
        """
        now = self._clock()

        async with self.repository.transaction(write=True) as db:
            overdue = await self.repository.find_by_status_and_due_before(
                db, TodoStatus.NOT_DONE, now, for_update=True
            )
            for item in overdue:
                item.status = TodoStatus.PAST_DUE
            await self.repository.save_all(db, overdue)

        if overdue:
            await self.cache.invalidate_all()
        logger.info("Marked %d todos as past due", len(overdue))
        return len(overdue)


class PastDueScheduler:
    """Runs the sweep now and then every ``interval_seconds`` (fixed delay)."""

    def __init__(self, sweep: PastDueSweep, interval_seconds: float = 60.0):
        self.sweep = sweep
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run_loop())
        logger.info(
            "Past-due scheduler started",
            extra={"interval_seconds": self.interval_seconds},
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        logger.info("Past-due scheduler stopped")

    async def run_once(self) -> int:
        try:
            updated = await self.sweep.mark_past_due_if_required()
        except Exception:
            logger.exception(
                "Past-due sweep failed; retrying in %.0fs", self.interval_seconds
            )
            return 0
        if updated > 0:
            logger.info("Marked %d todo(s) as PAST_DUE", updated)
        return updated

    async def _run_loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)
