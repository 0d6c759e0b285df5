import asyncio
import uuid
from datetime import timedelta

import pytest

from todo_service.cache.layer import TODO_BY_ID, TODO_LIST
from todo_service.errors import ImmutablePastDueError, NotFoundError, ValidationError
from todo_service.models import TodoStatus


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_then_get(self, service, clock):
        created = await service.create("Buy milk", clock.now + timedelta(hours=1))

        fetched = await service.get_by_id(created.id)
        assert fetched.status == TodoStatus.NOT_DONE
        assert fetched.description == "Buy milk"
        assert fetched.done_datetime is None
        assert fetched.creation_datetime == clock.now
        assert fetched.due_datetime == clock.now + timedelta(hours=1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("description", ["", "   ", None])
    async def test_create_rejects_blank_description(self, service, clock, description):
        with pytest.raises(ValidationError):
            await service.create(description, clock.now + timedelta(hours=1))

        assert await service.list(all=True) == []

    @pytest.mark.asyncio
    async def test_create_requires_due_datetime(self, service):
        with pytest.raises(ValidationError):
            await service.create("No due date", None)

    @pytest.mark.asyncio
    async def test_naive_due_datetime_is_treated_as_utc(self, service, clock):
        naive_due = (clock.now + timedelta(days=1)).replace(tzinfo=None)

        created = await service.create("Naive", naive_due)

        assert created.due_datetime == clock.now + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_create_invalidates_cached_listing(self, service, clock):
        await service.create("First", clock.now + timedelta(hours=1))
        assert len(await service.list(all=False)) == 1

        clock.advance(seconds=1)
        await service.create("Second", clock.now + timedelta(hours=1))

        assert [t.description for t in await service.list(all=False)] == ["First", "Second"]


class TestMutations:
    @pytest.mark.asyncio
    async def test_mark_done_then_not_done_clears_done_time(self, service, clock):
        created = await service.create("Laundry", clock.now + timedelta(hours=2))

        clock.advance(minutes=5)
        done = await service.mark_done(created.id)
        assert done.status == TodoStatus.DONE
        assert done.done_datetime == clock.now

        not_done = await service.mark_not_done(created.id)
        assert not_done.status == TodoStatus.NOT_DONE
        assert not_done.done_datetime is None

    @pytest.mark.asyncio
    async def test_due_datetime_never_changes(self, service, clock):
        due = clock.now + timedelta(hours=3)
        created = await service.create("Call mom", due)

        results = [
            await service.update_description(created.id, "Call mom and dad"),
            await service.mark_done(created.id),
            await service.mark_not_done(created.id),
            await service.get_by_id(created.id),
        ]

        assert all(r.due_datetime == due for r in results)
        assert all(r.creation_datetime == created.creation_datetime for r in results)

    @pytest.mark.asyncio
    async def test_update_description_refreshes_cached_item(self, service, clock):
        created = await service.create("Old", clock.now + timedelta(hours=1))
        assert (await service.get_by_id(created.id)).description == "Old"

        await service.update_description(created.id, "X")

        assert (await service.get_by_id(created.id)).description == "X"
        cached = await service.cache.region(TODO_BY_ID).read(created.id)
        assert cached.description == "X"

    @pytest.mark.asyncio
    async def test_update_description_invalidates_listings(self, service, clock):
        created = await service.create("Old", clock.now + timedelta(hours=1))
        await service.list(all=True)

        await service.update_description(created.id, "New")

        assert await service.cache.region(TODO_LIST).read(True) is None
        assert [t.description for t in await service.list(all=True)] == ["New"]

    @pytest.mark.asyncio
    async def test_update_description_rejects_blank(self, service, clock):
        created = await service.create("Keep me", clock.now + timedelta(hours=1))

        with pytest.raises(ValidationError):
            await service.update_description(created.id, "  ")

        assert (await service.get_by_id(created.id)).description == "Keep me"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "operation",
        [
            lambda s, i: s.update_description(i, "new"),
            lambda s, i: s.mark_done(i),
            lambda s, i: s.mark_not_done(i),
        ],
    )
    async def test_mutations_on_unknown_id_raise_not_found(self, service, operation):
        with pytest.raises(NotFoundError):
            await operation(service, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_guard_reads_repository_not_cache(self, service, sweep, clock, cache):
        created = await service.create("Stale", clock.now + timedelta(minutes=1))
        # Warm the cache with a NOT_DONE snapshot, then let the sweep flip the row
        await service.get_by_id(created.id)
        clock.advance(minutes=2)
        await sweep.mark_past_due_if_required()
        await cache.refresh(TODO_BY_ID, created.id, created)

        with pytest.raises(ImmutablePastDueError):
            await service.mark_done(created.id)


class TestPastDueImmutability:
    @pytest.mark.asyncio
    async def test_every_mutation_fails_once_past_due(self, service, sweep, clock):
        created = await service.create("Expired", clock.now + timedelta(minutes=10))
        clock.advance(minutes=11)
        assert await sweep.mark_past_due_if_required() == 1

        with pytest.raises(ImmutablePastDueError):
            await service.update_description(created.id, "changed")
        with pytest.raises(ImmutablePastDueError):
            await service.mark_done(created.id)
        with pytest.raises(ImmutablePastDueError):
            await service.mark_not_done(created.id)

        item = await service.get_by_id(created.id)
        assert item.status == TodoStatus.PAST_DUE
        assert item.description == "Expired"
        assert item.done_datetime is None


class TestReads:
    @pytest.mark.asyncio
    async def test_get_unknown_id_raises_not_found(self, service):
        with pytest.raises(NotFoundError):
            await service.get_by_id(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_not_found_is_not_cached(self, service):
        missing = uuid.uuid4()
        with pytest.raises(NotFoundError):
            await service.get_by_id(missing)

        assert await service.cache.region(TODO_BY_ID).read(missing) is None

    @pytest.mark.asyncio
    async def test_list_not_done_excludes_done_items(self, service, clock):
        first = await service.create("First", clock.now + timedelta(hours=1))
        second = await service.create("Second", clock.now + timedelta(hours=1))
        await service.mark_done(second.id)

        not_done = await service.list(all=False)
        everything = await service.list(all=True)

        assert [t.id for t in not_done] == [first.id]
        assert {t.id for t in everything} == {first.id, second.id}

    @pytest.mark.asyncio
    async def test_list_is_served_from_cache(self, service, clock, monkeypatch):
        await service.create("Cached", clock.now + timedelta(hours=1))
        first = await service.list(all=True)

        async def fail(*args, **kwargs):
            raise AssertionError("repository should not be queried")

        monkeypatch.setattr(service.repository, "find_all", fail)

        assert await service.list(all=True) == first
        assert service.cache.get_stats()["hits"] == 1

    @pytest.mark.asyncio
    async def test_listing_order_is_stable(self, service, clock):
        for i in range(3):
            clock.advance(seconds=1)
            await service.create(f"Task {i}", clock.now + timedelta(hours=1))

        first = [t.description for t in await service.list(all=True)]
        await service.cache.invalidate_all()
        second = [t.description for t in await service.list(all=True)]

        assert first == second == ["Task 0", "Task 1", "Task 2"]

    @pytest.mark.asyncio
    async def test_same_instant_creates_list_in_a_stable_order(self, service, clock):
        for i in range(5):
            await service.create(f"Tied {i}", clock.now + timedelta(hours=1))

        first = [t.id for t in await service.list(all=True)]
        await service.cache.invalidate_all()
        second = [t.id for t in await service.list(all=True)]

        assert first == second
        assert first == sorted(first)


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_mutations_on_same_item_serialize(self, service, clock):
        created = await service.create("Busy", clock.now + timedelta(hours=1))

        results = await asyncio.gather(
            *[service.update_description(created.id, f"v{i}") for i in range(5)],
            service.mark_done(created.id),
        )

        final = await service.get_by_id(created.id)
        assert final.status == TodoStatus.DONE
        assert final.description == results[4].description == "v4"
