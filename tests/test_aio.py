"""Tests for the asyncio facade."""

import asyncio
import contextlib
import threading

import pytest

from lmdb_docstore.aio import AsyncCollection, AsyncLmdbStore
from lmdb_docstore.environment import Environment
from lmdb_docstore.errors import CollectionAlreadyExists, CollectionNotFound
from lmdb_docstore.store import LmdbStore


@pytest.fixture
def async_store(store):
    # type: (LmdbStore) -> AsyncLmdbStore
    return AsyncLmdbStore(store)


def test_async_basic_operations(async_store):
    # type: (AsyncLmdbStore) -> None
    async def scenario():
        await async_store.collection_allocate("docs")
        assert await async_store.collection_exists("docs") is True
        assert await async_store.collections_available() == ["docs"]

        state = await async_store.upsert_overwrite("docs", "a", {"n": 1})
        assert state.previous is None
        assert await async_store.fetch("docs", "a") == {"n": 1}
        assert await async_store.collection_size("docs") == 1
        assert await async_store.collect("docs") == [{"n": 1}]

        assert await async_store.delete("docs", "a") == {"n": 1}
        assert await async_store.fetch("docs", "a") is None

        await async_store.upsert_overwrite("docs", "b", 2)
        await async_store.collection_clear("docs")
        assert await async_store.collection_size("docs") == 0
        await async_store.platform_check()

        users = await async_store.collection_create("users")
        assert isinstance(users, AsyncCollection)
        await users.upsert_overwrite("alice", {"age": 42})
        with pytest.raises(CollectionAlreadyExists):
            await async_store.collection_create("users")

        same = await async_store.collection_get("users")
        assert same.name == "users"
        assert await same.fetch("alice") == {"age": 42}
        assert await same.size() == 1
        assert [document async for document in same.stream()] == [{"age": 42}]
        with pytest.raises(CollectionNotFound):
            await async_store.collection_get("missing")

    asyncio.run(scenario())


def test_async_errors_propagate(async_store):
    # type: (AsyncLmdbStore) -> None
    async def scenario():
        with pytest.raises(CollectionNotFound):
            await async_store.fetch("missing", "k")

    asyncio.run(scenario())


def test_async_concurrent_upserts(async_store):
    # type: (AsyncLmdbStore) -> None
    """Test gathered increments on one key lose no updates."""
    n = 50

    async def scenario():
        await async_store.collection_allocate("counters")
        await asyncio.gather(
            *(async_store.upsert("counters", "hits", lambda previous: (previous or 0) + 1) for _ in range(n))
        )
        return await async_store.fetch("counters", "hits")

    assert asyncio.run(scenario()) == n


def test_async_stream(abc_store):
    # type: (LmdbStore) -> None
    async_store = AsyncLmdbStore(abc_store)

    async def scenario():
        return [document async for document in async_store.stream("c", key_filter=lambda key: key != "a2")]

    assert asyncio.run(scenario()) == [1, 3]
    assert abc_store.environment.lock.reader_count == 0


def test_async_stream_early_exit_releases_scope(abc_store):
    # type: (LmdbStore) -> None
    """Test closing the generator early closes the read scope."""
    async_store = AsyncLmdbStore(abc_store)

    async def scenario():
        async with contextlib.aclosing(async_store.stream("c")) as documents:
            async for document in documents:
                assert document == 1
                break
        # Writes are possible again once the scope is closed
        await async_store.upsert_overwrite("c", "a1", 10)
        return await async_store.fetch("c", "a1")

    assert asyncio.run(scenario()) == 10
    assert abc_store.environment.lock.reader_count == 0


def test_async_stream_unknown_collection(async_store):
    # type: (AsyncLmdbStore) -> None
    async def scenario():
        with pytest.raises(CollectionNotFound):
            async for _ in async_store.stream("missing"):
                pass  # pragma: no cover

    asyncio.run(scenario())


def test_cancelled_upsert_completes_its_transaction(store):
    # type: (LmdbStore) -> None
    """Test cancelling the awaiting task leaves no write transaction open."""
    store.collection_allocate("docs")
    async_store = AsyncLmdbStore(store)
    entered = threading.Event()
    proceed = threading.Event()

    def slow_modifier(previous):
        # type: (int | None) -> int
        entered.set()
        proceed.wait(5)
        return (previous or 0) + 1

    async def scenario():
        task = asyncio.create_task(async_store.upsert("docs", "k", slow_modifier))
        await asyncio.get_running_loop().run_in_executor(None, entered.wait, 5)
        task.cancel()
        await asyncio.sleep(0.05)
        # Cancellation waits for the worker to finish
        assert not task.done()
        proceed.set()
        with pytest.raises(asyncio.CancelledError):
            await task

    asyncio.run(scenario())

    assert store.fetch("docs", "k") == 1
    assert store.environment.lock._writer is None


def test_async_context_manager_closes_store(config):
    # type: (LmdbConfig) -> None
    store = LmdbStore(config)

    async def scenario():
        async with AsyncLmdbStore(store) as async_store:
            await async_store.collection_allocate("docs")

    asyncio.run(scenario())
    assert store.environment.closed is True


@pytest.fixture
def reopened_store(config):
    # type: (LmdbConfig) -> LmdbStore
    """Store on a fresh environment where 'c' and 'other' exist but no handle is open yet."""
    with Environment(config) as env:
        seed = LmdbStore(env)
        seed.collection_allocate("c")
        seed.collection_allocate("other")
        for key, value in {"a1": 1, "a2": 2, "b1": 3}.items():
            seed.upsert_overwrite("c", key, value)
        seed.upsert_overwrite("other", "k", 1)

    env = Environment(config)
    yield LmdbStore(env)
    env.close()


def test_writes_inside_async_stream_fail_fast(reopened_store):
    # type: (LmdbStore) -> None
    """Test writes and handle opening from the task consuming a stream raise instead of blocking."""
    async_store = AsyncLmdbStore(reopened_store)
    lock = reopened_store.environment.lock

    async def consume():
        seen = []
        async with contextlib.aclosing(async_store.stream("c")) as documents:
            async for document in documents:
                seen.append(document)
                with pytest.raises(RuntimeError, match="upgrade"):
                    await async_store.upsert_overwrite("c", "z", document)
                with pytest.raises(RuntimeError, match="upgrade"):
                    await async_store.fetch("other", "k")
                assert await async_store.fetch("c", "a1") == 1
                assert lock._writers_waiting == 0
        return seen

    async def scenario():
        seen = await asyncio.wait_for(consume(), timeout=10)
        # Same operations succeed once the stream is closed
        await async_store.upsert_overwrite("c", "z", 4)
        return seen, await async_store.fetch("other", "k"), await async_store.collect("c")

    seen, other, documents = asyncio.run(scenario())

    assert seen == [1, 2, 3]
    assert other == 1
    assert documents == [1, 2, 3, 4]
    assert lock.reader_count == 0


def test_nested_async_streams(abc_store):
    # type: (LmdbStore) -> None
    """Test a stream opened while consuming another one reuses its read lock."""
    async_store = AsyncLmdbStore(abc_store)

    async def scenario():
        pairs = []
        async for outer in async_store.stream("c"):
            inner = [document async for document in async_store.stream("c")]
            pairs.append((outer, inner))
        return pairs

    assert asyncio.run(scenario()) == [(1, [1, 2, 3]), (2, [1, 2, 3]), (3, [1, 2, 3])]
    assert abc_store.environment.lock.reader_count == 0
