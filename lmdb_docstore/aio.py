"""
Asyncio facade for LmdbStore.

LMDB calls block on memory-mapped I/O, so every operation runs on an executor
thread instead of the event loop. Cancelling an awaiting task does not
interrupt the worker: the task waits until the worker call returns (its write
transaction committed or aborted by the transaction scope) before the
cancellation propagates, so no transaction is left open.

Streams run on a dedicated single-thread executor so the read lock, read
transaction and cursor are always used from the thread that opened them.
While a task consumes a stream, its other operations (and nested streams) run
on that same thread. The lock then sees one owner: reads reenter the held read
lock, and writes fail fast with RuntimeError as they do in synchronous code,
instead of waiting forever on the task's own stream.
"""

import asyncio
import contextvars
import functools
from concurrent.futures import ThreadPoolExecutor

from lmdb_docstore.store import LmdbStore


__all__ = ["AsyncLmdbStore", "AsyncCollection"]


_END = object()

# Executor of the innermost stream consumed by the current task
_stream_executor = contextvars.ContextVar("lmdb_docstore_stream_executor", default=None)


class AsyncLmdbStore:
    """
    Async wrapper running LmdbStore operations off the event loop.

    :param store: Store to wrap
    :param executor: Executor for point operations (loop default executor if None)
    """

    def __init__(self, store, executor=None):
        # type: (LmdbStore, concurrent.futures.Executor | None) -> None
        self.store = store
        self._executor = executor

    async def collection_exists(self, name):
        # type: (str) -> bool
        return await self._run(self.store.collection_exists, name)

    async def collection_get(self, name, codec=None):
        # type: (str, DocumentCodec | None) -> AsyncCollection
        """
        Get an async handler for an existing collection.

        :raises CollectionNotFound: If the collection does not exist
        """
        collection = await self._run(self.store.collection_get, name, codec)
        return AsyncCollection(collection.name, self, collection.codec)

    async def collection_create(self, name, codec=None):
        # type: (str, DocumentCodec | None) -> AsyncCollection
        """
        Create a collection and return its async handler.

        :raises CollectionAlreadyExists: If the collection exists
        """
        collection = await self._run(self.store.collection_create, name, codec)
        return AsyncCollection(collection.name, self, collection.codec)

    async def collection_allocate(self, name):
        # type: (str) -> None
        await self._run(self.store.collection_allocate, name)

    async def collection_size(self, name):
        # type: (str) -> int
        return await self._run(self.store.collection_size, name)

    async def collection_clear(self, name):
        # type: (str) -> None
        await self._run(self.store.collection_clear, name)

    async def collections_available(self):
        # type: () -> list[str]
        return await self._run(self.store.collections_available)

    async def fetch(self, name, key, codec=None):
        # type: (str, str, DocumentCodec | None) -> Any | None
        return await self._run(self.store.fetch, name, key, codec=codec)

    async def delete(self, name, key, codec=None):
        # type: (str, str, DocumentCodec | None) -> Any | None
        return await self._run(self.store.delete, name, key, codec=codec)

    async def upsert(self, name, key, modifier, codec=None):
        # type: (str, str, Callable[[Any | None], Any], DocumentCodec | None) -> UpsertState
        """
        Atomic upsert, see LmdbStore.upsert.

        ``modifier`` runs on the worker thread inside the write transaction and
        must be a plain (non-async) function.

        :raises RuntimeError: If called while the current task consumes a stream
        """
        return await self._run(self.store.upsert, name, key, modifier, codec=codec)

    async def upsert_overwrite(self, name, key, document, codec=None):
        # type: (str, str, Any, DocumentCodec | None) -> UpsertState
        return await self._run(self.store.upsert_overwrite, name, key, document, codec=codec)

    async def collect(self, name, key_filter=None, value_filter=None, codec=None):
        # type: (str, Callable[[str], bool] | None, Callable[[Any], bool] | None, DocumentCodec | None) -> list
        return await self._run(self.store.collect, name, key_filter, value_filter, codec=codec)

    async def stream(self, name, key_filter=None, codec=None):
        # type: (str, Callable[[str], bool] | None, DocumentCodec | None) -> AsyncIterator[Any]
        """
        Lazily yield the documents of a collection.

        The underlying scope closes when the generator is exhausted, fails or
        is closed. Use ``contextlib.aclosing`` when breaking out early.
        """
        loop = asyncio.get_running_loop()
        outer = _stream_executor.get()
        executor = outer or ThreadPoolExecutor(max_workers=1, thread_name_prefix="lmdb-docstore-stream")
        # Async generators run in the context of the consuming task
        _stream_executor.set(executor)
        try:
            scope = self.store.stream(name, key_filter, codec)
            documents = await loop.run_in_executor(executor, scope.__enter__)
            try:
                while True:
                    document = await loop.run_in_executor(executor, next, documents, _END)
                    if document is _END:
                        break
                    yield document
            finally:
                await asyncio.shield(loop.run_in_executor(executor, scope.__exit__, None, None, None))
        finally:
            # Plain set instead of token reset, finalization may run in another context
            _stream_executor.set(outer)
            if outer is None:
                executor.shutdown(wait=False)

    async def platform_check(self):
        # type: () -> None
        await self._run(self.store.platform_check)

    async def close(self):
        # type: () -> None
        await self._run(self.store.close)

    async def __aenter__(self):
        # type: () -> AsyncLmdbStore
        return self

    async def __aexit__(self, exc_type, exc_value, traceback):
        await self.close()

    async def _run(self, func, *args, **kwargs):
        # type: (Callable, *Any, **Any) -> Any
        """Run a blocking store call on the executor, waiting for it to finish even if cancelled."""
        loop = asyncio.get_running_loop()
        executor = _stream_executor.get() or self._executor
        future = loop.run_in_executor(executor, functools.partial(func, *args, **kwargs))
        try:
            return await asyncio.shield(future)
        except asyncio.CancelledError:
            await asyncio.wait([future])
            if not future.cancelled():
                future.exception()  # Mark retrieved, the cancellation takes precedence
            raise


class AsyncCollection:
    """Async handler bound to one collection and codec."""

    def __init__(self, name, store, codec):
        # type: (str, AsyncLmdbStore, DocumentCodec) -> None
        self.name = name
        self.store = store
        self.codec = codec

    async def exists(self):
        # type: () -> bool
        return await self.store.collection_exists(self.name)

    async def size(self):
        # type: () -> int
        return await self.store.collection_size(self.name)

    async def clear(self):
        # type: () -> None
        await self.store.collection_clear(self.name)

    async def fetch(self, key):
        # type: (str) -> Any | None
        return await self.store.fetch(self.name, key, codec=self.codec)

    async def upsert(self, key, modifier):
        # type: (str, Callable[[Any | None], Any]) -> UpsertState
        return await self.store.upsert(self.name, key, modifier, codec=self.codec)

    async def upsert_overwrite(self, key, document):
        # type: (str, Any) -> UpsertState
        return await self.store.upsert_overwrite(self.name, key, document, codec=self.codec)

    async def delete(self, key):
        # type: (str) -> Any | None
        return await self.store.delete(self.name, key, codec=self.codec)

    async def collect(self, key_filter=None, value_filter=None):
        # type: (Callable[[str], bool] | None, Callable[[Any], bool] | None) -> list
        return await self.store.collect(self.name, key_filter, value_filter, codec=self.codec)

    def stream(self, key_filter=None):
        # type: (Callable[[str], bool] | None) -> AsyncIterator[Any]
        return self.store.stream(self.name, key_filter, codec=self.codec)

    def __repr__(self):
        # type: () -> str
        return f"AsyncCollection(name={self.name!r}, codec={self.codec!r})"
