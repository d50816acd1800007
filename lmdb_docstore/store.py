"""
Document store operations on LMDB collections.

LmdbStore exposes named collections of JSON documents addressed by string keys:
- fetch / delete / upsert / upsert_overwrite for single records
- collect for small bounded scans (everything is loaded in memory)
- stream for lazy scans holding a read transaction and cursor for a scope

Every operation resolves the collection handle through the Environment registry
first, then runs inside a scoped read or write transaction. Write operations
run under the environment write lock so read, modify and write of an upsert
happen in one exclusive transaction.
"""

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from loguru import logger

from lmdb_docstore.codecs import JsonCodec, decode_key, encode_key
from lmdb_docstore.config import LmdbConfig
from lmdb_docstore.environment import Environment
from lmdb_docstore.errors import CollectionNotFound, InternalError, JsonFailure, internal_errors


__all__ = [
    "LmdbStore",
    "Collection",
    "DocumentStream",
    "UpsertState",
]


T = TypeVar("T")


@dataclass(frozen=True)
class UpsertState(Generic[T]):
    """Document before (None if the key was unset) and after an upsert."""

    previous: Optional[T]
    current: T


class DocumentStream:
    """
    Lazy single-pass iterator over the decoded documents of a collection.

    Only valid inside the ``LmdbStore.stream`` scope that created it. A record
    that fails to decode raises JsonFailure and ends the stream.
    """

    def __init__(self, name, cursor, codec, key_filter=None):
        # type: (str, lmdb.Cursor, DocumentCodec, Callable[[str], bool] | None) -> None
        self.name = name
        self._records = cursor.iternext(keys=True, values=True)
        self._codec = codec
        self._key_filter = key_filter
        self._closed = False
        self._done = False

    def __iter__(self):
        # type: () -> DocumentStream
        return self

    def __next__(self):
        # type: () -> Any
        if self._closed:
            raise InternalError(f"Stream on {self.name} used outside of its scope")
        if self._done:
            raise StopIteration

        while True:
            with internal_errors(f"Couldn't stream from {self.name}"):
                record = next(self._records, None)
            if record is None:
                self._done = True
                raise StopIteration

            key_bytes, raw = record
            try:
                key = decode_key(key_bytes)
                if self._key_filter is not None and not self._key_filter(key):
                    continue
                return self._codec.decode(raw)
            except JsonFailure:
                self._done = True
                raise

    def close(self):
        # type: () -> None
        self._closed = True


class LmdbStore:
    """
    Typed document store over a shared Environment.

    Documents are encoded with the store codec (JsonCodec by default). Each
    operation accepts a ``codec`` argument to read or write typed documents,
    e.g. ``ModelCodec(MyModel)``.

    Thread-safe: share one LmdbStore (or one Environment) across threads.
    """

    def __init__(self, environment, codec=None):
        # type: (Environment | LmdbConfig, DocumentCodec | None) -> None
        """
        Create store on an environment.

        :param environment: Open Environment, or LmdbConfig to open one owned by the store
        :param codec: Default document codec (JsonCodec if None)
        """
        if isinstance(environment, LmdbConfig):
            self.environment = Environment(environment)
            self._owns_environment = True
        else:
            self.environment = environment
            self._owns_environment = False
        self.codec = codec or JsonCodec()

    # Collections

    def collection_exists(self, name):
        # type: (str) -> bool
        return self.environment.exists(name)

    def collection_get(self, name, codec=None):
        # type: (str, DocumentCodec | None) -> Collection
        """
        Get a handler for an existing collection.

        :param name: Collection name
        :param codec: Codec bound to the handler (store codec if None)
        :raises CollectionNotFound: If the collection does not exist
        """
        if not self.collection_exists(name):
            raise CollectionNotFound(name)
        return Collection(name, self, codec or self.codec)

    def collection_create(self, name, codec=None):
        # type: (str, DocumentCodec | None) -> Collection
        """
        Create a collection and return its handler.

        :param name: Collection name
        :param codec: Codec bound to the handler (store codec if None)
        :raises CollectionAlreadyExists: If the collection exists
        """
        self.collection_allocate(name)
        return Collection(name, self, codec or self.codec)

    def collection_allocate(self, name):
        # type: (str) -> None
        """
        Create a collection.

        :param name: Collection name
        :raises CollectionAlreadyExists: If the collection exists
        """
        self.environment.allocate(name)

    def collection_size(self, name):
        # type: (str) -> int
        """
        Number of documents in a collection.

        :raises CollectionNotFound: If the collection does not exist
        """
        return self.environment.entry_count(name)

    def collection_clear(self, name):
        # type: (str) -> None
        """
        Remove all documents of a collection. The collection itself remains.

        :raises CollectionNotFound: If the collection does not exist
        """
        self.environment.clear(name)

    def collections_available(self):
        # type: () -> list[str]
        return self.environment.names()

    # Documents

    def fetch(self, name, key, codec=None):
        # type: (str, str, DocumentCodec | None) -> Any | None
        """
        Get a document by key.

        :param name: Collection name
        :param key: Record key
        :param codec: Document codec (store codec if None)
        :return: Decoded document or None if the key is unset
        :raises CollectionNotFound: If the collection does not exist
        :raises OverSizedKey: If the key exceeds the engine key size
        :raises JsonFailure: If the stored document cannot be decoded
        """
        codec = codec or self.codec
        handle = self.environment.resolve(name)
        key_bytes = self._encode_key(key)
        with self.environment.read_transaction(name) as txn:
            with internal_errors(f"Couldn't fetch {key} on {name}"):
                raw = txn.get(key_bytes, db=handle)
        if raw is None:
            return None
        return codec.decode(raw)

    def delete(self, name, key, codec=None):
        # type: (str, str, DocumentCodec | None) -> Any | None
        """
        Delete a document by key.

        :param name: Collection name
        :param key: Record key
        :param codec: Document codec (store codec if None)
        :return: The deleted document or None if the key was unset
        """
        codec = codec or self.codec
        handle = self.environment.resolve(name)
        key_bytes = self._encode_key(key)
        with self.environment.write_transaction(name) as txn:
            with internal_errors(f"Couldn't fetch {key} for delete on {name}"):
                raw = txn.get(key_bytes, db=handle)
            if raw is None:
                return None
            document = codec.decode(raw)
            with internal_errors(f"Couldn't delete {key} from {name}"):
                txn.delete(key_bytes, db=handle)
            with internal_errors(f"Couldn't commit delete of {key} from {name}"):
                txn.commit()
        return document

    def upsert(self, name, key, modifier, codec=None):
        # type: (str, str, Callable[[Any | None], Any], DocumentCodec | None) -> UpsertState
        """
        Atomically insert or update a document.

        The current document (None if unset) is passed to ``modifier`` and its
        result is written back, all within one write transaction. No other
        writer can interleave, so increment-like modifiers never lose updates.
        If ``modifier`` raises, nothing is written and the exception propagates.

        :param name: Collection name
        :param key: Record key
        :param modifier: Pure function computing the new document from the previous one
        :param codec: Document codec (store codec if None)
        :return: UpsertState with previous and current documents
        :raises CollectionNotFound: If the collection does not exist
        :raises OverSizedKey: If the key exceeds the engine key size
        :raises JsonFailure: If the stored or new document cannot be (de)serialized
        """
        codec = codec or self.codec
        handle = self.environment.resolve(name)
        key_bytes = self._encode_key(key)
        with self.environment.write_transaction(name) as txn:
            with internal_errors(f"Couldn't fetch {key} for upsert on {name}"):
                raw = txn.get(key_bytes, db=handle)
            previous = None if raw is None else codec.decode(raw)
            current = modifier(previous)
            value = codec.encode(current)
            with internal_errors(f"Couldn't upsert {key} into {name}"):
                txn.put(key_bytes, value, db=handle)
            with internal_errors(f"Couldn't commit upsert of {key} into {name}"):
                txn.commit()
        return UpsertState(previous=previous, current=current)

    def upsert_overwrite(self, name, key, document, codec=None):
        # type: (str, str, Any, DocumentCodec | None) -> UpsertState
        """Insert or replace a document, ignoring the previous value."""
        return self.upsert(name, key, lambda _: document, codec=codec)

    def collect(self, name, key_filter=None, value_filter=None, codec=None):
        # type: (str, Callable[[str], bool] | None, Callable[[Any], bool] | None, DocumentCodec | None) -> list
        """
        Load matching documents of a collection in memory.

        Only suitable for small collections, use ``stream`` for large ones.
        ``key_filter`` runs before decoding, ``value_filter`` after. Records
        that fail to decode are skipped.

        :param name: Collection name
        :param key_filter: Keep records whose key satisfies the predicate
        :param value_filter: Keep documents satisfying the predicate
        :param codec: Document codec (store codec if None)
        :return: List of documents in key order
        """
        codec = codec or self.codec
        handle = self.environment.resolve(name)
        documents = []
        with self.environment.read_transaction(name) as txn:
            with self.environment.cursor(txn, handle, name) as cursor:
                records = cursor.iternext(keys=True, values=True)
                while True:
                    with internal_errors(f"Couldn't collect documents stored in {name}"):
                        record = next(records, None)
                    if record is None:
                        break
                    key_bytes, raw = record
                    try:
                        key = decode_key(key_bytes)
                        if key_filter is not None and not key_filter(key):
                            continue
                        document = codec.decode(raw)
                    except JsonFailure as e:
                        logger.debug(f"Skipping undecodable record in {name}: {e}")
                        continue
                    if value_filter is None or value_filter(document):
                        documents.append(document)
        return documents

    @contextmanager
    def stream(self, name, key_filter=None, codec=None):
        # type: (str, Callable[[str], bool] | None, DocumentCodec | None) -> Iterator[DocumentStream]
        """
        Scope yielding a lazy iterator over the documents of a collection.

        The read lock, read transaction and cursor are held until the scope
        exits. Using the iterator after that raises InternalError.

        Example:
            with store.stream("users", key_filter=lambda k: k.startswith("a")) as users:
                for user in users:
                    ...

        :param name: Collection name
        :param key_filter: Keep records whose key satisfies the predicate
        :param codec: Document codec (store codec if None)
        """
        codec = codec or self.codec
        handle = self.environment.resolve(name)
        with self.environment.lock.read_locked():
            with self.environment.read_transaction(name) as txn:
                with self.environment.cursor(txn, handle, name) as cursor:
                    documents = DocumentStream(name, cursor, codec, key_filter)
                    try:
                        yield documents
                    finally:
                        documents.close()

    # Environment

    def platform_check(self):
        # type: () -> None
        """
        Verify that the environment is readable and writable.

        :raises InternalError: If the check fails
        """
        self.environment.verify()

    def close(self):
        # type: () -> None
        """Close the environment if it was opened by this store."""
        if self._owns_environment:
            self.environment.close()

    def __enter__(self):
        # type: () -> LmdbStore
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def _encode_key(self, key):
        # type: (str) -> bytes
        return encode_key(key, self.environment.max_key_size())


class Collection:
    """
    Handler bound to one collection and codec.

    Saves repeating the collection name and codec on every store call.
    """

    def __init__(self, name, store, codec):
        # type: (str, LmdbStore, DocumentCodec) -> None
        self.name = name
        self.store = store
        self.codec = codec

    def exists(self):
        # type: () -> bool
        return self.store.collection_exists(self.name)

    def size(self):
        # type: () -> int
        return self.store.collection_size(self.name)

    def clear(self):
        # type: () -> None
        self.store.collection_clear(self.name)

    def fetch(self, key):
        # type: (str) -> Any | None
        return self.store.fetch(self.name, key, codec=self.codec)

    def upsert(self, key, modifier):
        # type: (str, Callable[[Any | None], Any]) -> UpsertState
        return self.store.upsert(self.name, key, modifier, codec=self.codec)

    def upsert_overwrite(self, key, document):
        # type: (str, Any) -> UpsertState
        return self.store.upsert_overwrite(self.name, key, document, codec=self.codec)

    def delete(self, key):
        # type: (str) -> Any | None
        return self.store.delete(self.name, key, codec=self.codec)

    def collect(self, key_filter=None, value_filter=None):
        # type: (Callable[[str], bool] | None, Callable[[Any], bool] | None) -> list
        return self.store.collect(self.name, key_filter, value_filter, codec=self.codec)

    def stream(self, key_filter=None):
        # type: (Callable[[str], bool] | None) -> ContextManager[DocumentStream]
        return self.store.stream(self.name, key_filter, codec=self.codec)

    def __repr__(self):
        # type: () -> str
        return f"Collection(name={self.name!r}, codec={self.codec!r})"
