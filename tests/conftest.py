"""Test fixtures for lmdb-docstore."""

import pytest

from lmdb_docstore.config import LmdbConfig
from lmdb_docstore.environment import Environment
from lmdb_docstore.store import LmdbStore


@pytest.fixture
def config(tmp_path):
    # type: (Path) -> LmdbConfig
    """Small non-durable environment config in a temporary directory."""
    return LmdbConfig(
        database_path=tmp_path / "db",
        map_size=32 * 1024 * 1024,
        max_collections=64,
        max_readers=32,
        file_system_synchronized=False,
    )


@pytest.fixture
def environment(config):
    # type: (LmdbConfig) -> Environment
    """Open Environment, closed after the test."""
    env = Environment(config)
    yield env
    env.close()


@pytest.fixture
def store(environment):
    # type: (Environment) -> LmdbStore
    """LmdbStore on the shared test environment."""
    return LmdbStore(environment)


@pytest.fixture
def abc_store(store):
    # type: (LmdbStore) -> LmdbStore
    """Store with collection 'c' holding {"a1": 1, "a2": 2, "b1": 3}."""
    store.collection_allocate("c")
    for key, value in {"a1": 1, "a2": 2, "b1": 3}.items():
        store.upsert_overwrite("c", key, value)
    return store


@pytest.fixture
def put_raw(environment):
    # type: (Environment) -> Callable[[str, bytes, bytes], None]
    """Write raw bytes to a collection, bypassing the document codec."""

    def put(name, key, value):
        # type: (str, bytes, bytes) -> None
        handle = environment.resolve(name)
        with environment.write_transaction(name) as txn:
            txn.put(key, value, db=handle)
            txn.commit()

    return put
