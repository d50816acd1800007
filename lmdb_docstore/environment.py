"""
LMDB environment with collection registry and scoped transactions.

An Environment owns:
- the LMDB environment, opened with ``lock=False`` (LMDB's own locking disabled)
- a ReentrantRWLock enforcing single-writer/multi-reader access
- the registry of opened collection handles (one handle per name, opened lazily)

CONCURRENCY: Opening a named database must not run while another thread holds
a read transaction with a live cursor, so handle creation always takes the
write lock and streaming cursors take the read lock. Point reads only take the
lock when the collection handle is not open yet. Write transactions always run
under the write lock.
"""

import os
import secrets
from pathlib import Path
from contextlib import contextmanager

import lmdb
from loguru import logger

from lmdb_docstore.config import LmdbConfig
from lmdb_docstore.errors import CollectionAlreadyExists, CollectionNotFound, InternalError, internal_errors
from lmdb_docstore.lock import ReentrantRWLock


__all__ = ["Environment"]


PLATFORM_CHECK_DB = b"__platform_check__"


class Environment:
    """
    Shared LMDB environment with lazily opened collection handles.

    Collection handles live as long as the environment; there is no per
    collection close. Thread-safe; one instance is meant to be shared by all
    store operations of a process.
    """

    DEFAULT_LMDB_OPTIONS = {
        "readonly": False,
        "mode": 0o644,  # Data file permissions, the directory is created beforehand
        "create": True,  # Create directory if missing
        "readahead": False,  # Better for random access pattern
        "writemap": False,  # Safer, prevents corruption from bad writes
        "meminit": True,  # Security: zero-initialize buffers
        "map_async": False,  # Not applicable without writemap
        "max_spare_txns": 1,
    }

    def __init__(self, config=None, lmdb_options=None):
        # type: (LmdbConfig | None, dict[str, Any] | None) -> None
        """
        Open the LMDB environment described by config.

        :param config: Environment configuration (defaults loaded from environment variables)
        :param lmdb_options: Optional extra py-lmdb options (merged with defaults)
        :raises InternalError: If the environment cannot be opened
        """
        self.config = config or LmdbConfig()
        self.path = os.fspath(self.config.database_path)

        # Merge user options with defaults
        options = self.DEFAULT_LMDB_OPTIONS.copy()
        if lmdb_options:
            options.update(lmdb_options)

        # Force parameters owned by the config and the locking model
        options["map_size"] = self.config.map_size
        options["max_dbs"] = self.config.max_collections
        options["max_readers"] = self.config.max_readers
        options["sync"] = self.config.file_system_synchronized
        options["metasync"] = self.config.file_system_synchronized
        options["subdir"] = True
        options["lock"] = False  # Locks managed by ReentrantRWLock

        with internal_errors(f"Couldn't open LMDB environment at {self.path}"):
            Path(self.path).mkdir(parents=True, exist_ok=True)
            self.env = lmdb.open(self.path, **options)

        self.lock = ReentrantRWLock()
        self.handles_created = 0
        self._handles = {}  # type: dict[str, lmdb._Database]
        self._max_key_size = self.env.max_key_size()
        self._closed = False
        logger.info(f"Opened LMDB environment at {self.path} (map_size={self.config.map_size:,})")

    # Collection registry

    def resolve(self, name):
        # type: (str) -> lmdb._Database
        """
        Return the handle of an existing collection, opening it on first use.

        :param name: Collection name
        :return: Collection handle valid for the environment lifetime
        :raises CollectionNotFound: If the collection does not exist
        """
        handle = self._handles.get(name)
        if handle is not None:
            return handle
        return self.ensure_open(name)

    def ensure_open(self, name, create=False):
        # type: (str, bool) -> lmdb._Database
        """
        Open (or create) a collection handle under the write lock.

        The registry is checked again once the lock is held so concurrent first
        accesses to the same name open exactly one handle.

        :param name: Collection name
        :param create: Create the collection if it does not exist
        :return: Collection handle
        :raises CollectionNotFound: If create is False and the collection does not exist
        """
        self._validate_name(name)
        with self.lock.write_locked():
            handle = self._handles.get(name)
            if handle is not None:
                return handle

            with internal_errors(f"Couldn't open collection {name}"):
                try:
                    handle = self.env.open_db(name.encode("utf-8"), create=create)
                except lmdb.NotFoundError:
                    raise CollectionNotFound(name) from None

            self._handles[name] = handle
            self.handles_created += 1
            logger.debug(f"Opened handle for collection '{name}' (create={create})")
            return handle

    def exists(self, name):
        # type: (str) -> bool
        """
        Check whether a collection exists.

        :param name: Collection name
        :return: True if opened already or listed by the engine
        """
        if name in self._handles:
            return True
        return name in self.names()

    def allocate(self, name):
        # type: (str) -> None
        """
        Create a new collection.

        :param name: Collection name
        :raises CollectionAlreadyExists: If the collection exists
        """
        with self.lock.write_locked():
            if self.exists(name):
                raise CollectionAlreadyExists(name)
            self.ensure_open(name, create=True)
        logger.debug(f"Created collection '{name}'")

    def names(self):
        # type: () -> list[str]
        """
        List all collections stored in the environment.

        Named databases are the keys of LMDB's main database.

        :return: Collection names in lexicographic byte order
        """
        with self.lock.write_locked():
            with self.read_transaction("__main__") as txn:
                with internal_errors("Couldn't list collections"):
                    return [bytes(key).decode("utf-8") for key in txn.cursor().iternext(keys=True, values=False)]

    def clear(self, name):
        # type: (str) -> None
        """
        Remove all records of a collection, keeping the collection itself.

        :param name: Collection name
        :raises CollectionNotFound: If the collection does not exist
        """
        handle = self.resolve(name)
        with self.write_transaction(name) as txn:
            with internal_errors(f"Couldn't clear {name}"):
                txn.drop(handle, delete=False)
                txn.commit()
        logger.debug(f"Cleared collection '{name}'")

    def entry_count(self, name):
        # type: (str) -> int
        """
        Number of records in a collection.

        :param name: Collection name
        :return: Entry count from engine statistics
        """
        handle = self.resolve(name)
        with self.read_transaction(name) as txn:
            with internal_errors(f"Couldn't get {name} size"):
                return txn.stat(handle)["entries"]

    # Transaction scopes

    @contextmanager
    def read_transaction(self, name):
        # type: (str) -> Iterator[lmdb.Transaction]
        """
        Scoped snapshot read transaction.

        The transaction is closed on every exit path. Close failures are logged
        and never raised.

        :param name: Collection name (for error context)
        """
        with internal_errors(f"Couldn't acquire read transaction on {name}"):
            txn = self.env.begin(write=False)
        try:
            yield txn
        finally:
            self._close_transaction(txn, name)

    @contextmanager
    def write_transaction(self, name):
        # type: (str) -> Iterator[lmdb.Transaction]
        """
        Scoped exclusive write transaction, held under the write lock.

        The body must call ``txn.commit()``. Leaving the scope without commit
        (including on exceptions) aborts every mutation.

        :param name: Collection name (for error context)
        """
        with self.lock.write_locked():
            with internal_errors(f"Couldn't acquire write transaction on {name}"):
                txn = self.env.begin(write=True)
            try:
                yield txn
            finally:
                self._close_transaction(txn, name)

    @contextmanager
    def cursor(self, txn, handle, name):
        # type: (lmdb.Transaction, lmdb._Database, str) -> Iterator[lmdb.Cursor]
        """
        Scoped cursor over a collection within txn.

        :param txn: Open transaction
        :param handle: Collection handle
        :param name: Collection name (for error context)
        """
        with internal_errors(f"Couldn't acquire iterable on {name}"):
            cursor = txn.cursor(handle)
        try:
            yield cursor
        finally:
            try:
                cursor.close()
            except Exception as e:
                logger.warning(f"Couldn't close cursor on {name}: {e}")

    # Environment level

    def max_key_size(self):
        # type: () -> int
        """Maximum key size in bytes supported by the engine."""
        return self._max_key_size

    def info(self):
        # type: () -> dict
        with internal_errors("Couldn't read environment info"):
            return self.env.info()

    def stat(self):
        # type: () -> dict
        with internal_errors("Couldn't read environment stat"):
            return self.env.stat()

    def verify(self, rounds=64):
        # type: (int) -> None
        """
        Self-check of the environment.

        Reads environment info and statistics, then writes random records to a
        scratch database and reads them back within one write transaction. The
        transaction is always aborted so the check leaves no trace.

        :param rounds: Number of random records to round-trip
        :raises InternalError: If any step fails or a record does not read back
        """
        with self.lock.write_locked():
            info = self.info()
            self.stat()
            logger.debug(f"Verifying environment at {self.path} (map_size={info['map_size']:,})")

            with self.write_transaction("__platform_check__") as txn:
                with internal_errors("Platform check failed"):
                    probe_db = self.env.open_db(PLATFORM_CHECK_DB, txn=txn, create=True)
                    records = {secrets.token_bytes(16): secrets.token_bytes(64) for _ in range(rounds)}
                    for key, value in records.items():
                        txn.put(key, value, db=probe_db)
                    for key, value in records.items():
                        if txn.get(key, db=probe_db) != value:
                            raise InternalError("Platform check failed: probe record mismatch")
                    if txn.stat(probe_db)["entries"] != len(records):
                        raise InternalError("Platform check failed: probe record count mismatch")
                # No commit, probe records are discarded

    def close(self):
        # type: () -> None
        """
        Close the environment and drop all collection handles.

        Safe to call multiple times.
        """
        if self._closed:
            return
        with self.lock.write_locked():
            if self._closed:
                return
            self._handles = {}
            self.env.close()
            self._closed = True
        logger.info(f"Closed LMDB environment at {self.path}")

    @property
    def closed(self):
        # type: () -> bool
        return self._closed

    def __enter__(self):
        # type: () -> Environment
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def __del__(self):
        # type: () -> None
        """Ensure environment is closed on object deletion."""
        if hasattr(self, "env"):
            self.env.close()

    # Helper methods

    def _close_transaction(self, txn, name):
        # type: (lmdb.Transaction, str) -> None
        """Abort txn (a no-op after commit), logging instead of raising failures."""
        try:
            txn.abort()
        except Exception as e:
            logger.warning(f"Couldn't close transaction on {name}: {e}")

    @staticmethod
    def _validate_name(name):
        # type: (str) -> None
        if not isinstance(name, str) or not name:
            raise ValueError(f"Collection name must be a non-empty string, got {name!r}")
