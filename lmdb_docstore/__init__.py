"""Concurrency-safe typed document collections on top of LMDB."""

from platformdirs import PlatformDirs
from importlib import metadata

__package_name__ = "lmdb-docstore"
__author__ = "lmdb-docstore"
__version__ = metadata.version(__package_name__)
dirs = PlatformDirs(appname=__package_name__, appauthor=__author__)

from lmdb_docstore.errors import (  # noqa: E402
    StorageError,
    StorageUserError,
    StorageSystemError,
    CollectionNotFound,
    CollectionAlreadyExists,
    OverSizedKey,
    JsonFailure,
    InternalError,
)
from lmdb_docstore.config import LmdbConfig  # noqa: E402
from lmdb_docstore.codecs import JsonCodec, ModelCodec  # noqa: E402
from lmdb_docstore.environment import Environment  # noqa: E402
from lmdb_docstore.store import LmdbStore, Collection, UpsertState  # noqa: E402
from lmdb_docstore.aio import AsyncLmdbStore, AsyncCollection  # noqa: E402

__all__ = [
    "LmdbConfig",
    "Environment",
    "LmdbStore",
    "AsyncLmdbStore",
    "AsyncCollection",
    "Collection",
    "UpsertState",
    "JsonCodec",
    "ModelCodec",
    "StorageError",
    "StorageUserError",
    "StorageSystemError",
    "CollectionNotFound",
    "CollectionAlreadyExists",
    "OverSizedKey",
    "JsonFailure",
    "InternalError",
]
