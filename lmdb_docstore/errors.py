"""
Error taxonomy for lmdb-docstore.

Two families of errors are raised by the store:

- StorageUserError: conditions the caller can correct (unknown or duplicate
  collection, oversized key, malformed document).
- StorageSystemError: unexpected failures at the LMDB boundary, always wrapped
  into InternalError with the original exception kept as ``cause``.
"""

from contextlib import contextmanager

import lmdb


__all__ = [
    "StorageError",
    "StorageUserError",
    "StorageSystemError",
    "CollectionNotFound",
    "CollectionAlreadyExists",
    "OverSizedKey",
    "JsonFailure",
    "InternalError",
    "internal_errors",
]


class StorageError(Exception):
    """Base class for all lmdb-docstore errors."""


class StorageUserError(StorageError):
    """Caller-correctable error."""


class StorageSystemError(StorageError):
    """Unexpected failure of the storage engine."""


class CollectionNotFound(StorageUserError, LookupError):
    def __init__(self, name):
        # type: (str) -> None
        self.name = name
        super().__init__(f"Collection '{name}' not found")


class CollectionAlreadyExists(StorageUserError):
    def __init__(self, name):
        # type: (str) -> None
        self.name = name
        super().__init__(f"Collection '{name}' already exists")


class OverSizedKey(StorageUserError, ValueError):
    """Encoded key is longer than the engine's maximum key size."""

    def __init__(self, key, size, limit):
        # type: (str, int, int) -> None
        self.key = key
        self.size = size
        self.limit = limit
        super().__init__(f"Key '{key[:32]}' is {size} bytes, maximum is {limit} bytes")


class JsonFailure(StorageUserError, ValueError):
    """A document could not be encoded or decoded."""


class InternalError(StorageSystemError):
    """
    Wrapped engine failure.

    :param message: What the store was doing, including the collection name
    :param cause: Underlying exception, if any
    """

    def __init__(self, message, cause=None):
        # type: (str, BaseException | None) -> None
        self.message = message
        self.cause = cause
        super().__init__(message if cause is None else f"{message}: {cause}")


@contextmanager
def internal_errors(message):
    # type: (str) -> Iterator[None]
    """
    Convert engine exceptions raised in the block into InternalError.

    StorageError subclasses pass through untouched so user errors raised inside
    the block keep their type.

    :param message: Context for the wrapped error (operation and collection)
    """
    try:
        yield
    except StorageError:
        raise
    except (lmdb.Error, MemoryError, OSError) as e:
        raise InternalError(message, e) from e
