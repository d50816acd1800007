"""Tests for the error taxonomy."""

import lmdb
import pytest

from lmdb_docstore.errors import (
    CollectionAlreadyExists,
    CollectionNotFound,
    InternalError,
    JsonFailure,
    OverSizedKey,
    StorageSystemError,
    StorageUserError,
    internal_errors,
)


@pytest.mark.parametrize(
    "error",
    [CollectionNotFound("c"), CollectionAlreadyExists("c"), OverSizedKey("k", 600, 511), JsonFailure("bad")],
)
def test_user_errors(error):
    # type: (Exception) -> None
    assert isinstance(error, StorageUserError)
    assert not isinstance(error, StorageSystemError)


def test_internal_error_keeps_cause():
    # type: () -> None
    cause = lmdb.MapFullError("full")
    error = InternalError("Couldn't put k into c", cause)

    assert isinstance(error, StorageSystemError)
    assert error.cause is cause
    assert error.message == "Couldn't put k into c"
    assert str(error).startswith("Couldn't put k into c: ")


def test_internal_errors_wraps_engine_failures():
    # type: () -> None
    with pytest.raises(InternalError) as exc_info:
        with internal_errors("Couldn't read c"):
            raise lmdb.ReadersFullError("readers full")

    assert isinstance(exc_info.value.cause, lmdb.ReadersFullError)
    assert exc_info.value.__cause__ is exc_info.value.cause


def test_internal_errors_passes_storage_errors():
    # type: () -> None
    with pytest.raises(CollectionNotFound):
        with internal_errors("Couldn't read c"):
            raise CollectionNotFound("c")


def test_internal_errors_ignores_programming_errors():
    # type: () -> None
    """Test errors outside the engine boundary keep their type."""
    with pytest.raises(KeyError):
        with internal_errors("Couldn't read c"):
            raise KeyError("x")


def test_oversized_key_message_truncates_key():
    # type: () -> None
    error = OverSizedKey("k" * 600, 600, 511)
    assert "k" * 33 not in str(error)
    assert "600 bytes" in str(error)
