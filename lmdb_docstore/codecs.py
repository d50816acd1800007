"""
Key and document codecs.

Documents are stored as UTF-8 JSON. Two document codecs are provided:

- JsonCodec: plain JSON values (dict, list, str, int, float, bool, None)
- ModelCodec: typed documents as pydantic models

Any object with ``encode`` and ``decode`` methods satisfying DocumentCodec can be
passed to the store instead.
"""

from typing import Protocol, runtime_checkable

import pydantic
import simdjson

from lmdb_docstore.errors import JsonFailure, OverSizedKey


__all__ = [
    "DocumentCodec",
    "JsonCodec",
    "ModelCodec",
    "encode_key",
    "decode_key",
]


@runtime_checkable
class DocumentCodec(Protocol):
    """
    Protocol for document serialization.

    ``decode`` must raise JsonFailure on malformed input so the store can tell
    a bad record apart from an engine failure.
    """

    def encode(self, document):
        # type: (Any) -> bytes
        ...

    def decode(self, data):
        # type: (bytes) -> Any
        ...


class JsonCodec:
    """Compact JSON codec for plain Python values."""

    def encode(self, document):
        # type: (Any) -> bytes
        try:
            return simdjson.dumps(document, separators=(",", ":")).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise JsonFailure(f"Cannot encode document: {e}") from e

    def decode(self, data):
        # type: (bytes) -> Any
        try:
            return simdjson.loads(bytes(data))
        except ValueError as e:
            raise JsonFailure(f"Cannot decode document: {e}") from e

    def __repr__(self):
        # type: () -> str
        return "JsonCodec()"


class ModelCodec:
    """
    Codec for documents that are instances of a pydantic model.

    Decoding validates the stored JSON against the model, so records written
    with an incompatible schema surface as JsonFailure.

    :param model: pydantic BaseModel subclass
    """

    def __init__(self, model):
        # type: (type[pydantic.BaseModel]) -> None
        self.model = model

    def encode(self, document):
        # type: (pydantic.BaseModel) -> bytes
        if not isinstance(document, self.model):
            raise JsonFailure(f"Expected {self.model.__name__}, got {type(document).__name__}")
        return document.model_dump_json().encode("utf-8")

    def decode(self, data):
        # type: (bytes) -> pydantic.BaseModel
        try:
            return self.model.model_validate_json(bytes(data))
        except pydantic.ValidationError as e:
            raise JsonFailure(f"Cannot decode {self.model.__name__}: {e}") from e

    def __repr__(self):
        # type: () -> str
        return f"ModelCodec({self.model.__name__})"


def encode_key(key, max_key_size):
    # type: (str, int) -> bytes
    """
    Encode a record key to UTF-8 bytes.

    :param key: Record key
    :param max_key_size: Engine key size limit in bytes
    :return: Encoded key
    :raises OverSizedKey: If the encoded key exceeds ``max_key_size``
    """
    key_bytes = key.encode("utf-8")
    if len(key_bytes) > max_key_size:
        raise OverSizedKey(key, len(key_bytes), max_key_size)
    return key_bytes


def decode_key(data):
    # type: (bytes) -> str
    """
    Decode a stored key.

    :raises JsonFailure: If the stored key is not valid UTF-8
    """
    try:
        return bytes(data).decode("utf-8")
    except UnicodeDecodeError as e:
        raise JsonFailure(f"Cannot decode key {bytes(data)!r}: {e}") from e
