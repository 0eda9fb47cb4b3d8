"""Object codec: pydantic validation, orjson bytes.

Records are plain JSON documents. Nothing in a record names a class or a
callable; the caller's expected type drives reconstruction through a
pydantic ``TypeAdapter``. Supported types are the ones pydantic can
validate: primitives, containers, datetimes, dataclasses, TypedDicts and
pydantic models.
"""
from functools import lru_cache
from typing import Any, Optional

import orjson
from pydantic import PydanticSchemaGenerationError, TypeAdapter

from .exceptions import SerializationError


@lru_cache(maxsize=256)
def adapter(cls: Any) -> TypeAdapter:
    return TypeAdapter(cls)


def dumps(obj: Any) -> bytes:
    """Encode ``obj`` as JSON bytes using the schema of its runtime type.

    Raises:
        SerializationError: If the type has no schema or a value cannot be encoded.
    """
    try:
        document = adapter(type(obj)).dump_python(obj, mode="json")
        return orjson.dumps(document)
    except (PydanticSchemaGenerationError, TypeError, ValueError) as err:
        raise SerializationError(
            f"Cannot serialize {type(obj).__name__}: {err}"
        ) from err


def parse(data: bytes) -> Any:
    """Decode JSON bytes into plain Python data.

    Raises:
        SerializationError: If ``data`` is not a JSON document.
    """
    try:
        return orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise SerializationError(f"Record is not a JSON document: {err}") from err


def restore(document: Any, cls: Optional[type] = None) -> Any:
    """Validate a parsed document into an instance of ``cls``.

    Without ``cls`` the plain JSON data is returned unchanged.

    Raises:
        SerializationError: If the document does not validate as ``cls``.
    """
    if cls is None:
        return document
    try:
        return adapter(cls).validate_python(document)
    except (PydanticSchemaGenerationError, TypeError, ValueError) as err:
        raise SerializationError(
            f"Record does not hold a valid {getattr(cls, '__name__', cls)}: {err}"
        ) from err


def loads(data: bytes, cls: Optional[type] = None) -> Any:
    """Decode bytes produced by ``dumps`` as an instance of ``cls``.

    Raises:
        SerializationError: On malformed data or a document of another shape.
    """
    return restore(parse(data), cls)
