"""Field value codecs.

Each codec converts between the value a caller works with and the value
stored in a column. ``decode(encode(x)) == x`` holds for well-formed input:

- JsonCodec: JSON-native values <-> JSON text
- DelimitedListCodec: list of strings <-> comma-delimited text
- BooleanCodec: bool <-> 0/1
"""

import json
import logging
from typing import Any, Protocol

from contentforge.schema.types import Collection

logger = logging.getLogger(__name__)

_TRUE_STRINGS = {"1", "true", "yes", "on"}


class FieldCodec(Protocol):
    name: str

    def encode(self, value: Any) -> Any: ...

    def decode(self, value: Any) -> Any: ...


class JsonCodec:
    name = "json"

    def encode(self, value: Any) -> Any:
        # Strings are treated as already-encoded JSON text
        if value is None or isinstance(value, str):
            return value
        return json.dumps(value)

    def decode(self, value: Any) -> Any:
        if not isinstance(value, str):
            return value
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            logger.debug("Leaving malformed JSON value undecoded: %r", value)
            return value


class DelimitedListCodec:
    """Comma-delimited list.

    Values containing the delimiter are split apart on decode.
    """

    name = "array"
    delimiter = ","

    def encode(self, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return self.delimiter.join(str(v) for v in value)
        return value

    def decode(self, value: Any) -> Any:
        if isinstance(value, (list, tuple)):
            return list(value)
        if value is None or value is False or value == "":
            return []
        return str(value).split(self.delimiter)


class BooleanCodec:
    name = "boolean"

    def _to_bool(self, value: Any) -> bool:
        if isinstance(value, str):
            return value.strip().lower() in _TRUE_STRINGS
        return bool(value)

    def encode(self, value: Any) -> Any:
        if value is None:
            return None
        return 1 if self._to_bool(value) else 0

    def decode(self, value: Any) -> Any:
        if value is None:
            return None
        return self._to_bool(value)


CODECS: dict[str, FieldCodec] = {
    "json": JsonCodec(),
    "array": DelimitedListCodec(),
    "boolean": BooleanCodec(),
}


def get_codec(name: str) -> FieldCodec:
    """Get a codec by name.

    Raises:
        KeyError: If no codec is registered under the name
    """
    return CODECS[name]


def _convert(collection: Collection, data: dict[str, Any], decode: bool) -> dict[str, Any]:
    result = dict(data)
    for field in collection.get_fields(list(data.keys())):
        if field.codec is None:
            continue
        codec = CODECS[field.codec]
        value = result[field.name]
        result[field.name] = codec.decode(value) if decode else codec.encode(value)
    return result


def encode_record(collection: Collection, data: dict[str, Any]) -> dict[str, Any]:
    """Encode the coded fields present in a record for storage."""
    return _convert(collection, data, decode=False)


def decode_record(collection: Collection, row: dict[str, Any]) -> dict[str, Any]:
    """Decode the coded fields present in a stored row."""
    return _convert(collection, row, decode=True)
