# ============================================================================
# JSON CODEC
# ============================================================================
# STATUS: Core - Payload serialization
# PURPOSE: Encode domain objects to UTF-8 JSON and decode them back
# CREATED: 19 OCT 2026
# ============================================================================
"""
JSON Codec

Wraps a pydantic TypeAdapter so any type pydantic understands (BaseModel,
dataclass, TypedDict, dict, list, primitives) can travel as a message body.

    codec = JsonCodec(OrderPlaced)
    payload = codec.encode(OrderPlaced(order_id="o-1"))
    order = codec.decode(payload)
"""

from typing import Any, Generic, Type, TypeVar, Union

from pydantic import TypeAdapter, ValidationError
from pydantic_core import PydanticSerializationError

from busbridge.core.errors import SerializationError

T = TypeVar("T")


class JsonCodec(Generic[T]):
    """Encode/decode values of a single type as JSON bytes."""

    def __init__(self, data_type: Union[Type[T], Any] = Any):
        self.data_type = data_type
        self._adapter: TypeAdapter = TypeAdapter(data_type)

    def encode(self, data: T) -> bytes:
        try:
            return self._adapter.dump_json(data)
        except (PydanticSerializationError, TypeError, ValueError) as e:
            raise SerializationError(
                f"Cannot encode {type(data).__name__} as JSON: {e}"
            ) from e

    def decode(self, payload: Union[bytes, str]) -> T:
        try:
            return self._adapter.validate_json(payload)
        except ValidationError as e:
            raise SerializationError(
                f"Cannot decode payload as {self.type_name}: "
                f"{e.error_count()} validation error(s)"
            ) from e

    @property
    def type_name(self) -> str:
        return getattr(self.data_type, "__name__", str(self.data_type))


__all__ = ["JsonCodec"]
