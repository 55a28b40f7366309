"""
Structured Value Codec

Inference endpoints exchange dynamically typed values. Inside the client
those values are held as an explicit tagged union (``StructuredValue``);
callers only ever see plain Python values.

    native  --to_structured-->  StructuredValue  --to_wire-->  JSON
    native  <-from_structured-- StructuredValue  <-from_wire-- JSON
"""

import math
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Mapping, Union

from pydantic import BaseModel, ConfigDict, Field


class _Value(BaseModel):
    model_config = ConfigDict(frozen=True)


class NullValue(_Value):
    kind: Literal["null"] = "null"


class BoolValue(_Value):
    kind: Literal["bool"] = "bool"
    value: bool


class NumberValue(_Value):
    kind: Literal["number"] = "number"
    value: Union[int, float]


class StringValue(_Value):
    kind: Literal["string"] = "string"
    value: str


class ListValue(_Value):
    kind: Literal["list"] = "list"
    items: List["StructuredValue"] = Field(default_factory=list)


class StructValue(_Value):
    kind: Literal["struct"] = "struct"
    entries: Dict[str, "StructuredValue"] = Field(default_factory=dict)


StructuredValue = Annotated[
    Union[NullValue, BoolValue, NumberValue, StringValue, ListValue, StructValue],
    Field(discriminator="kind"),
]

ListValue.model_rebuild()
StructValue.model_rebuild()


def _number(value: Union[int, float]) -> NumberValue:
    if isinstance(value, float) and not math.isfinite(value):
        raise ValueError(f"Non-finite number cannot be encoded: {value}")
    return NumberValue(value=value)


def to_structured(value: Any) -> StructuredValue:
    """
    Encode a native value.

    Accepts None, bool, int, float, str, Enum, pydantic models, mappings with
    string keys and lists/tuples of the above.

    Raises:
        TypeError: for unsupported types or non-string mapping keys
        ValueError: for NaN or infinite floats
    """
    if value is None:
        return NullValue()
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return BoolValue(value=value)
    if isinstance(value, Enum):
        return to_structured(value.value)
    if isinstance(value, (int, float)):
        return _number(value)
    if isinstance(value, str):
        return StringValue(value=value)
    if isinstance(value, BaseModel):
        return to_structured(value.model_dump(by_alias=True, exclude_none=True))
    if isinstance(value, Mapping):
        fields = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"Struct keys must be strings, got {type(key).__name__}")
            fields[key] = to_structured(item)
        return StructValue(entries=fields)
    if isinstance(value, (list, tuple)):
        return ListValue(items=[to_structured(item) for item in value])
    raise TypeError(f"Cannot encode {type(value).__name__} as a structured value")


def from_structured(value: StructuredValue) -> Any:
    """Decode to plain Python values (dict, list, str, int/float, bool, None)."""
    if isinstance(value, NullValue):
        return None
    if isinstance(value, (BoolValue, NumberValue, StringValue)):
        return value.value
    if isinstance(value, ListValue):
        return [from_structured(item) for item in value.items]
    if isinstance(value, StructValue):
        return {key: from_structured(item) for key, item in value.entries.items()}
    raise TypeError(f"Unknown structured value: {value!r}")


def to_wire(value: StructuredValue) -> Any:
    """JSON-serialisable form sent to an endpoint."""
    if isinstance(value, NullValue):
        return None
    if isinstance(value, (BoolValue, NumberValue, StringValue)):
        return value.value
    if isinstance(value, ListValue):
        return [to_wire(item) for item in value.items]
    if isinstance(value, StructValue):
        return {key: to_wire(item) for key, item in value.entries.items()}
    raise TypeError(f"Unknown structured value: {value!r}")


def from_wire(payload: Any) -> StructuredValue:
    """
    Parse a decoded JSON document received from an endpoint.

    Raises:
        TypeError: if the payload holds anything JSON cannot represent
    """
    if payload is None:
        return NullValue()
    if isinstance(payload, bool):
        return BoolValue(value=payload)
    if isinstance(payload, (int, float)):
        return _number(payload)
    if isinstance(payload, str):
        return StringValue(value=payload)
    if isinstance(payload, list):
        return ListValue(items=[from_wire(item) for item in payload])
    if isinstance(payload, dict):
        return StructValue(entries={str(key): from_wire(item) for key, item in payload.items()})
    raise TypeError(f"Unexpected wire type {type(payload).__name__}")


def encode(value: Any) -> Any:
    """Native value straight to its wire form."""
    return to_wire(to_structured(value))


def decode(payload: Any) -> Any:
    """Wire form straight to native values."""
    return from_structured(from_wire(payload))
