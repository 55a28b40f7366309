import math
from enum import Enum
from typing import Optional

import pytest
from pydantic import BaseModel, Field, TypeAdapter

from proshot.engines.inference.codec import (
    BoolValue,
    ListValue,
    NullValue,
    NumberValue,
    StringValue,
    StructuredValue,
    StructValue,
    decode,
    encode,
    from_wire,
    to_structured,
)


class Mode(str, Enum):
    INPAINT = "inpainting"


class Params(BaseModel):
    sample_count: int = Field(alias="sampleCount")
    mode: str = "inpainting"
    seed: Optional[int] = None


def test_bool_is_not_encoded_as_number():
    assert to_structured(True) == BoolValue(value=True)
    assert to_structured(1) == NumberValue(value=1)


def test_nested_instance_encodes_to_tagged_tree():
    value = to_structured({"image": {"bytesBase64Encoded": "QUJD"}, "tags": ["a", None]})

    assert isinstance(value, StructValue)
    image = value.entries["image"]
    assert image.entries["bytesBase64Encoded"] == StringValue(value="QUJD")
    assert value.entries["tags"] == ListValue(items=[StringValue(value="a"), NullValue()])


def test_enum_and_model_use_wire_names():
    wire = encode({"mode": Mode.INPAINT, "params": Params(sampleCount=1)})
    assert wire == {"mode": "inpainting", "params": {"sampleCount": 1, "mode": "inpainting"}}


def test_tuple_encodes_as_list():
    assert encode((1, 2.5)) == [1, 2.5]


@pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
def test_non_finite_numbers_rejected(value):
    with pytest.raises(ValueError):
        to_structured(value)


def test_non_string_keys_rejected():
    with pytest.raises(TypeError):
        to_structured({1: "a"})


def test_unsupported_type_rejected():
    with pytest.raises(TypeError):
        to_structured(object())


def test_from_wire_rejects_non_json_types():
    with pytest.raises(TypeError):
        from_wire({"x": {1, 2}})


def test_decode_prediction_payload():
    payload = {"bytesBase64Encoded": "QUJD", "mimeType": "image/png", "score": 0.9}
    assert decode(payload) == payload


def test_tagged_union_validates_from_kind():
    adapter = TypeAdapter(StructuredValue)
    value = adapter.validate_python(
        {"kind": "list", "items": [{"kind": "number", "value": 3}, {"kind": "null"}]}
    )
    assert value == ListValue(items=[NumberValue(value=3), NullValue()])
