import pytest

from proshot.core.exceptions import ParseError
from proshot.pipeline.replies import (
    ProductAnalysis,
    parse_json_reply,
    parse_product_analysis,
    strip_code_fence,
)

RAW = '{"productDescription": "Matte black ceramic mug", "extractedText": "BREW"}'


@pytest.mark.parametrize("reply", [
    RAW,
    f"```json\n{RAW}\n```",
    f"```\n{RAW}\n```",
    f"  ```JSON\n{RAW}\n```  \n",
    f"```json {RAW}```",
])
def test_fenced_and_raw_replies_parse_identically(reply):
    result = parse_json_reply(reply)

    assert result.ok
    assert result.value == parse_json_reply(RAW).value
    assert result.value["extractedText"] == "BREW"


def test_only_one_fence_pair_is_stripped():
    assert strip_code_fence("```json\n```json\n{}\n```\n```") == "```json\n{}\n```"


def test_other_language_fence_is_not_stripped():
    result = parse_json_reply(f"```python\n{RAW}\n```")
    assert not result.ok


@pytest.mark.parametrize("reply, fragment", [
    ("", "empty"),
    ("```json\n```", "empty"),
    ("{not json", "not valid JSON"),
    ("Sure! Here is the JSON you asked for.", "not valid JSON"),
    ("[1, 2]", "JSON object"),
])
def test_malformed_replies_fail(reply, fragment):
    result = parse_json_reply(reply)

    assert not result.ok
    assert result.value is None
    assert fragment in result.error


def test_product_analysis_fields():
    analysis = parse_product_analysis(f"```json\n{RAW}\n```")

    assert analysis == ProductAnalysis(product_description="Matte black ceramic mug", extracted_text="BREW")


def test_product_analysis_ignores_extra_fields():
    analysis = parse_product_analysis('{"productDescription": "Mug", "extractedText": "", "colour": "black"}')
    assert analysis.extracted_text == ""


def test_product_analysis_missing_field_raises_parse_error():
    with pytest.raises(ParseError) as exc_info:
        parse_product_analysis('{"productDescription": "Mug"}')

    assert "extractedText" in exc_info.value.message
    assert exc_info.value.stage == "vision_analysis"


def test_product_analysis_wrong_type_raises_parse_error():
    with pytest.raises(ParseError):
        parse_product_analysis('{"productDescription": 42, "extractedText": ""}')


def test_parse_error_keeps_reply_excerpt():
    with pytest.raises(ParseError) as exc_info:
        parse_product_analysis("x" * 500)

    assert exc_info.value.details["raw_excerpt"] == "x" * 200
