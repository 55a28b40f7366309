"""
Model Reply Parsing

Vision models are asked for a bare JSON object but often wrap it in a
Markdown code fence. ``parse_json_reply`` strips at most one fence pair and
returns a typed result instead of raising.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError

from proshot.core.exceptions import ParseError

_FENCE = re.compile(r"^```(?:json)?(?![A-Za-z])[ \t]*\r?\n?(?P<body>.*?)\r?\n?[ \t]*```$", re.DOTALL | re.IGNORECASE)


@dataclass(frozen=True)
class ReplyParseResult:
    """Either a parsed JSON object or the reason parsing failed."""
    value: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def strip_code_fence(text: str) -> str:
    """Remove one surrounding ```json or ``` fence, if present."""
    stripped = text.strip()
    match = _FENCE.match(stripped)
    if match:
        return match.group("body").strip()
    return stripped


def parse_json_reply(text: str) -> ReplyParseResult:
    """Parse a model reply that should hold a single JSON object."""
    body = strip_code_fence(text)
    if not body:
        return ReplyParseResult(error="Reply is empty")

    try:
        value = json.loads(body)
    except json.JSONDecodeError as e:
        return ReplyParseResult(error=f"Reply is not valid JSON: {e.msg} at position {e.pos}")

    if not isinstance(value, dict):
        return ReplyParseResult(error=f"Expected a JSON object, got {type(value).__name__}")

    return ReplyParseResult(value=value)


class ProductAnalysis(BaseModel):
    """What the vision stage reports about the product."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    product_description: StrictStr = Field(alias="productDescription")
    extracted_text: StrictStr = Field(alias="extractedText")


def parse_product_analysis(text: str) -> ProductAnalysis:
    """
    Parse the vision reply into a ``ProductAnalysis``.

    Raises:
        ParseError: if the reply is not a JSON object with both string fields
    """
    result = parse_json_reply(text)
    if not result.ok:
        raise ParseError(f"Vision analysis reply could not be parsed: {result.error}", raw_excerpt=text)

    try:
        return ProductAnalysis.model_validate(result.value)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise ParseError(f"Vision analysis reply has invalid fields: {fields}", raw_excerpt=text)
