import json

import httpx
import pytest

from proshot.core.exceptions import UpstreamInferenceError
from proshot.engines.inference.client import InferenceClient

BASE_URL = "https://inference.test/v1/models"


def _client(handler, api_key="secret"):
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return InferenceClient(BASE_URL, api_key=api_key, http_client=http_client)


@pytest.mark.asyncio
async def test_predict_request_and_response():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"predictions": [{"bytesBase64Encoded": "QUJD", "score": 1}]})

    async with _client(handler) as client:
        predictions = await client.predict("edit-endpoint", {"prompt": "p", "flags": (True,)}, {"sampleCount": 1})

    assert seen["url"] == f"{BASE_URL}/edit-endpoint:predict"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"] == {"instances": [{"prompt": "p", "flags": [True]}], "parameters": {"sampleCount": 1}}
    assert predictions == [{"bytesBase64Encoded": "QUJD", "score": 1}]


@pytest.mark.asyncio
async def test_missing_predictions_is_empty_list():
    async with _client(lambda request: httpx.Response(200, json={})) as client:
        assert await client.predict("edit-endpoint", {}, {}) == []


@pytest.mark.asyncio
async def test_no_auth_header_without_key():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"predictions": []})

    async with _client(handler, api_key=None) as client:
        await client.predict("edit-endpoint", {}, {})

    assert seen["auth"] is None


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(500, text="internal"),
    httpx.Response(429, json={"error": "quota"}),
    httpx.Response(200, text="<html>"),
    httpx.Response(200, json=["not", "an", "object"]),
    httpx.Response(200, json={"predictions": "nope"}),
])
async def test_bad_responses_raise(response):
    async with _client(lambda request: response) as client:
        with pytest.raises(UpstreamInferenceError) as exc_info:
            await client.predict("edit-endpoint", {}, {})

    assert exc_info.value.details["service"] == "edit-endpoint"


@pytest.mark.asyncio
async def test_http_status_is_kept():
    async with _client(lambda request: httpx.Response(503)) as client:
        with pytest.raises(UpstreamInferenceError) as exc_info:
            await client.predict("edit-endpoint", {}, {})

    assert exc_info.value.details["http_status"] == 503


@pytest.mark.asyncio
async def test_transport_errors_raise():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    async with _client(handler) as client:
        with pytest.raises(UpstreamInferenceError) as exc_info:
            await client.predict("edit-endpoint", {}, {})

    assert "timed out" in exc_info.value.message


@pytest.mark.asyncio
async def test_generate_text_joins_first_candidate():
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"candidates": [
            {"content": {"parts": [{"text": '{"a": '}, {"text": "1}"}]}},
            {"content": {"parts": [{"text": "ignored"}]}},
        ]})

    async with _client(handler) as client:
        reply = await client.generate_text("vision-model", "describe", b"ABC", mime_type="image/jpeg")

    assert reply == '{"a": 1}'
    assert seen["url"] == f"{BASE_URL}/vision-model:generateContent"
    parts = seen["body"]["contents"][0]["parts"]
    assert parts[0] == {"inlineData": {"mimeType": "image/jpeg", "data": "QUJD"}}
    assert parts[1] == {"text": "describe"}


@pytest.mark.asyncio
async def test_generate_text_empty_reply_raises():
    async with _client(lambda request: httpx.Response(200, json={"candidates": []})) as client:
        with pytest.raises(UpstreamInferenceError):
            await client.generate_text("vision-model", "describe", b"ABC")


@pytest.mark.asyncio
async def test_unencodable_instance_raises_before_sending():
    calls = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, json={"predictions": []})

    async with _client(handler) as client:
        with pytest.raises(UpstreamInferenceError) as exc_info:
            await client.predict("edit-endpoint", {"image": object()}, {})

    assert exc_info.value.details["service"] == "edit-endpoint"
    assert calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"candidates": ["text"]},
    {"candidates": [{"content": "text"}]},
    {"candidates": [{"content": {"parts": ["text", 3]}}]},
    {"candidates": {"content": {}}},
])
async def test_generate_text_malformed_candidates_raise(payload):
    async with _client(lambda request: httpx.Response(200, json=payload)) as client:
        with pytest.raises(UpstreamInferenceError) as exc_info:
            await client.generate_text("vision-model", "describe", b"ABC")

    assert exc_info.value.details["service"] == "vision-model"
