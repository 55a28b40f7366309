"""
Inference Client

One request, one response against a remote prediction endpoint. No retry,
no caching. Request bodies are built through the structured value codec and
predictions come back as plain Python values.
"""

import base64
import binascii
from typing import Any, Dict, List, Mapping, Optional

import httpx

from proshot.core.exceptions import UpstreamInferenceError
from proshot.core.logging import get_logger
from proshot.core.metrics import record_inference_call
from proshot.engines.inference.codec import decode, encode

logger = get_logger(__name__)

IMAGE_PAYLOAD_FIELD = "bytesBase64Encoded"


def image_part(image_bytes: bytes) -> Dict[str, str]:
    """Image-bearing value in the shape endpoints expect."""
    return {IMAGE_PAYLOAD_FIELD: base64.b64encode(image_bytes).decode("utf-8")}


def first_image_payload(predictions: List[Any], service: str) -> bytes:
    """
    Decode the image carried by the first prediction.

    Raises:
        UpstreamInferenceError: on zero predictions, a non-map prediction,
            or a missing/empty/undecodable payload field
    """
    if not predictions:
        raise UpstreamInferenceError(
            f"{service} returned no predictions",
            service=service
        )

    prediction = predictions[0]
    if not isinstance(prediction, dict):
        raise UpstreamInferenceError(
            f"{service} returned a prediction without an image payload",
            service=service
        )

    encoded = prediction.get(IMAGE_PAYLOAD_FIELD)
    if not isinstance(encoded, str) or not encoded:
        raise UpstreamInferenceError(
            f"{service} prediction is missing {IMAGE_PAYLOAD_FIELD}",
            service=service
        )

    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError):
        raise UpstreamInferenceError(
            f"{service} returned an undecodable image payload",
            service=service
        )


class InferenceClient:
    """
    Thin async client for prediction and multimodal generation endpoints.

    The underlying ``httpx.AsyncClient`` may be shared across invocations;
    the client itself keeps no per-invocation state.
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 120.0,
        http_client: Optional[httpx.AsyncClient] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def __aenter__(self) -> "InferenceClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    async def aclose(self):
        if self._owns_client:
            await self._http.aclose()

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, url: str, body: Dict[str, Any], service: str) -> Dict[str, Any]:
        try:
            response = await self._http.post(url, json=body, headers=self._headers())
        except httpx.TimeoutException:
            record_inference_call(service, "timeout", 0)
            raise UpstreamInferenceError(f"{service} request timed out", service=service)
        except httpx.HTTPError as e:
            record_inference_call(service, "transport_error", 0)
            raise UpstreamInferenceError(
                f"{service} request failed: {e}",
                service=service
            )

        if response.status_code != 200:
            record_inference_call(service, "error", response.status_code)
            logger.warning(
                "inference_call_failed",
                service=service,
                http_status=response.status_code,
                body=response.text[:500]
            )
            raise UpstreamInferenceError(
                f"{service} returned HTTP {response.status_code}",
                service=service,
                http_status=response.status_code
            )

        try:
            payload = response.json()
        except ValueError:
            record_inference_call(service, "bad_response", response.status_code)
            raise UpstreamInferenceError(
                f"{service} returned a non-JSON response",
                service=service,
                http_status=response.status_code
            )

        if not isinstance(payload, dict):
            record_inference_call(service, "bad_response", response.status_code)
            raise UpstreamInferenceError(
                f"{service} returned an unexpected response shape",
                service=service,
                http_status=response.status_code
            )

        record_inference_call(service, "success", response.status_code)
        return payload

    async def predict(
        self,
        endpoint_id: str,
        instance: Mapping[str, Any],
        parameters: Mapping[str, Any]
    ) -> List[Any]:
        """
        Send one instance to ``endpoint_id`` and return its predictions.

        Returns:
            Ordered list of predictions as plain Python values; empty if the
            endpoint produced none.

        Raises:
            UpstreamInferenceError: on transport errors, non-200 responses
                or malformed bodies
        """
        url = f"{self.base_url}/{endpoint_id}:predict"
        try:
            body = {
                "instances": [encode(instance)],
                "parameters": encode(parameters),
            }
        except (TypeError, ValueError) as e:
            raise UpstreamInferenceError(
                f"{endpoint_id} request could not be encoded: {e}",
                service=endpoint_id
            )

        logger.info("inference_call_started", endpoint=endpoint_id)
        payload = await self._post(url, body, endpoint_id)

        raw_predictions = payload.get("predictions") or []
        if not isinstance(raw_predictions, list):
            raise UpstreamInferenceError(
                f"{endpoint_id} returned predictions that are not a list",
                service=endpoint_id
            )

        try:
            predictions = [decode(item) for item in raw_predictions]
        except (TypeError, ValueError) as e:
            raise UpstreamInferenceError(
                f"{endpoint_id} returned an undecodable prediction: {e}",
                service=endpoint_id
            )

        logger.info(
            "inference_call_completed",
            endpoint=endpoint_id,
            prediction_count=len(predictions)
        )
        return predictions

    async def generate_text(
        self,
        model_id: str,
        prompt: str,
        image_bytes: bytes,
        mime_type: str = "image/png",
        temperature: float = 0.2
    ) -> str:
        """
        Ask a multimodal model about an image and return its text reply.

        Raises:
            UpstreamInferenceError: on transport errors or an empty reply
        """
        url = f"{self.base_url}/{model_id}:generateContent"
        body = {
            "contents": [{
                "role": "user",
                "parts": [
                    {"inlineData": {
                        "mimeType": mime_type,
                        "data": base64.b64encode(image_bytes).decode("utf-8"),
                    }},
                    {"text": prompt},
                ],
            }],
            "generationConfig": {"temperature": temperature},
        }

        logger.info("vision_call_started", model=model_id)
        payload = await self._post(url, body, model_id)

        texts = []
        candidates = payload.get("candidates") or []
        if not isinstance(candidates, list):
            candidates = []
        for candidate in candidates:
            content = candidate.get("content") if isinstance(candidate, dict) else None
            parts = content.get("parts") if isinstance(content, dict) else None
            for part in parts if isinstance(parts, list) else []:
                text = part.get("text") if isinstance(part, dict) else None
                if isinstance(text, str):
                    texts.append(text)
            if texts:
                break

        reply = "".join(texts).strip()
        if not reply:
            raise UpstreamInferenceError(
                f"{model_id} returned no text",
                service=model_id
            )

        logger.info("vision_call_completed", model=model_id, reply_length=len(reply))
        return reply
