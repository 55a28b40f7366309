"""
Synthesis Strategies

Each strategy turns the uploaded image into the processed image. Multi-call
strategies run their calls strictly in sequence and are atomic from the
orchestrator's point of view: any failure aborts the whole strategy.

    CopyOnly             input returned unchanged
    DirectEdit           one edit call
    SegmentThenInpaint   segmentation call -> inpainting call
    VisionGuidedGenerate vision analysis -> edit call
    HighFidelity         local background removal + solid backdrop
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

from proshot.core.logging import get_logger, stage_var
from proshot.core.metrics import track_stage_latency
from proshot.engines.inference.client import InferenceClient, first_image_payload, image_part
from proshot.engines.raster.processor import LocalRasterProcessor
from proshot.pipeline.replies import ProductAnalysis, parse_product_analysis

logger = get_logger(__name__)


# =============================================================================
# Prompt Templates
# =============================================================================

DIRECT_EDIT_PROMPT_TEMPLATE = (
    "Professional studio product photograph of the item in this image. "
    "{direction}"
    "Replace the background with a clean, seamless studio backdrop with soft, "
    "even lighting and a subtle natural shadow. Keep the product unchanged."
)

INPAINT_PROMPT_TEMPLATE = (
    "{direction}"
    "A clean, seamless professional studio backdrop with soft, even lighting "
    "and a subtle natural shadow beneath the product."
)

ANALYSIS_PROMPT = (
    "You are preparing a studio re-shoot of the product in this photo.\n"
    "Respond with a single JSON object with exactly two string fields:\n"
    '- "productDescription": a concise visual description of the product '
    "(type, shape, material, color, finish).\n"
    '- "extractedText": any text, logo or label printed on the product, '
    'verbatim. Use "" if there is none.\n'
    "Return only the JSON object."
)

PHOTO_QUALITY_SUFFIX = (
    "Professional product photography, studio lighting, sharp focus, "
    "high resolution, photorealistic, commercial catalog quality."
)


def _direction(user_prompt: Optional[str]) -> str:
    if not user_prompt:
        return ""
    return user_prompt.strip().rstrip(".") + ". "


def build_generation_prompt(user_prompt: Optional[str], analysis: ProductAnalysis) -> str:
    """Combine the caller's direction, the analysis and the quality suffix."""
    parts = []
    if user_prompt and user_prompt.strip():
        parts.append(user_prompt.strip().rstrip(".") + ".")
    description = analysis.product_description.strip()
    if description:
        parts.append(f"Product: {description.rstrip('.')}.")
    text = analysis.extracted_text.strip()
    if text:
        parts.append(f'Reproduce the on-product text exactly as "{text}".')
    parts.append(PHOTO_QUALITY_SUFFIX)
    return " ".join(parts)


# =============================================================================
# Strategy Contract
# =============================================================================

class StrategyName(str, Enum):
    COPY_ONLY = "copy_only"
    DIRECT_EDIT = "direct_edit"
    SEGMENT_INPAINT = "segment_inpaint"
    VISION_GUIDED = "vision_guided"
    HIGH_FIDELITY = "high_fidelity"


PROMPT_STRATEGIES = frozenset({
    StrategyName.VISION_GUIDED,
    StrategyName.DIRECT_EDIT,
    StrategyName.SEGMENT_INPAINT,
    StrategyName.COPY_ONLY,
})

PROMPTLESS_STRATEGIES = frozenset({
    StrategyName.HIGH_FIDELITY,
    StrategyName.COPY_ONLY,
})


@dataclass(frozen=True)
class SynthesisContext:
    """Everything a strategy may use besides the image bytes."""
    owner_id: str
    project_id: str
    file_name: str
    content_type: str = "image/png"
    user_prompt: Optional[str] = None
    project_name: str = ""

    @property
    def has_prompt(self) -> bool:
        return bool(self.user_prompt and self.user_prompt.strip())


class SynthesisStrategy(ABC):
    """Turns an input image into an output image."""

    name: StrategyName

    @abstractmethod
    async def process(self, image_bytes: bytes, context: SynthesisContext) -> bytes:
        """
        Raises:
            UpstreamInferenceError: a remote call failed or lacked a payload
            ParseError: a model reply could not be parsed
            LocalProcessingError: local processing failed
        """
        pass


# =============================================================================
# Strategies
# =============================================================================

class CopyOnlyStrategy(SynthesisStrategy):
    """Baseline: the processed image is the upload itself."""

    name = StrategyName.COPY_ONLY

    async def process(self, image_bytes: bytes, context: SynthesisContext) -> bytes:
        logger.info("copy_only_passthrough", size=len(image_bytes))
        return image_bytes


class DirectEditStrategy(SynthesisStrategy):
    """One call to an edit endpoint with a fixed studio prompt."""

    name = StrategyName.DIRECT_EDIT

    def __init__(
        self,
        client: InferenceClient,
        endpoint_id: str,
        aspect_ratio: str = "1:1",
        edit_mode: Optional[str] = None
    ):
        self.client = client
        self.endpoint_id = endpoint_id
        self.aspect_ratio = aspect_ratio
        self.edit_mode = edit_mode

    async def process(self, image_bytes: bytes, context: SynthesisContext) -> bytes:
        instance = {
            "prompt": DIRECT_EDIT_PROMPT_TEMPLATE.format(direction=_direction(context.user_prompt)),
            "image": image_part(image_bytes),
        }
        parameters: Dict[str, Any] = {"sampleCount": 1, "aspectRatio": self.aspect_ratio}
        if self.edit_mode:
            parameters["editMode"] = self.edit_mode

        stage_var.set("direct_edit")
        with track_stage_latency("direct_edit"):
            predictions = await self.client.predict(self.endpoint_id, instance, parameters)
        return first_image_payload(predictions, self.endpoint_id)


class SegmentThenInpaintStrategy(SynthesisStrategy):
    """Salient-object mask from a segmentation endpoint, then inpainting."""

    name = StrategyName.SEGMENT_INPAINT

    def __init__(
        self,
        client: InferenceClient,
        segmentation_endpoint_id: str,
        edit_endpoint_id: str,
        aspect_ratio: str = "1:1"
    ):
        self.client = client
        self.segmentation_endpoint_id = segmentation_endpoint_id
        self.edit_endpoint_id = edit_endpoint_id
        self.aspect_ratio = aspect_ratio

    async def process(self, image_bytes: bytes, context: SynthesisContext) -> bytes:
        stage_var.set("segmentation")
        with track_stage_latency("segmentation"):
            mask_predictions = await self.client.predict(
                self.segmentation_endpoint_id,
                {"image": image_part(image_bytes)},
                {"segmentationType": "salient_object"}
            )
        mask_bytes = first_image_payload(mask_predictions, self.segmentation_endpoint_id)
        logger.info("segmentation_mask_received", mask_size=len(mask_bytes))

        instance = {
            "prompt": INPAINT_PROMPT_TEMPLATE.format(direction=_direction(context.user_prompt)),
            "image": image_part(image_bytes),
            "mask": {"image": image_part(mask_bytes)},
        }
        parameters = {
            "sampleCount": 1,
            "aspectRatio": self.aspect_ratio,
            "mode": "inpainting",
        }

        stage_var.set("inpainting")
        with track_stage_latency("inpainting"):
            predictions = await self.client.predict(self.edit_endpoint_id, instance, parameters)
        return first_image_payload(predictions, self.edit_endpoint_id)


class VisionGuidedGenerateStrategy(SynthesisStrategy):
    """Describe the product with a vision model, then generate from that."""

    name = StrategyName.VISION_GUIDED

    def __init__(
        self,
        client: InferenceClient,
        vision_model_id: str,
        edit_endpoint_id: str,
        aspect_ratio: str = "1:1",
        edit_mode: Optional[str] = None,
        mask_mode: Optional[str] = None
    ):
        self.client = client
        self.vision_model_id = vision_model_id
        self.edit_endpoint_id = edit_endpoint_id
        self.aspect_ratio = aspect_ratio
        self.edit_mode = edit_mode
        self.mask_mode = mask_mode

    async def analyze(self, image_bytes: bytes, context: SynthesisContext) -> ProductAnalysis:
        stage_var.set("vision_analysis")
        with track_stage_latency("vision_analysis"):
            reply = await self.client.generate_text(
                self.vision_model_id,
                ANALYSIS_PROMPT,
                image_bytes,
                mime_type=context.content_type
            )
        analysis = parse_product_analysis(reply)
        logger.info(
            "vision_analysis_parsed",
            description_length=len(analysis.product_description),
            has_text=bool(analysis.extracted_text.strip())
        )
        return analysis

    async def process(self, image_bytes: bytes, context: SynthesisContext) -> bytes:
        analysis = await self.analyze(image_bytes, context)

        instance = {
            "prompt": build_generation_prompt(context.user_prompt, analysis),
            "image": image_part(image_bytes),
        }
        parameters: Dict[str, Any] = {"sampleCount": 1, "aspectRatio": self.aspect_ratio}
        if self.edit_mode:
            parameters["editMode"] = self.edit_mode
        if self.mask_mode:
            parameters["maskMode"] = self.mask_mode

        stage_var.set("generation")
        with track_stage_latency("generation"):
            predictions = await self.client.predict(self.edit_endpoint_id, instance, parameters)
        return first_image_payload(predictions, self.edit_endpoint_id)


class HighFidelityStrategy(SynthesisStrategy):
    """Local, deterministic path used when no prompt is given."""

    name = StrategyName.HIGH_FIDELITY

    def __init__(self, processor: LocalRasterProcessor):
        self.processor = processor

    async def process(self, image_bytes: bytes, context: SynthesisContext) -> bytes:
        stage_var.set("high_fidelity")
        with track_stage_latency("high_fidelity"):
            return await asyncio.to_thread(self.processor.process, image_bytes)


# =============================================================================
# Selection
# =============================================================================

class StrategySelector:
    """
    Picks the strategy for an upload.

    A non-empty prompt selects ``prompt_strategy``; no prompt selects
    ``promptless_strategy``.
    """

    def __init__(
        self,
        strategies: Mapping[StrategyName, SynthesisStrategy],
        prompt_strategy: StrategyName = StrategyName.VISION_GUIDED,
        promptless_strategy: StrategyName = StrategyName.HIGH_FIDELITY
    ):
        prompt_strategy = StrategyName(prompt_strategy)
        promptless_strategy = StrategyName(promptless_strategy)
        if prompt_strategy not in PROMPT_STRATEGIES:
            raise ValueError(f"{prompt_strategy.value} cannot be used for prompted uploads")
        if promptless_strategy not in PROMPTLESS_STRATEGIES:
            raise ValueError(f"{promptless_strategy.value} cannot be used without a prompt")
        for name in (prompt_strategy, promptless_strategy):
            if name not in strategies:
                raise ValueError(f"Strategy {name.value} is not configured")

        self.strategies = dict(strategies)
        self.prompt_strategy = prompt_strategy
        self.promptless_strategy = promptless_strategy

    def select(self, context: SynthesisContext) -> SynthesisStrategy:
        name = self.prompt_strategy if context.has_prompt else self.promptless_strategy
        return self.strategies[name]
