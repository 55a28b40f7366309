"""
Pipeline Wiring

Builds the orchestrator and its collaborators from settings. Handles that
bind to an event loop (database engine, HTTP client) are created per scope
and disposed when it closes; the rembg session is process-wide.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from proshot.core.config import Settings, settings as default_settings
from proshot.core.database import build_engine, build_session_maker, create_db_and_tables
from proshot.core.storage import IStorage, StorageFactory
from proshot.engines.inference.client import InferenceClient
from proshot.engines.raster.processor import LocalRasterProcessor, RembgSegmenter, Segmenter
from proshot.modules.projects.repository import ProjectRepository
from proshot.pipeline.artifacts import ArtifactWriter
from proshot.pipeline.orchestrator import ImagePipeline
from proshot.pipeline.resolver import MetadataResolver
from proshot.pipeline.strategies import (
    CopyOnlyStrategy,
    DirectEditStrategy,
    HighFidelityStrategy,
    SegmentThenInpaintStrategy,
    StrategyName,
    StrategySelector,
    VisionGuidedGenerateStrategy,
)

_segmenter: Optional[RembgSegmenter] = None


def get_segmenter(model_name: str) -> RembgSegmenter:
    """Process-wide rembg segmenter; the model loads on first use."""
    global _segmenter
    if _segmenter is None or _segmenter.model_name != model_name:
        _segmenter = RembgSegmenter(model_name)
    return _segmenter


def build_selector(
    config: Settings,
    client: InferenceClient,
    segmenter: Optional[Segmenter] = None
) -> StrategySelector:
    strategies = {
        StrategyName.COPY_ONLY: CopyOnlyStrategy(),
        StrategyName.DIRECT_EDIT: DirectEditStrategy(
            client,
            config.EDIT_ENDPOINT_ID,
            aspect_ratio=config.ASPECT_RATIO,
            edit_mode=config.DIRECT_EDIT_MODE
        ),
        StrategyName.SEGMENT_INPAINT: SegmentThenInpaintStrategy(
            client,
            config.SEGMENTATION_ENDPOINT_ID,
            config.EDIT_ENDPOINT_ID,
            aspect_ratio=config.ASPECT_RATIO
        ),
        StrategyName.VISION_GUIDED: VisionGuidedGenerateStrategy(
            client,
            config.VISION_MODEL_ID,
            config.EDIT_ENDPOINT_ID,
            aspect_ratio=config.ASPECT_RATIO,
            edit_mode=config.VISION_EDIT_MODE,
            mask_mode=config.VISION_MASK_MODE
        ),
        StrategyName.HIGH_FIDELITY: HighFidelityStrategy(
            LocalRasterProcessor(
                segmenter=segmenter or get_segmenter(config.REMBG_MODEL),
                backdrop_color=config.BACKDROP_COLOR
            )
        ),
    }
    return StrategySelector(
        strategies,
        prompt_strategy=StrategyName(config.PROMPT_STRATEGY),
        promptless_strategy=StrategyName(config.PROMPTLESS_STRATEGY)
    )


def build_pipeline(
    config: Settings,
    repository: ProjectRepository,
    storage: IStorage,
    client: InferenceClient,
    segmenter: Optional[Segmenter] = None
) -> ImagePipeline:
    """Assemble an orchestrator from already-constructed handles."""
    return ImagePipeline(
        repository=repository,
        resolver=MetadataResolver(
            repository,
            max_attempts=config.RESOLVE_MAX_ATTEMPTS,
            retry_delay_seconds=config.RESOLVE_RETRY_DELAY_SECONDS
        ),
        storage=storage,
        selector=build_selector(config, client, segmenter),
        artifact_writer=ArtifactWriter(
            storage,
            owner_scope_prefix=config.OWNER_SCOPE_PREFIX,
            results_segment=config.RESULTS_SEGMENT
        ),
        owner_scope_prefix=config.OWNER_SCOPE_PREFIX,
        uploads_segment=config.UPLOADS_SEGMENT
    )


@asynccontextmanager
async def repository_scope(config: Settings = default_settings) -> AsyncIterator[ProjectRepository]:
    """A repository on its own engine, disposed on exit."""
    engine = build_engine(config.DATABASE_URL)
    try:
        await create_db_and_tables(engine)
        yield ProjectRepository(
            build_session_maker(engine),
            conditional_transitions=config.CONDITIONAL_TRANSITIONS
        )
    finally:
        await engine.dispose()


@asynccontextmanager
async def pipeline_scope(config: Settings = default_settings) -> AsyncIterator[ImagePipeline]:
    """A fully wired pipeline for one invocation."""
    async with repository_scope(config) as repository:
        async with InferenceClient(
            config.INFERENCE_BASE_URL,
            api_key=config.INFERENCE_API_KEY,
            timeout=config.INFERENCE_TIMEOUT_SECONDS
        ) as client:
            yield build_pipeline(config, repository, StorageFactory.get_storage(), client)
