"""
Pipeline Orchestrator

Drives one upload from ``pending`` to exactly one terminal state:

1. Resolve the Project Record (retried inside the resolver)
2. pending -> processing
3. Select the synthesis strategy
4. Fetch the uploaded bytes
5. Run the strategy
6. Write the artifact, then processing -> completed
7. Any failure in 3-6: processing -> error (best effort)

Every failure after resolution is caught here exactly once.
"""

import time
import traceback
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from proshot.core.exceptions import (
    ProShotError,
    RecordNotFoundError,
    TransitionConflictError,
    ValidationSkip,
    describe_failure,
)
from proshot.core.logging import LogContext, get_logger
from proshot.core.metrics import (
    pipeline_total_duration,
    record_event_skipped,
    record_project_completion,
    record_project_started,
    track_stage_latency,
)
from proshot.core.storage import IStorage
from proshot.modules.projects.models import ProjectRecord, ProjectStatus
from proshot.modules.projects.repository import ProjectRepository
from proshot.pipeline.artifacts import ArtifactWriter, sniff_content_type
from proshot.pipeline.events import AcceptedUpload, StorageEvent, accept_event
from proshot.pipeline.resolver import MetadataResolver
from proshot.pipeline.strategies import StrategySelector, SynthesisContext

logger = get_logger(__name__)


class PipelineOutcome(str, Enum):
    SKIPPED = "skipped"           # Event outside scope, nothing touched
    NOT_FOUND = "not_found"       # No record to update
    CONFLICT = "conflict"         # Another invocation owns the record
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class PipelineResult:
    outcome: PipelineOutcome
    project_id: Optional[str] = None
    strategy: Optional[str] = None
    processed_url: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "project_id": self.project_id,
            "strategy": self.strategy,
            "processed_url": self.processed_url,
            "error": self.error,
        }


class ImagePipeline:
    """
    One orchestrator for every strategy.

    All collaborators are injected; the instance holds no per-invocation
    state and may be reused.
    """

    def __init__(
        self,
        repository: ProjectRepository,
        resolver: MetadataResolver,
        storage: IStorage,
        selector: StrategySelector,
        artifact_writer: ArtifactWriter,
        owner_scope_prefix: str = "owners",
        uploads_segment: str = "uploads"
    ):
        self.repository = repository
        self.resolver = resolver
        self.storage = storage
        self.selector = selector
        self.artifact_writer = artifact_writer
        self.owner_scope_prefix = owner_scope_prefix
        self.uploads_segment = uploads_segment

    async def handle(self, event: StorageEvent) -> PipelineResult:
        """Process one trigger event."""
        try:
            upload = accept_event(event, self.owner_scope_prefix, self.uploads_segment)
        except ValidationSkip as skip:
            reason = skip.details.get("reason", "unknown")
            logger.info("event_skipped", reason=reason, object_path=event.object_path)
            record_event_skipped(reason)
            return PipelineResult(PipelineOutcome.SKIPPED, error=skip.message)

        with LogContext(project_id=event.project_id, owner_id=upload.owner_id) as log_context:
            logger.info(
                "pipeline_started",
                object_path=event.object_path,
                bucket=event.bucket,
                correlation="project_id" if event.project_id else "storage_path"
            )
            start = time.time()
            result = await self._drive(upload, log_context)
            pipeline_total_duration.labels(status=result.outcome.value).observe(time.time() - start)
            return result

    async def _drive(self, upload: AcceptedUpload, log_context: LogContext) -> PipelineResult:
        event = upload.event

        # 1. Resolve
        try:
            with track_stage_latency("resolve"):
                record = await self.resolver.resolve(
                    upload.owner_id,
                    event.project_id,
                    event.object_path
                )
        except RecordNotFoundError as e:
            logger.warning("project_not_found", error=e.message, attempts=e.details.get("attempts"))
            return PipelineResult(PipelineOutcome.NOT_FOUND, project_id=event.project_id, error=e.message)
        log_context.set_project(record.id)

        # 2. Claim
        try:
            record = await self.repository.transition(
                upload.owner_id, record.id, ProjectStatus.PROCESSING
            )
        except TransitionConflictError as e:
            logger.warning(
                "project_already_claimed",
                expected=e.details.get("expected"),
                actual=e.details.get("actual")
            )
            return PipelineResult(PipelineOutcome.CONFLICT, project_id=record.id, error=e.message)
        except RecordNotFoundError as e:
            logger.warning("project_vanished", error=e.message)
            return PipelineResult(PipelineOutcome.NOT_FOUND, project_id=record.id, error=e.message)
        except Exception as e:
            logger.error(
                "project_claim_failed",
                error=str(e),
                error_type=type(e).__name__,
                traceback=traceback.format_exc()
            )
            return PipelineResult(PipelineOutcome.FAILED, project_id=record.id, error=describe_failure(e))
        record_project_started()

        # 3-6. Process
        strategy_name = None
        try:
            context = SynthesisContext(
                owner_id=upload.owner_id,
                project_id=record.id,
                file_name=upload.file_name,
                content_type=event.content_type or "image/png",
                user_prompt=event.user_prompt,
                project_name=record.name or event.original_name or upload.file_name
            )
            strategy = self.selector.select(context)
            strategy_name = strategy.name.value
            logger.info("strategy_selected", strategy=strategy_name, has_prompt=context.has_prompt)

            with track_stage_latency("download"):
                image_bytes = await self.storage.download(event.bucket, event.object_path)

            with track_stage_latency("synthesis"):
                output_bytes = await strategy.process(image_bytes, context)
            if not output_bytes:
                raise ProShotError(f"{strategy_name} produced an empty image", stage="synthesis")

            content_type = sniff_content_type(output_bytes, fallback=context.content_type)
            processed_url = await self.artifact_writer.write(
                event.bucket,
                upload.owner_id,
                event.project_id or upload.file_name,
                output_bytes,
                content_type=content_type
            )
        except Exception as exc:
            return await self._fail(upload, record, exc, strategy_name)

        return await self._complete(upload, record, processed_url, strategy_name)

    async def _complete(
        self,
        upload: AcceptedUpload,
        record: ProjectRecord,
        processed_url: str,
        strategy_name: Optional[str]
    ) -> PipelineResult:
        try:
            await self.repository.transition(
                upload.owner_id,
                record.id,
                ProjectStatus.COMPLETED,
                processed_url=processed_url
            )
        except (TransitionConflictError, RecordNotFoundError) as e:
            # The artifact is written but another invocation (or a removal)
            # got to the record first.
            logger.warning("completion_not_recorded", error=e.message, processed_url=processed_url)
            record_project_completion("conflict", failure_stage="complete")
            return PipelineResult(
                PipelineOutcome.CONFLICT,
                project_id=record.id,
                strategy=strategy_name,
                processed_url=processed_url,
                error=e.message
            )
        except Exception as exc:
            return await self._fail(upload, record, exc, strategy_name)

        logger.info("pipeline_completed", processed_url=processed_url, strategy=strategy_name)
        record_project_completion("completed")
        return PipelineResult(
            PipelineOutcome.COMPLETED,
            project_id=record.id,
            strategy=strategy_name,
            processed_url=processed_url
        )

    async def _fail(
        self,
        upload: AcceptedUpload,
        record: ProjectRecord,
        exc: BaseException,
        strategy_name: Optional[str]
    ) -> PipelineResult:
        message = describe_failure(exc)
        stage = exc.stage if isinstance(exc, ProShotError) and exc.stage else "unknown"

        logger.error(
            "pipeline_failed",
            error=message,
            error_type=type(exc).__name__,
            failed_stage=stage,
            strategy=strategy_name,
            details=exc.details if isinstance(exc, ProShotError) else None,
            traceback="".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        )
        record_project_completion("error", failure_stage=stage)

        # Best effort: the record may be gone or owned by another invocation.
        try:
            await self.repository.transition(
                upload.owner_id,
                record.id,
                ProjectStatus.ERROR,
                error=message
            )
        except (TransitionConflictError, RecordNotFoundError) as e:
            logger.warning("error_status_not_recorded", error=e.message)
        except Exception as e:
            logger.error("error_status_update_failed", error=str(e), error_type=type(e).__name__)

        return PipelineResult(
            PipelineOutcome.FAILED,
            project_id=record.id,
            strategy=strategy_name,
            error=message
        )
