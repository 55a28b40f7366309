"""
Celery Tasks for the Processing Pipeline

Each delivery of a storage event runs the orchestrator exactly once. The
task never retries: a duplicate delivery is handled by the conditional
status transitions, and a failed run has already recorded ``error``.
"""

import asyncio
from typing import Any, Dict, List

from pydantic import ValidationError

from proshot.core.celery_app import celery_app
from proshot.core.config import settings
from proshot.core.logging import clear_project_context, get_logger
from proshot.core.metrics import record_event_skipped
from proshot.pipeline.events import StorageEvent
from proshot.pipeline.factory import pipeline_scope, repository_scope
from proshot.pipeline.orchestrator import PipelineOutcome, PipelineResult
from proshot.pipeline.reconcile import reconcile_stale_projects as reconcile

logger = get_logger(__name__)


async def _run_pipeline(event: StorageEvent) -> PipelineResult:
    async with pipeline_scope(settings) as pipeline:
        return await pipeline.handle(event)


async def _run_reconcile(stale_after_seconds: int) -> List[str]:
    async with repository_scope(settings) as repository:
        return await reconcile(repository, stale_after_seconds)


@celery_app.task(
    bind=True,
    name="proshot.pipeline.tasks.process_upload_event",
    max_retries=0,
    acks_late=True
)
def process_upload_event(self, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Run the pipeline for one storage-finalize notification.

    Args:
        payload: ``{bucket, objectName, contentType, customMetadata?}``

    Returns:
        The ``PipelineResult`` as a dict
    """
    try:
        event = StorageEvent.model_validate(payload)
    except ValidationError as e:
        logger.warning("event_payload_invalid", errors=e.error_count(), task_id=self.request.id)
        record_event_skipped("invalid_payload")
        return PipelineResult(PipelineOutcome.SKIPPED, error="Invalid event payload").to_dict()

    logger.info("task_received", task_id=self.request.id, object_path=event.object_path)
    try:
        result = asyncio.run(_run_pipeline(event))
    finally:
        clear_project_context()

    logger.info(
        "task_finished",
        task_id=self.request.id,
        outcome=result.outcome.value,
        project_id=result.project_id
    )
    return result.to_dict()


@celery_app.task(name="proshot.pipeline.tasks.reconcile_stale_projects")
def reconcile_stale_projects() -> Dict[str, Any]:
    """Periodic sweep of records left in processing by killed invocations."""
    stale_after = settings.RECONCILE_STALE_AFTER_SECONDS
    if not stale_after:
        logger.info("reconcile_disabled")
        return {"reconciled": []}

    reconciled = asyncio.run(_run_reconcile(stale_after))
    return {"reconciled": reconciled}
