"""
Storage Event Intake

POST /api/v1/events/storage - Receive a storage-finalize notification and
enqueue it for processing.

Accepts the raw trigger payload ``{bucket, objectName, contentType,
customMetadata?}`` or a CloudEvent-style envelope carrying it under
``data``. Out-of-scope objects are acknowledged without enqueueing.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from proshot.core.config import settings
from proshot.core.exceptions import ValidationSkip
from proshot.core.logging import get_logger
from proshot.core.metrics import record_event_skipped
from proshot.pipeline.events import StorageEvent, accept_event
from proshot.pipeline.tasks import process_upload_event

logger = get_logger(__name__)
router = APIRouter()


# =============================================================================
# Response Schemas
# =============================================================================

class EventAcceptedResponse(BaseModel):
    """Returned when the event was queued."""
    status: str = "accepted"
    task_id: str
    object_path: str
    project_id: Optional[str] = None


class EventIgnoredResponse(BaseModel):
    """Returned when the event is outside the pipeline's scope."""
    status: str = "ignored"
    reason: str
    object_path: str


def _unwrap(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = payload.get("data")
    if isinstance(data, dict):
        return data
    return payload


# =============================================================================
# Endpoints
# =============================================================================

@router.post("/storage", status_code=202, response_model=EventAcceptedResponse)
async def receive_storage_event(payload: Dict[str, Any] = Body(...)):
    """
    Queue one storage notification for the pipeline.

    Returns 202 with the task id, 200 when the object is ignored, 422 when
    the payload is not a storage notification and 503 when the queue is
    unreachable.
    """
    try:
        event = StorageEvent.model_validate(_unwrap(payload))
    except ValidationError as e:
        raise HTTPException(
            status_code=422,
            detail=[{"loc": err["loc"], "msg": err["msg"]} for err in e.errors()]
        )

    try:
        accept_event(event, settings.OWNER_SCOPE_PREFIX, settings.UPLOADS_SEGMENT)
    except ValidationSkip as skip:
        reason = skip.details.get("reason", "unknown")
        logger.info("event_ignored", reason=reason, object_path=event.object_path)
        record_event_skipped(reason)
        return JSONResponse(
            status_code=200,
            content=EventIgnoredResponse(reason=reason, object_path=event.object_path).model_dump()
        )

    try:
        task = process_upload_event.delay(event.model_dump(mode="json"))
    except Exception as e:
        logger.error("event_dispatch_failed", error=str(e), object_path=event.object_path)
        raise HTTPException(status_code=503, detail=f"Event dispatch failed: {str(e)}")

    logger.info(
        "event_enqueued",
        task_id=task.id,
        object_path=event.object_path,
        project_id=event.project_id
    )
    return EventAcceptedResponse(
        task_id=task.id,
        object_path=event.object_path,
        project_id=event.project_id
    )
