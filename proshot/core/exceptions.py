"""
Pipeline Exception Taxonomy

Every failure the orchestrator can observe maps onto one of these types.
The orchestrator catches them once, logs them and turns them into an
``error`` status on the Project Record.
"""

import traceback
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from proshot.core.logging import get_logger, project_id_var

logger = get_logger(__name__)


# =============================================================================
# Custom Exceptions
# =============================================================================

class ProShotError(Exception):
    """Base exception for the processing pipeline."""

    def __init__(
        self,
        message: str,
        code: int = 500,
        project_id: Optional[str] = None,
        stage: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.project_id = project_id or project_id_var.get()
        self.stage = stage
        self.details = details or {}
        super().__init__(self.message)


class ValidationSkip(ProShotError):
    """Event is outside the pipeline's scope. Not an error."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=202, **kwargs)


class RecordNotFoundError(ProShotError):
    """Project Record could not be resolved."""

    def __init__(self, message: str, attempts: int = 1, **kwargs):
        super().__init__(message, code=404, stage="resolve", **kwargs)
        self.details["attempts"] = attempts


class UpstreamInferenceError(ProShotError):
    """A remote inference call failed or returned no usable payload."""

    def __init__(
        self,
        message: str,
        service: str,
        http_status: Optional[int] = None,
        **kwargs
    ):
        kwargs.setdefault("stage", "synthesis")
        super().__init__(message, code=502, **kwargs)
        self.details["service"] = service
        self.details["http_status"] = http_status


class ParseError(ProShotError):
    """A model text reply could not be parsed into the expected object."""

    def __init__(self, message: str, raw_excerpt: str = "", **kwargs):
        kwargs.setdefault("stage", "vision_analysis")
        super().__init__(message, code=502, **kwargs)
        self.details["raw_excerpt"] = raw_excerpt[:200]


class LocalProcessingError(ProShotError):
    """Local segmentation or compositing failed."""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("stage", "high_fidelity")
        super().__init__(message, code=500, **kwargs)


class StorageError(ProShotError):
    """Raised when object storage operations fail."""

    def __init__(self, message: str, **kwargs):
        super().__init__(message, code=500, **kwargs)


class TransitionConflictError(ProShotError):
    """A conditional status transition found an unexpected predecessor."""

    def __init__(
        self,
        message: str,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
        **kwargs
    ):
        super().__init__(message, code=409, **kwargs)
        self.details["expected"] = expected
        self.details["actual"] = actual


def describe_failure(exc: BaseException) -> str:
    """Human-readable message stored on the record's ``error`` field."""
    if isinstance(exc, ProShotError):
        return exc.message
    text = str(exc).strip()
    if text:
        return f"{type(exc).__name__}: {text}"
    return type(exc).__name__


# =============================================================================
# API Exception Handlers
# =============================================================================

def register_exception_handlers(app: FastAPI):
    """Register custom exception handlers with FastAPI app."""

    @app.exception_handler(ProShotError)
    async def proshot_exception_handler(request: Request, exc: ProShotError):
        logger.error(
            "proshot_exception",
            error=exc.message,
            code=exc.code,
            stage=exc.stage,
            details=exc.details
        )

        return JSONResponse(
            status_code=exc.code,
            content={
                "error": exc.message,
                "project_id": exc.project_id,
                "code": exc.code,
                "stage": exc.stage,
                "details": exc.details,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )

    @app.exception_handler(Exception)
    async def generic_exception_handler(request: Request, exc: Exception):
        logger.error(
            "unhandled_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            path=str(request.url.path),
            traceback=traceback.format_exc()
        )

        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "code": 500,
                "timestamp": datetime.now(timezone.utc).isoformat()
            }
        )
