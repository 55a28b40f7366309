"""
Structured Logging Configuration with structlog

Outputs JSON logs that are searchable in Cloud Logging, ELK, or CloudWatch.
Every log includes: project_id, owner_id, stage, version and timestamp when
they are known for the current invocation.
"""

import sys
import logging
import structlog
from typing import Optional, Any, Dict
from datetime import datetime, timezone
from contextvars import ContextVar

# Context variables for invocation-scoped logging
project_id_var: ContextVar[Optional[str]] = ContextVar("project_id", default=None)
owner_id_var: ContextVar[Optional[str]] = ContextVar("owner_id", default=None)
stage_var: ContextVar[Optional[str]] = ContextVar("stage", default=None)

# Application version
APP_VERSION = "1.0.0"


def add_app_context(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add application context to every log entry."""
    event_dict["version"] = APP_VERSION

    project_id = project_id_var.get()
    if project_id:
        event_dict.setdefault("project_id", project_id)

    owner_id = owner_id_var.get()
    if owner_id:
        event_dict.setdefault("owner_id", owner_id)

    stage = stage_var.get()
    if stage:
        event_dict.setdefault("stage", stage)

    return event_dict


def add_timestamp(
    logger: logging.Logger,
    method_name: str,
    event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add ISO format timestamp."""
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def setup_logging(
    log_level: str = "INFO",
    json_format: bool = True
):
    """
    Configure structured logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_format: If True, output JSON; if False, output colored console logs
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    # Silence noisy loggers
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.WARNING)

    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            add_timestamp,
            add_app_context,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.UnicodeDecoder(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


class LogContext:
    """
    Context manager for setting logging context.

    Usage:
        with LogContext(project_id="abc123", owner_id="u1"):
            logger.info("pipeline_started")
    """

    def __init__(
        self,
        project_id: Optional[str] = None,
        owner_id: Optional[str] = None,
        stage: Optional[str] = None
    ):
        self.project_id = project_id
        self.owner_id = owner_id
        self.stage = stage
        self._tokens = []

    def __enter__(self):
        if self.project_id:
            self._tokens.append((project_id_var, project_id_var.set(self.project_id)))
        if self.owner_id:
            self._tokens.append((owner_id_var, owner_id_var.set(self.owner_id)))
        if self.stage:
            self._tokens.append((stage_var, stage_var.set(self.stage)))
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []
        return False

    def set_project(self, project_id: str):
        """Bind the project id once the record has been resolved."""
        self._tokens.append((project_id_var, project_id_var.set(project_id)))


def clear_project_context():
    """Clear the current invocation context."""
    project_id_var.set(None)
    owner_id_var.set(None)
    stage_var.set(None)


# Example log output structure:
# {
#   "timestamp": "2024-05-20T10:00:00Z",
#   "level": "info",
#   "event": "stage_completed",
#   "stage": "synthesis",
#   "project_id": "p_7f3a",
#   "owner_id": "u_12",
#   "version": "1.0.0",
#   "duration_ms": 4200
# }
