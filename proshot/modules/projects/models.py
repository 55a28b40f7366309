"""
Project Record Model with Status State Machine

One record per logical upload. Created ``pending`` by the upload flow,
moved to ``processing`` and then to exactly one terminal state by the
pipeline.
"""

import uuid
from enum import Enum
from sqlmodel import SQLModel, Field
from typing import Optional, Dict, Any, FrozenSet
from datetime import datetime, timezone


class ProjectStatus(str, Enum):
    """Project lifecycle states."""
    PENDING = "pending"           # Created by the upload flow
    PROCESSING = "processing"     # Claimed by a pipeline invocation
    COMPLETED = "completed"       # Artifact written, processed_url set
    ERROR = "error"               # Pipeline failed, error set


def utc_now() -> datetime:
    """Timezone-aware current time in UTC."""
    return datetime.now(timezone.utc)


TERMINAL_STATUSES: FrozenSet[ProjectStatus] = frozenset(
    {ProjectStatus.COMPLETED, ProjectStatus.ERROR}
)

# Allowed moves. Nothing returns to pending or re-enters processing.
ALLOWED_TRANSITIONS: Dict[ProjectStatus, FrozenSet[ProjectStatus]] = {
    ProjectStatus.PENDING: frozenset({ProjectStatus.PROCESSING}),
    ProjectStatus.PROCESSING: TERMINAL_STATUSES,
    ProjectStatus.COMPLETED: frozenset(),
    ProjectStatus.ERROR: frozenset(),
}


def can_transition(current: ProjectStatus, target: ProjectStatus) -> bool:
    """Check a move against the state machine."""
    return target in ALLOWED_TRANSITIONS[current]


def expected_predecessor(target: ProjectStatus) -> ProjectStatus:
    """The only state a record may be in before entering ``target``."""
    if target == ProjectStatus.PROCESSING:
        return ProjectStatus.PENDING
    if target in TERMINAL_STATUSES:
        return ProjectStatus.PROCESSING
    raise ValueError(f"No transition leads into {target.value}")


class ProjectRecord(SQLModel, table=True):
    """
    Persisted Project Record.

    Keyed by ``(owner_id, id)``. ``storage_path`` and ``original_url`` are
    immutable after creation; ``processed_url`` is set only on completion
    and ``error`` only on failure.
    """
    __tablename__ = "projects"

    owner_id: str = Field(primary_key=True)
    id: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        primary_key=True
    )

    name: str = Field(default="")
    storage_path: str = Field(index=True)
    original_url: str = Field(default="")
    processed_url: Optional[str] = None

    status: str = Field(default=ProjectStatus.PENDING.value)
    error: Optional[str] = None

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def project_status(self) -> ProjectStatus:
        return ProjectStatus(self.status)

    def to_response_dict(self) -> Dict[str, Any]:
        """Convert to the camelCase shape the front-end reads."""
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "name": self.name,
            "storagePath": self.storage_path,
            "originalUrl": self.original_url,
            "processedUrl": self.processed_url,
            "status": self.status,
            "error": self.error,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }
