"""
Project Record Repository

All reads and writes of Project Records go through here. Status changes
are applied with ``transition`` which enforces the state machine and, in
conditional mode, only writes when the stored status is still the expected
predecessor.
"""

from datetime import datetime
from typing import Callable, List, Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from proshot.core.exceptions import RecordNotFoundError, TransitionConflictError
from proshot.core.logging import get_logger
from proshot.modules.projects.models import (
    ProjectRecord,
    ProjectStatus,
    expected_predecessor,
    utc_now,
)

logger = get_logger(__name__)


class ProjectRepository:
    """Async document-store access for Project Records."""

    def __init__(
        self,
        session_maker: Callable[[], AsyncSession],
        conditional_transitions: bool = True,
        clock: Callable[[], datetime] = utc_now
    ):
        self._session_maker = session_maker
        self.conditional_transitions = conditional_transitions
        self._clock = clock

    async def create(self, record: ProjectRecord) -> ProjectRecord:
        async with self._session_maker() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
            return record

    async def get(self, owner_id: str, project_id: str) -> Optional[ProjectRecord]:
        async with self._session_maker() as session:
            statement = select(ProjectRecord).where(
                ProjectRecord.owner_id == owner_id,
                ProjectRecord.id == project_id
            )
            result = await session.execute(statement)
            return result.scalars().first()

    async def find_by_storage_path(
        self,
        owner_id: str,
        storage_path: str
    ) -> Optional[ProjectRecord]:
        """First record in the owner's collection with this storage path."""
        async with self._session_maker() as session:
            statement = (
                select(ProjectRecord)
                .where(
                    ProjectRecord.owner_id == owner_id,
                    ProjectRecord.storage_path == storage_path
                )
                .order_by(ProjectRecord.created_at)
                .limit(1)
            )
            result = await session.execute(statement)
            return result.scalars().first()

    async def transition(
        self,
        owner_id: str,
        project_id: str,
        target: ProjectStatus,
        processed_url: Optional[str] = None,
        error: Optional[str] = None
    ) -> ProjectRecord:
        """
        Move a record to ``target``.

        Args:
            owner_id: Owner scope of the record
            project_id: Record id
            target: processing, completed or error
            processed_url: Required for completed
            error: Required for error

        Raises:
            ValueError: if the target or its payload is invalid
            RecordNotFoundError: if the record does not exist
            TransitionConflictError: in conditional mode, if the stored
                status is not the expected predecessor
        """
        if target == ProjectStatus.PENDING:
            raise ValueError("Records never transition back to pending")
        if target == ProjectStatus.COMPLETED and not processed_url:
            raise ValueError("A completed record requires a processed_url")
        if target == ProjectStatus.ERROR and not error:
            raise ValueError("An errored record requires an error message")

        values = {"status": target.value, "updated_at": self._clock()}
        if target == ProjectStatus.PROCESSING:
            values["processed_url"] = None
            values["error"] = None
        elif target == ProjectStatus.COMPLETED:
            values["processed_url"] = processed_url
            values["error"] = None
        elif target == ProjectStatus.ERROR:
            values["error"] = error
            values["processed_url"] = None

        predecessor = expected_predecessor(target)
        statement = update(ProjectRecord).where(
            ProjectRecord.owner_id == owner_id,
            ProjectRecord.id == project_id
        )
        if self.conditional_transitions:
            statement = statement.where(ProjectRecord.status == predecessor.value)
        statement = statement.values(**values).execution_options(synchronize_session=False)

        async with self._session_maker() as session:
            result = await session.execute(statement)
            await session.commit()
            updated = result.rowcount

        if not updated:
            current = await self.get(owner_id, project_id)
            if current is None:
                raise RecordNotFoundError(
                    f"Project {project_id} no longer exists",
                    project_id=project_id
                )
            raise TransitionConflictError(
                f"Cannot move project {project_id} from {current.status} to {target.value}",
                expected=predecessor.value,
                actual=current.status,
                project_id=project_id
            )

        logger.info(
            "project_transitioned",
            project_id=project_id,
            owner_id=owner_id,
            status=target.value,
            conditional=self.conditional_transitions
        )

        record = await self.get(owner_id, project_id)
        if record is None:
            raise RecordNotFoundError(
                f"Project {project_id} vanished after update",
                project_id=project_id
            )
        return record

    async def find_stale_processing(self, older_than: datetime) -> List[ProjectRecord]:
        """Records still in processing whose last update is before ``older_than``."""
        async with self._session_maker() as session:
            statement = select(ProjectRecord).where(
                ProjectRecord.status == ProjectStatus.PROCESSING.value,
                ProjectRecord.updated_at < older_than
            )
            result = await session.execute(statement)
            return list(result.scalars().all())


