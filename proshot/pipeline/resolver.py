"""
Metadata Resolver

Finds the Project Record for an upload. The record is written by the upload
flow moments before the object lands, and the two systems do not guarantee
read-your-own-write consistency, so lookups by id are retried a bounded
number of times at a fixed interval.
"""

import asyncio
from typing import Awaitable, Callable, Optional

from proshot.core.exceptions import RecordNotFoundError
from proshot.core.logging import get_logger
from proshot.modules.projects.models import ProjectRecord
from proshot.modules.projects.repository import ProjectRepository

logger = get_logger(__name__)


class MetadataResolver:
    """Resolve an upload to its Project Record. Read-only."""

    def __init__(
        self,
        repository: ProjectRepository,
        max_attempts: int = 5,
        retry_delay_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.repository = repository
        self.max_attempts = max_attempts
        self.retry_delay_seconds = retry_delay_seconds
        self._sleep = sleep

    async def resolve(
        self,
        owner_id: str,
        project_id: Optional[str],
        storage_path: str
    ) -> ProjectRecord:
        """
        Direct-id lookup when ``project_id`` is known, storage-path query
        otherwise.

        Raises:
            RecordNotFoundError: if no record could be found
        """
        if project_id:
            return await self._resolve_by_id(owner_id, project_id)
        return await self._resolve_by_storage_path(owner_id, storage_path)

    async def _resolve_by_id(self, owner_id: str, project_id: str) -> ProjectRecord:
        for attempt in range(1, self.max_attempts + 1):
            record = await self.repository.get(owner_id, project_id)
            if record is not None:
                logger.info("project_resolved", project_id=project_id, attempt=attempt)
                return record

            if attempt < self.max_attempts:
                logger.info(
                    "resolve_attempt_missed",
                    project_id=project_id,
                    attempt=attempt,
                    retry_in_seconds=self.retry_delay_seconds
                )
                await self._sleep(self.retry_delay_seconds)

        raise RecordNotFoundError(
            f"Project {project_id} not found after {self.max_attempts} attempts",
            attempts=self.max_attempts,
            project_id=project_id
        )

    async def _resolve_by_storage_path(self, owner_id: str, storage_path: str) -> ProjectRecord:
        # Single query, no retry. Duplicate storage paths resolve to the
        # oldest record.
        record = await self.repository.find_by_storage_path(owner_id, storage_path)
        if record is None:
            raise RecordNotFoundError(f"No project found for {storage_path}")

        logger.info("project_resolved", project_id=record.id, storage_path=storage_path)
        return record
