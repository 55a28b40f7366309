"""
Stale Record Reconciliation

An invocation that overruns its wall-clock budget is killed mid-flight and
leaves its record in ``processing``. This sweep moves such records to
``error`` so the owner sees a terminal state.
"""

from datetime import datetime, timedelta
from typing import Callable, List

from proshot.core.exceptions import RecordNotFoundError, TransitionConflictError
from proshot.core.logging import get_logger
from proshot.core.metrics import record_project_completion
from proshot.modules.projects.models import ProjectStatus, utc_now
from proshot.modules.projects.repository import ProjectRepository

logger = get_logger(__name__)

TIMEOUT_MESSAGE = "Processing timed out"


async def reconcile_stale_projects(
    repository: ProjectRepository,
    stale_after_seconds: int,
    clock: Callable[[], datetime] = utc_now
) -> List[str]:
    """
    Mark records stuck in processing for longer than ``stale_after_seconds``.

    Returns:
        Ids of the records moved to error
    """
    cutoff = clock() - timedelta(seconds=stale_after_seconds)
    stale = await repository.find_stale_processing(cutoff)

    reconciled = []
    for record in stale:
        try:
            await repository.transition(
                record.owner_id,
                record.id,
                ProjectStatus.ERROR,
                error=TIMEOUT_MESSAGE
            )
        except (TransitionConflictError, RecordNotFoundError) as e:
            # Finished (or removed) between the query and the update
            logger.info("stale_project_skipped", project_id=record.id, reason=e.message)
            continue

        record_project_completion("error", failure_stage="timeout", in_flight=False)
        reconciled.append(record.id)

    logger.info(
        "stale_projects_reconciled",
        candidates=len(stale),
        reconciled=len(reconciled),
        cutoff=cutoff.isoformat()
    )
    return reconciled
