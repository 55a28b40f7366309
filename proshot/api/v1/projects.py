"""
Project Status Endpoint

GET /api/v1/projects/{owner_id}/{project_id} - Current state of a Project Record
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from proshot.api.dependencies import get_repository
from proshot.modules.projects.repository import ProjectRepository

router = APIRouter()


@router.get("/{owner_id}/{project_id}")
async def get_project(
    owner_id: str,
    project_id: str,
    repository: ProjectRepository = Depends(get_repository)
) -> Dict[str, Any]:
    """Return the record in the shape the front-end reads."""
    record = await repository.get(owner_id, project_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Project {project_id} not found")
    return record.to_response_dict()
