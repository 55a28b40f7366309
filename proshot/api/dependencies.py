"""
FastAPI Dependencies

Provides dependency injection for:
- Project repository (shared engine from proshot.core.database)
"""

from proshot.core.config import settings
from proshot.core.database import async_session_maker
from proshot.modules.projects.repository import ProjectRepository


def get_repository() -> ProjectRepository:
    """Repository bound to the application's engine."""
    return ProjectRepository(
        async_session_maker,
        conditional_transitions=settings.CONDITIONAL_TRANSITIONS
    )
