"""
Projects Module

Project Record model, status state machine and repository.
"""

from proshot.modules.projects.models import ProjectRecord, ProjectStatus
from proshot.modules.projects.repository import ProjectRepository

__all__ = ["ProjectRecord", "ProjectStatus", "ProjectRepository"]
