"""Project lifecycle sweep: close sales whose end date has passed."""

import logging
from datetime import datetime, timezone
from typing import Dict, Any, Optional

from sqlalchemy.orm import Session

from database.models import Project, ProjectStatus, AuditAction
from database.repositories import ProjectRepository, AuditRepository

logger = logging.getLogger(__name__)


def settle_status(project: Project) -> ProjectStatus:
    """Outcome of an ended sale; missing amounts count as zero."""
    raised = project.raised_amount or 0
    soft_cap = project.soft_cap or 0
    return ProjectStatus.SUCCESS if raised >= soft_cap else ProjectStatus.FAILED


class ProjectService:
    """Session-bound project status sweep."""

    def __init__(self, session: Session):
        self.session = session
        self.projects = ProjectRepository(session)
        self.audit = AuditRepository(session)

    def refresh_statuses(
        self,
        now: Optional[datetime] = None,
        actor: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Settle every live or upcoming project whose end date has passed.

        Returns:
            {message, updated, updates: [{id, name, status}]}
        """
        now = now or datetime.now(timezone.utc)
        due = self.projects.list_ended_open(now)

        if not due:
            logger.info("No projects need status updates")
            return {"message": "No projects to update", "updated": 0, "updates": []}

        updates = []
        for project in due:
            new_status = settle_status(project)
            self.projects.set_status(project, new_status)
            logger.info(
                f"Project {project.id}: raised={project.raised_amount or 0} "
                f"soft_cap={project.soft_cap or 0} -> {new_status.value}"
            )
            updates.append({"id": str(project.id), "name": project.name, "status": new_status.value})

        self.audit.log(
            AuditAction.UPDATE_PROJECT_STATUSES,
            details={"updated": len(updates), "updates": updates},
            actor=actor,
        )

        return {
            "message": "Project statuses updated successfully",
            "updated": len(updates),
            "updates": updates,
        }
