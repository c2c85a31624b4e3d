"""
Batch Distribution Planner

Partitions a project's pending token distributions into fixed-size batches
for bounded-gas on-chain execution and persists the plan as a
DistributionJob. Executing the batches is manual; this module only tracks
the job's status as operators report progress.
"""

import logging
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional, Sequence
from uuid import UUID

from sqlalchemy.orm import Session

from database.errors import ValidationError
from database.models import (
    DistributionJob,
    UserInvestment,
    JobStatus,
    AuditAction,
    utc_isoformat,
)
from database.repositories import (
    ProjectRepository,
    InvestmentRepository,
    DistributionJobRepository,
    AuditRepository,
)

logger = logging.getLogger(__name__)

NEXT_STEPS = [
    'Review the batch details carefully',
    'Ensure contract has sufficient token balance',
    'Execute batches sequentially on-chain',
    'Mark job as completed when all batches processed',
]

# Allowed manual status transitions
JOB_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.IN_PROGRESS, JobStatus.FAILED},
    JobStatus.IN_PROGRESS: {JobStatus.IN_PROGRESS, JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


def partition_investments(
    investments: Sequence[UserInvestment],
    batch_size: int
) -> List[Dict[str, Any]]:
    """
    Split investments into contiguous batches, preserving order.

    Args:
        investments: Pending investments in fetch order
        batch_size: Maximum recipients per batch

    Returns:
        Batch descriptors numbered 1..n without gaps
    """
    if batch_size < 1:
        raise ValueError("batch_size must be positive")

    batches = []
    for start in range(0, len(investments), batch_size):
        chunk = investments[start:start + batch_size]
        batches.append({
            "batch_number": start // batch_size + 1,
            "recipients": [
                {
                    "address": inv.wallet_address,
                    "amount": inv.tokens_received,
                    "investment_id": str(inv.id),
                }
                for inv in chunk
            ],
            "total_recipients": len(chunk),
            "total_tokens": sum(inv.tokens_received or 0 for inv in chunk),
        })
    return batches


def job_to_dict(job: DistributionJob, include_batches: bool = False) -> Dict[str, Any]:
    data = {
        "job_id": str(job.id),
        "project_id": str(job.project_id),
        "status": job.status,
        "total_batches": job.total_batches,
        "total_recipients": job.total_recipients,
        "total_tokens": job.total_tokens,
        "batch_size": job.batch_size,
        "completed_batches": job.completed_batches,
        "started_at": utc_isoformat(job.started_at),
        "completed_at": utc_isoformat(job.completed_at),
        "error_message": job.error_message,
        "created_at": utc_isoformat(job.created_at),
    }
    if include_batches:
        data["batches"] = job.batches
    return data


class DistributionService:
    """Session-bound distribution planning and job tracking."""

    def __init__(self, session: Session, config: Optional[Any] = None):
        self.session = session
        self.projects = ProjectRepository(session)
        self.investments = InvestmentRepository(session)
        self.jobs = DistributionJobRepository(session)
        self.audit = AuditRepository(session)

        self.default_batch_size = 50
        self.max_batch_size = 500
        self.max_recipients_per_job = 10000
        self.gas_cost_per_batch = 0.01
        if config is not None:
            self._apply_config(config)

    def _apply_config(self, config) -> None:
        dist = config.distribution
        self.default_batch_size = dist.default_batch_size
        self.max_batch_size = dist.max_batch_size
        self.max_recipients_per_job = dist.max_recipients_per_job
        self.gas_cost_per_batch = dist.gas_cost_per_batch

    def _resolve_batch_size(self, batch_size: Optional[int]) -> int:
        if batch_size is None:
            return self.default_batch_size
        if batch_size < 1 or batch_size > self.max_batch_size:
            raise ValidationError(
                f"Batch size must be between 1 and {self.max_batch_size}"
            )
        return batch_size

    def plan(
        self,
        project_id: UUID,
        batch_size: Optional[int] = None,
        actor: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Build and persist a distribution job for a project.

        The job row and its audit entry are written in the caller's
        transaction. Nothing is written when no investment is pending.

        Raises:
            ValidationError: If the project id is missing or batch size invalid
            EntityNotFoundError: If the project does not exist
        """
        if project_id is None:
            raise ValidationError("Project ID is required")
        size = self._resolve_batch_size(batch_size)

        self.projects.get_or_raise(project_id)

        pending = self.investments.list_pending(project_id, limit=self.max_recipients_per_job)
        if not pending:
            logger.info(f"No pending distributions for project {project_id}")
            return {
                "success": True,
                "message": "No pending distributions",
                "batches": [],
            }

        batches = partition_investments(pending, size)
        total_tokens = sum(inv.tokens_received or 0 for inv in pending)

        job = self.jobs.create(
            project_id=project_id,
            batches=batches,
            total_recipients=len(pending),
            total_tokens=total_tokens,
            batch_size=size,
        )

        self.audit.log(
            AuditAction.CREATE_DISTRIBUTION_JOB,
            details={
                "project_id": str(project_id),
                "job_id": str(job.id),
                "batches": len(batches),
                "recipients": len(pending),
            },
            actor=actor,
            target=str(project_id),
            ip_address=ip_address,
            user_agent=user_agent,
        )

        logger.info(
            f"Distribution job created: {job.id} batches={len(batches)} recipients={len(pending)}"
        )

        return {
            "success": True,
            "job_id": str(job.id),
            "batches": batches,
            "summary": {
                "total_batches": len(batches),
                "total_recipients": len(pending),
                "total_tokens": total_tokens,
                "estimated_gas_cost": round(len(batches) * self.gas_cost_per_batch, 8),
            },
            "instructions": {
                "next_steps": list(NEXT_STEPS),
            },
        }

    def list_jobs(
        self,
        project_id: Optional[UUID] = None,
        status: Optional[JobStatus] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        """List jobs, newest first."""
        return [job_to_dict(job) for job in self.jobs.list(project_id, status, limit)]

    def get_job(self, job_id: UUID) -> Dict[str, Any]:
        return job_to_dict(self.jobs.get_or_raise(job_id), include_batches=True)

    def update_status(
        self,
        job_id: UUID,
        status: JobStatus,
        completed_batches: Optional[int] = None,
        error_message: Optional[str] = None,
        actor: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Progress a job: pending -> in_progress -> completed | failed.

        The batches payload is never modified.

        Raises:
            ValidationError: On an illegal transition or batch count
            EntityNotFoundError: If the job does not exist
        """
        job = self.jobs.get_or_raise(job_id)
        current = JobStatus(job.status)

        if status not in JOB_TRANSITIONS[current]:
            raise ValidationError(
                f"Cannot change job status from {current.value} to {status.value}"
            )

        if completed_batches is not None:
            if completed_batches < job.completed_batches or completed_batches > job.total_batches:
                raise ValidationError(
                    f"completed_batches must be between {job.completed_batches} "
                    f"and {job.total_batches}"
                )
            job.completed_batches = completed_batches

        now = datetime.now(timezone.utc)
        if status == JobStatus.IN_PROGRESS and job.started_at is None:
            job.started_at = now
        if status == JobStatus.COMPLETED:
            job.completed_batches = job.total_batches
            job.completed_at = now
        if status == JobStatus.FAILED:
            job.completed_at = now
            job.error_message = error_message or "Marked as failed"

        job.status = status.value
        self.session.flush()

        self.audit.log(
            AuditAction.UPDATE_DISTRIBUTION_JOB,
            details={
                "job_id": str(job.id),
                "from_status": current.value,
                "to_status": status.value,
                "completed_batches": job.completed_batches,
            },
            actor=actor,
            target=str(job.id),
            ip_address=ip_address,
            user_agent=user_agent,
        )

        logger.info(f"Distribution job {job.id}: {current.value} -> {status.value}")
        return job_to_dict(job)
