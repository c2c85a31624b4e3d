"""
Repository Pattern for Launchpad Gate Database Operations

Provides clean data access layer with proper typing and error handling.
Repositories flush but never commit; the caller owns the transaction.
"""

import logging
from typing import List, Optional, Dict, Any
from uuid import UUID
from datetime import datetime, timezone

from sqlalchemy import select, func, and_, or_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from database.models import (
    Project,
    KYCSubmission,
    EligibilityCheck,
    QueueTicket,
    PriorityWhitelist,
    UserInvestment,
    DistributionJob,
    AdminAuditLog,
    WebhookEvent,
    Transaction,
    VestingSchedule,
    LiquidityLock,
    KYCStatus,
    TicketStatus,
    InvestmentStatus,
    JobStatus,
    ProjectStatus,
    AuditAction,
    normalize_address,
)
from database.monitoring import timed_query

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class EntityNotFoundError(RepositoryError):
    """Raised when an entity is not found."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate entity."""
    pass


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============================================
# PROJECT REPOSITORY
# ============================================

class ProjectRepository:
    """Repository for sale projects."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, project_id: UUID) -> Optional[Project]:
        return self.session.get(Project, project_id)

    def get_or_raise(self, project_id: UUID) -> Project:
        """
        Get project by ID.

        Raises:
            EntityNotFoundError: If the project does not exist
        """
        project = self.get_by_id(project_id)
        if project is None:
            raise EntityNotFoundError("Project not found")
        return project

    @timed_query("list_ended_open_projects")
    def list_ended_open(self, now: Optional[datetime] = None) -> List[Project]:
        """List live or upcoming projects whose end date has passed."""
        now = now or _utcnow()
        query = select(Project).where(
            and_(
                Project.status.in_([ProjectStatus.LIVE.value, ProjectStatus.UPCOMING.value]),
                Project.end_date < now
            )
        ).order_by(Project.end_date)
        return list(self.session.execute(query).scalars().all())

    def set_status(self, project: Project, status: ProjectStatus) -> Project:
        project.status = status.value
        self.session.flush()
        return project


# ============================================
# KYC REPOSITORY
# ============================================

class KYCRepository:
    """Repository for KYC submissions."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, submission_id: UUID) -> Optional[KYCSubmission]:
        return self.session.get(KYCSubmission, submission_id)

    def get_latest(self, wallet_address: str) -> Optional[KYCSubmission]:
        """Most recent submission for a wallet, any status."""
        query = select(KYCSubmission).where(
            KYCSubmission.wallet_address == normalize_address(wallet_address)
        ).order_by(KYCSubmission.submitted_at.desc(), KYCSubmission.created_at.desc()).limit(1)
        return self.session.execute(query).scalars().first()

    @timed_query("get_latest_approved_kyc")
    def get_latest_approved(self, wallet_address: str) -> Optional[KYCSubmission]:
        """
        Most recent approved submission for a wallet.

        Args:
            wallet_address: Wallet address in any letter case

        Returns:
            KYCSubmission or None
        """
        query = select(KYCSubmission).where(
            and_(
                KYCSubmission.wallet_address == normalize_address(wallet_address),
                KYCSubmission.status == KYCStatus.APPROVED.value
            )
        ).order_by(
            func.coalesce(KYCSubmission.reviewed_at, KYCSubmission.submitted_at).desc()
        ).limit(1)
        return self.session.execute(query).scalars().first()

    def create(self, data: Dict[str, Any]) -> KYCSubmission:
        data = dict(data)
        data['wallet_address'] = normalize_address(data.get('wallet_address'))
        data.setdefault('submitted_at', _utcnow())
        submission = KYCSubmission(**data)
        self.session.add(submission)
        self.session.flush()
        logger.debug(f"Created KYC submission: {submission.id} ({submission.wallet_address})")
        return submission

    def update(self, submission: KYCSubmission, updates: Dict[str, Any]) -> KYCSubmission:
        for key, value in updates.items():
            if key in ('id', 'wallet_address', 'created_at'):
                continue
            setattr(submission, key, value)
        self.session.flush()
        return submission


# ============================================
# ELIGIBILITY REPOSITORY
# ============================================

class EligibilityRepository:
    """Repository for the per-wallet eligibility verdict."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, wallet_address: str) -> Optional[EligibilityCheck]:
        query = select(EligibilityCheck).where(
            EligibilityCheck.wallet_address == normalize_address(wallet_address)
        )
        return self.session.execute(query).scalars().first()

    @timed_query("upsert_eligibility")
    def upsert(
        self,
        wallet_address: str,
        kyc_approved: bool,
        geo_blocked: bool,
        sanctions_check: bool,
        country_code: Optional[str] = None,
        ip_address: Optional[str] = None,
        checked_at: Optional[datetime] = None
    ) -> EligibilityCheck:
        """
        Insert or replace the verdict row for a wallet.

        A concurrent insert for the same wallet surfaces as an IntegrityError
        inside the savepoint; the row is then re-read and updated.
        """
        wallet = normalize_address(wallet_address)
        values = {
            'kyc_approved': kyc_approved,
            'geo_blocked': geo_blocked,
            'sanctions_check': sanctions_check,
            'country_code': country_code,
            'last_checked_at': checked_at or _utcnow(),
        }
        if ip_address is not None:
            values['ip_address'] = ip_address

        record = self.get(wallet)
        if record is None:
            try:
                with self.session.begin_nested():
                    record = EligibilityCheck(wallet_address=wallet, **values)
                    self.session.add(record)
                    self.session.flush()
                return record
            except IntegrityError:
                logger.info(f"Concurrent eligibility insert for {wallet}, updating instead")
                record = self.get(wallet)
                if record is None:
                    raise

        for key, value in values.items():
            setattr(record, key, value)
        self.session.flush()
        return record


# ============================================
# QUEUE REPOSITORIES
# ============================================

class QueueTicketRepository:
    """Repository for sale queue tickets."""

    def __init__(self, session: Session):
        self.session = session

    def get_by_id(self, ticket_id: UUID) -> Optional[QueueTicket]:
        return self.session.get(QueueTicket, ticket_id)

    def get_or_raise(self, ticket_id: UUID) -> QueueTicket:
        ticket = self.get_by_id(ticket_id)
        if ticket is None:
            raise EntityNotFoundError("Ticket not found")
        return ticket

    def get_waiting(self, wallet_address: str, project_id: UUID) -> Optional[QueueTicket]:
        query = select(QueueTicket).where(
            and_(
                QueueTicket.wallet_address == normalize_address(wallet_address),
                QueueTicket.project_id == project_id,
                QueueTicket.status == TicketStatus.WAITING.value
            )
        )
        return self.session.execute(query).scalars().first()

    @timed_query("count_waiting")
    def count_waiting(self, project_id: UUID) -> int:
        query = select(func.count()).select_from(QueueTicket).where(
            and_(
                QueueTicket.project_id == project_id,
                QueueTicket.status == TicketStatus.WAITING.value
            )
        )
        return self.session.execute(query).scalar_one()

    @timed_query("count_waiting_ahead")
    def count_waiting_ahead(
        self,
        project_id: UUID,
        position: int,
        created_at: Optional[datetime] = None
    ) -> int:
        """
        Count waiting tickets ahead of a stored position.

        Stored positions can repeat after a leave, so tickets sharing a
        position are ordered by creation time when created_at is given.
        """
        ahead = QueueTicket.position < position
        if created_at is not None:
            ahead = or_(
                ahead,
                and_(QueueTicket.position == position, QueueTicket.created_at < created_at)
            )
        query = select(func.count()).select_from(QueueTicket).where(
            and_(
                QueueTicket.project_id == project_id,
                QueueTicket.status == TicketStatus.WAITING.value,
                ahead
            )
        )
        return self.session.execute(query).scalar_one()

    def create(
        self,
        wallet_address: str,
        project_id: UUID,
        priority: bool,
        position: int,
        expires_at: datetime
    ) -> QueueTicket:
        """
        Insert a waiting ticket.

        Raises:
            DuplicateEntityError: If the wallet already holds a waiting ticket
                for the project
        """
        ticket = QueueTicket(
            wallet_address=normalize_address(wallet_address),
            project_id=project_id,
            priority=priority,
            position=position,
            status=TicketStatus.WAITING.value,
            expires_at=expires_at,
            created_at=datetime.now(timezone.utc),
        )
        try:
            with self.session.begin_nested():
                self.session.add(ticket)
                self.session.flush()
        except IntegrityError as e:
            raise DuplicateEntityError(f"Waiting ticket already exists: {e.orig}")
        return ticket

    def expire(self, ticket_id: UUID) -> bool:
        """
        Mark a ticket expired.

        Returns:
            True if a ticket with that id exists
        """
        ticket = self.get_by_id(ticket_id)
        if ticket is None:
            return False
        ticket.status = TicketStatus.EXPIRED.value
        self.session.flush()
        return True


class WhitelistRepository:
    """Read-only access to the priority whitelist."""

    def __init__(self, session: Session):
        self.session = session

    def is_whitelisted(self, wallet_address: str, project_id: UUID) -> bool:
        query = select(func.count()).select_from(PriorityWhitelist).where(
            and_(
                PriorityWhitelist.wallet_address == normalize_address(wallet_address),
                PriorityWhitelist.project_id == project_id
            )
        )
        return self.session.execute(query).scalar_one() > 0


# ============================================
# INVESTMENT AND DISTRIBUTION REPOSITORIES
# ============================================

class InvestmentRepository:
    """Read-only access to user investments."""

    def __init__(self, session: Session):
        self.session = session

    @timed_query("list_pending_distributions")
    def list_pending(self, project_id: UUID, limit: Optional[int] = None) -> List[UserInvestment]:
        """
        Active investments awaiting distribution, in creation order.

        Args:
            project_id: Project UUID
            limit: Maximum rows to fetch (None for all)
        """
        query = select(UserInvestment).where(
            and_(
                UserInvestment.project_id == project_id,
                UserInvestment.status == InvestmentStatus.ACTIVE.value
            )
        ).order_by(UserInvestment.created_at, UserInvestment.id)
        if limit is not None:
            query = query.limit(limit)
        return list(self.session.execute(query).scalars().all())

    def list_by_project(self, project_id: UUID) -> List[UserInvestment]:
        query = select(UserInvestment).where(
            UserInvestment.project_id == project_id
        ).order_by(UserInvestment.created_at, UserInvestment.id)
        return list(self.session.execute(query).scalars().all())


class DistributionJobRepository:
    """Repository for distribution jobs."""

    def __init__(self, session: Session):
        self.session = session

    def create(
        self,
        project_id: UUID,
        batches: List[Dict[str, Any]],
        total_recipients: int,
        total_tokens: float,
        batch_size: int
    ) -> DistributionJob:
        job = DistributionJob(
            project_id=project_id,
            total_batches=len(batches),
            total_recipients=total_recipients,
            total_tokens=total_tokens,
            batch_size=batch_size,
            batches=batches,
            status=JobStatus.PENDING.value,
            completed_batches=0,
        )
        self.session.add(job)
        self.session.flush()
        return job

    def get_by_id(self, job_id: UUID) -> Optional[DistributionJob]:
        return self.session.get(DistributionJob, job_id)

    def get_or_raise(self, job_id: UUID) -> DistributionJob:
        job = self.get_by_id(job_id)
        if job is None:
            raise EntityNotFoundError("Distribution job not found")
        return job

    def list(
        self,
        project_id: Optional[UUID] = None,
        status: Optional[JobStatus] = None,
        limit: int = 100
    ) -> List[DistributionJob]:
        query = select(DistributionJob)
        if project_id is not None:
            query = query.where(DistributionJob.project_id == project_id)
        if status is not None:
            query = query.where(DistributionJob.status == status.value)
        query = query.order_by(DistributionJob.created_at.desc()).limit(limit)
        return list(self.session.execute(query).scalars().all())


# ============================================
# AUDIT AND WEBHOOK REPOSITORIES
# ============================================

class AuditRepository:
    """Repository for the administrative audit trail."""

    def __init__(self, session: Session):
        self.session = session

    def log(
        self,
        action: AuditAction,
        details: Optional[Dict[str, Any]] = None,
        actor: Optional[str] = None,
        target: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> AdminAuditLog:
        """
        Append an audit entry in the caller's transaction.

        Args:
            action: Audited action
            details: JSON-serializable details
            actor: Admin or system actor identifier
            target: Affected wallet/project/job identifier
        """
        entry = AdminAuditLog(
            action=action.value,
            details=details,
            actor=actor,
            target=target,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def search(
        self,
        action: Optional[AuditAction] = None,
        target: Optional[str] = None,
        limit: int = 100
    ) -> List[AdminAuditLog]:
        query = select(AdminAuditLog)
        if action is not None:
            query = query.where(AdminAuditLog.action == action.value)
        if target is not None:
            query = query.where(AdminAuditLog.target == target)
        query = query.order_by(AdminAuditLog.created_at.desc()).limit(limit)
        return list(self.session.execute(query).scalars().all())


class WebhookEventRepository:
    """Repository for inbound provider webhooks."""

    def __init__(self, session: Session):
        self.session = session

    def record(
        self,
        provider: str,
        event_type: str,
        payload: Dict[str, Any],
        signature: Optional[str],
        status: str = "processed",
        error_message: Optional[str] = None
    ) -> WebhookEvent:
        event = WebhookEvent(
            provider=provider,
            event_type=event_type,
            payload=payload,
            signature=signature,
            status=status,
            error_message=error_message,
            processed_at=_utcnow() if status == "processed" else None,
        )
        self.session.add(event)
        self.session.flush()
        return event


# ============================================
# SALE RECORDS (report export)
# ============================================

class SaleRecordsRepository:
    """Read-only access to the on-chain mirror tables of a sale."""

    def __init__(self, session: Session):
        self.session = session

    def list_transactions(self, project_id: UUID) -> List[Transaction]:
        query = select(Transaction).where(
            Transaction.project_id == project_id
        ).order_by(Transaction.created_at.asc())
        return list(self.session.execute(query).scalars().all())

    def list_vesting_schedules(self, project_id: UUID) -> List[VestingSchedule]:
        query = select(VestingSchedule).where(
            VestingSchedule.project_id == project_id
        ).order_by(VestingSchedule.start_time.asc())
        return list(self.session.execute(query).scalars().all())

    def list_liquidity_locks(self, project_id: UUID) -> List[LiquidityLock]:
        query = select(LiquidityLock).where(
            LiquidityLock.project_id == project_id
        ).order_by(LiquidityLock.lock_id.asc())
        return list(self.session.execute(query).scalars().all())
