"""
SQLAlchemy ORM Models for the Launchpad Gate service

This module defines the relational schema the request handlers read and write:
- Portable column types (Uuid, JSON with a JSONB variant on PostgreSQL) so the
  same models run on PostgreSQL in production and SQLite in tests
- Natural keys on wallet addresses, always stored lowercased
- Timestamps for all mutable records (created_at, updated_at)

Tables:
1. projects - Token sale projects (read by the planner, report and sweep)
2. kyc_submissions - KYC records per wallet
3. eligibility_checks - Last computed eligibility verdict per wallet
4. queue_tickets - Admission queue tickets per sale
5. priority_whitelist - Wallets granted priority queue access
6. user_investments - Investments produced by the (external) investment flow
7. distribution_jobs - Persisted batch distribution plans
8. admin_audit_log - Audit trail of administrative actions
9. webhook_events - Inbound provider webhook log
10. transactions - On-chain transaction mirror (report export)
11. vesting_schedules - Vesting schedules mirror (report export)
12. liquidity_locks - Liquidity locks mirror (report export)
"""

import re
import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, Float, Index, Integer, String, Text, Uuid,
    UniqueConstraint, text
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, declarative_base, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()

# JSON payload column: JSONB on PostgreSQL, plain JSON elsewhere
JSONPayload = JSON().with_variant(JSONB(), "postgresql")


# ============================================
# ENUMS
# ============================================

class KYCStatus(str, PyEnum):
    """Status of a KYC submission"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class TicketStatus(str, PyEnum):
    """Status of a queue ticket"""
    WAITING = "waiting"
    ACTIVE = "active"
    EXPIRED = "expired"


class InvestmentStatus(str, PyEnum):
    """Status of a user investment"""
    ACTIVE = "active"
    DISTRIBUTED = "distributed"
    REFUNDED = "refunded"


class JobStatus(str, PyEnum):
    """Status of a distribution job"""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ProjectStatus(str, PyEnum):
    """Lifecycle status of a sale project"""
    UPCOMING = "upcoming"
    LIVE = "live"
    SUCCESS = "success"
    FAILED = "failed"


class AuditAction(str, PyEnum):
    """Type of audited administrative action"""
    CREATE_DISTRIBUTION_JOB = "create_distribution_job"
    UPDATE_DISTRIBUTION_JOB = "update_distribution_job"
    APPROVE_KYC = "approve_kyc"
    REJECT_KYC = "reject_kyc"
    RESET_KYC = "reset_kyc"
    KYC_WEBHOOK = "kyc_webhook"
    UPDATE_PROJECT_STATUSES = "update_project_statuses"
    EXPORT_SALE_REPORT = "export_sale_report"


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


def _uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(Uuid, primary_key=True, default=uuid.uuid4)


# ============================================
# PROJECTS
# ============================================

class Project(Base, TimestampMixin):
    """
    A token sale listed on the launchpad.

    Sale mechanics live in external contracts; this row mirrors what the
    handlers need (caps, dates, raised amount) and the status lifecycle.
    """
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = _uuid_pk()
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    symbol: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=ProjectStatus.UPCOMING.value, index=True
    )

    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    goal_amount: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    soft_cap: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    hard_cap: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    raised_amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True, default=0.0)
    participants_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=0)

    contract_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    def __repr__(self) -> str:
        return f"<Project(id={self.id}, symbol='{self.symbol}', status={self.status})>"


# ============================================
# KYC AND ELIGIBILITY
# ============================================

class KYCSubmission(Base, TimestampMixin):
    """
    KYC record for a wallet.

    Created on user submission or provider webhook; mutated only by admin
    review or webhook; never deleted.
    """
    __tablename__ = "kyc_submissions"

    id: Mapped[uuid.UUID] = _uuid_pk()
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False)
    country: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    document_type: Mapped[str] = mapped_column(String(50), nullable=False, default="unknown")
    document_number: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=KYCStatus.PENDING.value, index=True
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reviewed_by: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    __table_args__ = (
        Index('ix_kyc_wallet_status', 'wallet_address', 'status'),
    )

    def __repr__(self) -> str:
        return f"<KYCSubmission(wallet='{self.wallet_address}', status={self.status})>"


class EligibilityCheck(Base):
    """
    Last computed eligibility verdict for a wallet.

    One row per wallet, upserted on every check.
    """
    __tablename__ = "eligibility_checks"

    id: Mapped[uuid.UUID] = _uuid_pk()
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    kyc_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    geo_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sanctions_check: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    country_code: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    last_checked_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    @property
    def eligible(self) -> bool:
        return self.kyc_approved and not self.geo_blocked and self.sanctions_check

    def __repr__(self) -> str:
        return f"<EligibilityCheck(wallet='{self.wallet_address}', eligible={self.eligible})>"


# ============================================
# QUEUE
# ============================================

class QueueTicket(Base, TimestampMixin):
    """
    Admission ticket for a sale queue.

    The stored position is assigned at creation and never renumbered; the
    displayed position is always recomputed from relative rank.
    """
    __tablename__ = "queue_tickets"

    id: Mapped[uuid.UUID] = _uuid_pk()
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    priority: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TicketStatus.WAITING.value
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index('ix_queue_project_status_position', 'project_id', 'status', 'position'),
        # At most one waiting ticket per wallet and project
        Index(
            'uq_queue_waiting_wallet_project',
            'wallet_address', 'project_id',
            unique=True,
            postgresql_where=text("status = 'waiting'"),
            sqlite_where=text("status = 'waiting'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<QueueTicket(id={self.id}, position={self.position}, status={self.status})>"


class PriorityWhitelist(Base):
    """Static allow-list granting queue priority for a project."""
    __tablename__ = "priority_whitelist"

    id: Mapped[uuid.UUID] = _uuid_pk()
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    added_by: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        UniqueConstraint('wallet_address', 'project_id', name='uq_whitelist_wallet_project'),
    )


# ============================================
# INVESTMENTS AND DISTRIBUTION
# ============================================

class UserInvestment(Base, TimestampMixin):
    """Investment record; status 'active' means eligible for distribution."""
    __tablename__ = "user_investments"

    id: Mapped[uuid.UUID] = _uuid_pk()
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)

    amount_eth: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    amount_usd: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    tokens_received: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvestmentStatus.ACTIVE.value
    )

    __table_args__ = (
        Index('ix_investment_project_status', 'project_id', 'status'),
    )

    def __repr__(self) -> str:
        return f"<UserInvestment(id={self.id}, wallet='{self.wallet_address}', tokens={self.tokens_received})>"


class DistributionJob(Base, TimestampMixin):
    """
    Persisted batch distribution plan.

    The batches payload is immutable after creation; only the execution
    status fields progress (manually).
    """
    __tablename__ = "distribution_jobs"

    id: Mapped[uuid.UUID] = _uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)

    total_batches: Mapped[int] = mapped_column(Integer, nullable=False)
    total_recipients: Mapped[int] = mapped_column(Integer, nullable=False)
    total_tokens: Mapped[float] = mapped_column(Float, nullable=False)
    batch_size: Mapped[int] = mapped_column(Integer, nullable=False)
    batches: Mapped[list] = mapped_column(JSONPayload, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=JobStatus.PENDING.value, index=True
    )
    completed_batches: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<DistributionJob(id={self.id}, batches={self.total_batches}, status={self.status})>"


# ============================================
# AUDIT AND WEBHOOKS
# ============================================

class AdminAuditLog(Base):
    """
    Audit trail of administrative actions.

    Immutable - no updates or deletes.
    """
    __tablename__ = "admin_audit_log"

    id: Mapped[uuid.UUID] = _uuid_pk()
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    actor: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    target: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    details: Mapped[Optional[dict]] = mapped_column(JSONPayload, nullable=True)
    ip_address: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<AdminAuditLog(id={self.id}, action='{self.action}')>"


class WebhookEvent(Base):
    """Inbound provider webhook, stored for audit."""
    __tablename__ = "webhook_events"

    id: Mapped[uuid.UUID] = _uuid_pk()
    provider: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSONPayload, nullable=False)
    signature: Mapped[Optional[str]] = mapped_column(String(256), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="received")
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


# ============================================
# ON-CHAIN MIRRORS (report export)
# ============================================

class Transaction(Base):
    """Mirror of a sale transaction."""
    __tablename__ = "transactions"

    id: Mapped[uuid.UUID] = _uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    transaction_type: Mapped[str] = mapped_column(String(50), nullable=False)
    from_address: Mapped[str] = mapped_column(String(64), nullable=False)
    amount_crypto: Mapped[str] = mapped_column(String(78), nullable=False)
    amount_usd: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    tx_hash: Mapped[str] = mapped_column(String(80), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )


class VestingSchedule(Base, TimestampMixin):
    """Mirror of an on-chain vesting schedule."""
    __tablename__ = "vesting_schedules"

    id: Mapped[uuid.UUID] = _uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    beneficiary_address: Mapped[str] = mapped_column(String(64), nullable=False)
    schedule_type: Mapped[str] = mapped_column(String(30), nullable=False)
    total_amount: Mapped[float] = mapped_column(Float, nullable=False)
    released_amount: Mapped[Optional[float]] = mapped_column(Float, nullable=True, default=0.0)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    cliff_duration: Mapped[int] = mapped_column(Integer, nullable=False)  # seconds
    vesting_duration: Mapped[int] = mapped_column(Integer, nullable=False)  # seconds
    revocable: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True, default=False)
    contract_address: Mapped[str] = mapped_column(String(64), nullable=False)


class LiquidityLock(Base, TimestampMixin):
    """Mirror of an on-chain liquidity lock."""
    __tablename__ = "liquidity_locks"

    id: Mapped[uuid.UUID] = _uuid_pk()
    project_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    lock_id: Mapped[int] = mapped_column(Integer, nullable=False)
    token_address: Mapped[str] = mapped_column(String(64), nullable=False)
    beneficiary_address: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[float] = mapped_column(Float, nullable=False)
    unlock_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    withdrawn: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True, default=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    contract_address: Mapped[str] = mapped_column(String(64), nullable=False)


# ============================================
# HELPER FUNCTIONS
# ============================================

def normalize_address(address: Optional[str]) -> str:
    """
    Normalize a wallet address for storage and lookups.

    Addresses are case-insensitive identities: '0xABC' and '0xabc' are the
    same wallet.

    Args:
        address: Wallet address (can be None)

    Returns:
        Trimmed, lowercased address, or empty string if address is None/empty
    """
    if not address:
        return ""
    return address.strip().lower()


_COUNTRY_RE = re.compile(r'^[A-Z]{2}$')


def normalize_country(country: Optional[str]) -> Optional[str]:
    """
    Normalize a country value to an uppercase code.

    Values that are not two-letter codes are kept (trimmed) so free-form
    provider values are not lost, but only ISO alpha-2 codes can match the
    denylist.
    """
    if not country:
        return None
    value = country.strip()
    if _COUNTRY_RE.match(value.upper()):
        return value.upper()
    return value


def utc_isoformat(value: Optional[datetime]) -> Optional[str]:
    """
    Render a stored timestamp as ISO-8601 UTC.

    SQLite hands back naive datetimes; every timestamp is written in UTC, so
    a missing tzinfo is read as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()
