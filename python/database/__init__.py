"""
Database Package for the Launchpad Gate service

This package provides:
- SQLAlchemy ORM models for all tables
- FastAPI Dependency Injection for database sessions
- Repository pattern for data access
- Session-bound services (eligibility, queue, distribution, KYC, reports)
- Alembic integration for migrations
- Performance monitoring and query timing
"""

from database.models import (
    Base,
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
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    # FastAPI dependencies
    get_db,
    get_db_provider,
    # Initialization
    init_db,
    close_db,
    # Testing support
    create_test_provider,
)
from database.repositories import (
    RepositoryError,
    EntityNotFoundError,
    DuplicateEntityError,
)
from database.errors import (
    ServiceError,
    ValidationError,
    InvalidSignatureError,
)
from database.monitoring import (
    query_timer,
    timed_query,
    get_db_metrics,
    get_slow_query_report,
    reset_metrics,
    configure_monitoring,
    check_health,
    HealthStatus,
)

__all__ = [
    # Base
    'Base',
    # Models
    'Project',
    'KYCSubmission',
    'EligibilityCheck',
    'QueueTicket',
    'PriorityWhitelist',
    'UserInvestment',
    'DistributionJob',
    'AdminAuditLog',
    'WebhookEvent',
    'Transaction',
    'VestingSchedule',
    'LiquidityLock',
    # Enums and helpers
    'KYCStatus',
    'TicketStatus',
    'InvestmentStatus',
    'JobStatus',
    'ProjectStatus',
    'AuditAction',
    'normalize_address',
    # Database provider
    'DatabaseSessionProvider',
    'DatabaseSettings',
    # FastAPI dependencies
    'get_db',
    'get_db_provider',
    # Initialization
    'init_db',
    'close_db',
    # Testing support
    'create_test_provider',
    # Errors
    'RepositoryError',
    'EntityNotFoundError',
    'DuplicateEntityError',
    'ServiceError',
    'ValidationError',
    'InvalidSignatureError',
    # Monitoring
    'query_timer',
    'timed_query',
    'get_db_metrics',
    'get_slow_query_report',
    'reset_metrics',
    'configure_monitoring',
    'check_health',
    'HealthStatus',
]
