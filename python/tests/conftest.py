"""
Shared fixtures: in-memory SQLite database, seeded records and an API client.
"""

import sys
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from database.connection import create_test_provider, DatabaseSessionProvider
from database.models import (
    Project,
    KYCSubmission,
    UserInvestment,
    PriorityWhitelist,
    ProjectStatus,
    KYCStatus,
)
from security_logger import get_security_logger, reset_security_logger


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN; emit it ourselves so SAVEPOINTs nest correctly
    @event.listens_for(engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    yield engine
    engine.dispose()


@pytest.fixture
def db_provider(engine) -> Generator[DatabaseSessionProvider, None, None]:
    provider = create_test_provider(engine=engine)
    provider.init()
    provider.create_tables()
    yield provider
    provider.close()


@pytest.fixture
def session(db_provider) -> Generator[Session, None, None]:
    session = db_provider.session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def config(tmp_path) -> ConfigManager:
    """Config with a signing secret for the 'persona' provider."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text(
        "eligibility:\n"
        "  blocked_countries: [US, CN, IR, KP, SY]\n"
        "kyc:\n"
        "  webhook_secrets:\n"
        "    persona: test-secret\n"
        "  allow_unsigned_webhooks: false\n",
        encoding="utf-8",
    )
    return ConfigManager(str(config_file))


@pytest.fixture(autouse=True)
def security_logger():
    """Console-free, file-free security logger for every test."""
    reset_security_logger()
    logger = get_security_logger(enable_file=False)
    yield logger
    reset_security_logger()


# ============================================
# SEED HELPERS
# ============================================

def make_project(session: Session, **overrides) -> Project:
    now = datetime.now(timezone.utc)
    values = dict(
        name="Test Token Sale",
        symbol="TTS",
        status=ProjectStatus.LIVE.value,
        start_date=now - timedelta(days=7),
        end_date=now + timedelta(days=7),
        goal_amount=100.0,
        soft_cap=50.0,
        hard_cap=100.0,
        raised_amount=0.0,
        participants_count=0,
    )
    values.update(overrides)
    project = Project(**values)
    session.add(project)
    session.flush()
    return project


def make_kyc(session: Session, wallet: str, status: str = KYCStatus.APPROVED.value,
             country: str = "DE", **overrides) -> KYCSubmission:
    now = datetime.now(timezone.utc)
    values = dict(
        wallet_address=wallet.lower(),
        full_name="Alice Example",
        email="alice@example.com",
        country=country,
        document_type="passport",
        status=status,
        submitted_at=now,
        reviewed_at=now if status != KYCStatus.PENDING.value else None,
    )
    values.update(overrides)
    submission = KYCSubmission(**values)
    session.add(submission)
    session.flush()
    return submission


def make_investments(session: Session, project_id: uuid.UUID, count: int,
                     tokens: float = 10.0, status: str = "active") -> list:
    base = datetime(2026, 1, 1, tzinfo=timezone.utc)
    investments = []
    for i in range(count):
        inv = UserInvestment(
            wallet_address=f"0x{i:040x}",
            project_id=project_id,
            amount_eth=0.1,
            amount_usd=250.0,
            tokens_received=tokens + i,
            status=status,
            created_at=base + timedelta(seconds=i),
            updated_at=base + timedelta(seconds=i),
        )
        session.add(inv)
        investments.append(inv)
    session.flush()
    return investments


def make_whitelist(session: Session, wallet: str, project_id: uuid.UUID) -> PriorityWhitelist:
    entry = PriorityWhitelist(wallet_address=wallet.lower(), project_id=project_id)
    session.add(entry)
    session.flush()
    return entry


@pytest.fixture
def project(session) -> Project:
    project = make_project(session)
    session.commit()
    return project
