"""
Sale report CSV export.

Renders a project's header block followed by four sections: transaction
history, investor summary, vesting schedules and liquidity locks.
"""

import csv
import io
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from database.errors import ValidationError
from database.models import AuditAction, utc_isoformat
from database.repositories import (
    ProjectRepository,
    InvestmentRepository,
    SaleRecordsRepository,
    AuditRepository,
)

logger = logging.getLogger(__name__)

SECONDS_PER_DAY = 86400

TRANSACTION_HEADER = ['Timestamp', 'Type', 'From Address', 'Amount Crypto', 'Amount USD', 'Status', 'TX Hash']
INVESTOR_HEADER = ['Wallet Address', 'Amount ETH', 'Amount USD', 'Tokens Received', 'Status', 'Date']
VESTING_HEADER = [
    'Beneficiary', 'Type', 'Total Amount', 'Released', 'Start Time',
    'Cliff (days)', 'Duration (days)', 'Revocable', 'Contract'
]
LOCK_HEADER = ['Token', 'Beneficiary', 'Amount', 'Unlock Time', 'Withdrawn', 'Description', 'Contract']


@dataclass
class SaleReport:
    """Rendered CSV report"""
    filename: str
    content: str


def _or_na(value: Any) -> Any:
    return 'N/A' if value is None or value == '' else value


def _fmt_bool(value: Optional[bool]) -> str:
    return 'true' if value else 'false'


class ReportService:
    """Session-bound sale report export."""

    def __init__(self, session: Session):
        self.session = session
        self.projects = ProjectRepository(session)
        self.investments = InvestmentRepository(session)
        self.records = SaleRecordsRepository(session)
        self.audit = AuditRepository(session)

    def export_sale_report(self, project_id: UUID, actor: Optional[str] = None) -> SaleReport:
        """
        Build the CSV report for a project.

        Raises:
            ValidationError: If the project id is missing
            EntityNotFoundError: If the project does not exist
        """
        if project_id is None:
            raise ValidationError("Project ID is required")

        project = self.projects.get_or_raise(project_id)
        logger.info(f"Generating sale report for project {project_id}")

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator='\n')

        writer.writerow(['Sale Report'])
        writer.writerow([f"Project: {project.name} ({project.symbol})"])
        writer.writerow([f"Status: {project.status}"])
        writer.writerow([f"Raised: {project.raised_amount or 0} / {project.goal_amount}"])
        writer.writerow([f"Participants: {project.participants_count or 0}"])
        writer.writerow([])

        writer.writerow(['Transaction History'])
        writer.writerow(TRANSACTION_HEADER)
        for tx in self.records.list_transactions(project_id):
            writer.writerow([
                utc_isoformat(tx.created_at),
                tx.transaction_type,
                tx.from_address,
                tx.amount_crypto,
                _or_na(tx.amount_usd),
                tx.status,
                tx.tx_hash,
            ])
        writer.writerow([])

        writer.writerow(['Investor Summary'])
        writer.writerow(INVESTOR_HEADER)
        for inv in self.investments.list_by_project(project_id):
            writer.writerow([
                inv.wallet_address,
                inv.amount_eth,
                _or_na(inv.amount_usd),
                inv.tokens_received,
                inv.status,
                utc_isoformat(inv.created_at),
            ])
        writer.writerow([])

        writer.writerow(['Vesting Schedules'])
        writer.writerow(VESTING_HEADER)
        for vest in self.records.list_vesting_schedules(project_id):
            writer.writerow([
                vest.beneficiary_address,
                vest.schedule_type,
                vest.total_amount,
                vest.released_amount or 0,
                utc_isoformat(vest.start_time),
                vest.cliff_duration // SECONDS_PER_DAY,
                vest.vesting_duration // SECONDS_PER_DAY,
                _fmt_bool(vest.revocable),
                vest.contract_address,
            ])
        writer.writerow([])

        writer.writerow(['Liquidity Locks'])
        writer.writerow(LOCK_HEADER)
        for lock in self.records.list_liquidity_locks(project_id):
            writer.writerow([
                lock.token_address,
                lock.beneficiary_address,
                lock.amount,
                utc_isoformat(lock.unlock_time),
                _fmt_bool(lock.withdrawn),
                _or_na(lock.description),
                lock.contract_address,
            ])

        self.audit.log(
            AuditAction.EXPORT_SALE_REPORT,
            details={"project_id": str(project_id)},
            actor=actor,
            target=str(project_id),
        )

        filename = f"{project.symbol}_sale_report_{int(time.time() * 1000)}.csv"
        logger.info(f"Sale report generated: {filename}")
        return SaleReport(filename=filename, content=buffer.getvalue())
