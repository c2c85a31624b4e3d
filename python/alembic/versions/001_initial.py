"""Initial schema - Baseline migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-01 00:00:00.000000

Creates all tables of the Launchpad Gate service.
For existing databases, use `alembic stamp 001_initial` to mark as applied.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONPayload = sa.JSON().with_variant(postgresql.JSONB(), 'postgresql')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
    ]


def upgrade() -> None:
    """Create initial database schema."""

    # Projects
    op.create_table(
        'projects',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('name', sa.String(200), nullable=False),
        sa.Column('symbol', sa.String(20), nullable=False),
        sa.Column('description', sa.Text),
        sa.Column('status', sa.String(20), nullable=False, server_default='upcoming'),
        sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('goal_amount', sa.Float, nullable=False, server_default='0'),
        sa.Column('soft_cap', sa.Float),
        sa.Column('hard_cap', sa.Float),
        sa.Column('raised_amount', sa.Float, server_default='0'),
        sa.Column('participants_count', sa.Integer, server_default='0'),
        sa.Column('contract_address', sa.String(64)),
        *_timestamps()
    )
    op.create_index('ix_projects_status', 'projects', ['status'])
    op.create_index('ix_projects_end_date', 'projects', ['end_date'])

    # KYC submissions
    op.create_table(
        'kyc_submissions',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('wallet_address', sa.String(64), nullable=False),
        sa.Column('full_name', sa.String(200), nullable=False),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('country', sa.String(64)),
        sa.Column('document_type', sa.String(50), nullable=False, server_default='unknown'),
        sa.Column('document_number', sa.String(100)),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('rejection_reason', sa.Text),
        sa.Column('submitted_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('reviewed_at', sa.DateTime(timezone=True)),
        sa.Column('reviewed_by', sa.String(200)),
        *_timestamps()
    )
    op.create_index('ix_kyc_submissions_wallet_address', 'kyc_submissions', ['wallet_address'])
    op.create_index('ix_kyc_submissions_status', 'kyc_submissions', ['status'])
    op.create_index('ix_kyc_wallet_status', 'kyc_submissions', ['wallet_address', 'status'])

    # Eligibility verdicts (one per wallet)
    op.create_table(
        'eligibility_checks',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('wallet_address', sa.String(64), nullable=False, unique=True),
        sa.Column('kyc_approved', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('geo_blocked', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('sanctions_check', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('country_code', sa.String(64)),
        sa.Column('ip_address', sa.String(64)),
        sa.Column('last_checked_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now())
    )

    # Queue tickets
    op.create_table(
        'queue_tickets',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('wallet_address', sa.String(64), nullable=False),
        sa.Column('project_id', sa.Uuid, nullable=False),
        sa.Column('priority', sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column('position', sa.Integer, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='waiting'),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=False),
        *_timestamps()
    )
    op.create_index('ix_queue_tickets_project_id', 'queue_tickets', ['project_id'])
    op.create_index('ix_queue_project_status_position', 'queue_tickets',
                    ['project_id', 'status', 'position'])
    op.create_index(
        'uq_queue_waiting_wallet_project', 'queue_tickets',
        ['wallet_address', 'project_id'],
        unique=True,
        postgresql_where=sa.text("status = 'waiting'"),
        sqlite_where=sa.text("status = 'waiting'")
    )

    # Priority whitelist
    op.create_table(
        'priority_whitelist',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('wallet_address', sa.String(64), nullable=False),
        sa.Column('project_id', sa.Uuid, nullable=False),
        sa.Column('reason', sa.Text),
        sa.Column('added_by', sa.String(200)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.UniqueConstraint('wallet_address', 'project_id', name='uq_whitelist_wallet_project')
    )

    # User investments
    op.create_table(
        'user_investments',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('wallet_address', sa.String(64), nullable=False),
        sa.Column('project_id', sa.Uuid, nullable=False),
        sa.Column('amount_eth', sa.Float, nullable=False, server_default='0'),
        sa.Column('amount_usd', sa.Float),
        sa.Column('tokens_received', sa.Float, nullable=False, server_default='0'),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        *_timestamps()
    )
    op.create_index('ix_user_investments_wallet_address', 'user_investments', ['wallet_address'])
    op.create_index('ix_investment_project_status', 'user_investments', ['project_id', 'status'])

    # Distribution jobs
    op.create_table(
        'distribution_jobs',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, nullable=False),
        sa.Column('total_batches', sa.Integer, nullable=False),
        sa.Column('total_recipients', sa.Integer, nullable=False),
        sa.Column('total_tokens', sa.Float, nullable=False),
        sa.Column('batch_size', sa.Integer, nullable=False),
        sa.Column('batches', JSONPayload, nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('completed_batches', sa.Integer, nullable=False, server_default='0'),
        sa.Column('started_at', sa.DateTime(timezone=True)),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.Column('error_message', sa.Text),
        *_timestamps()
    )
    op.create_index('ix_distribution_jobs_project_id', 'distribution_jobs', ['project_id'])
    op.create_index('ix_distribution_jobs_status', 'distribution_jobs', ['status'])

    # Admin audit log (immutable)
    op.create_table(
        'admin_audit_log',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now()),
        sa.Column('action', sa.String(50), nullable=False),
        sa.Column('actor', sa.String(200)),
        sa.Column('target', sa.String(200)),
        sa.Column('details', JSONPayload),
        sa.Column('ip_address', sa.String(64)),
        sa.Column('user_agent', sa.String(500))
    )
    op.create_index('ix_admin_audit_log_created_at', 'admin_audit_log', ['created_at'])
    op.create_index('ix_admin_audit_log_action', 'admin_audit_log', ['action'])

    # Webhook events
    op.create_table(
        'webhook_events',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('provider', sa.String(50), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('payload', JSONPayload, nullable=False),
        sa.Column('signature', sa.String(256)),
        sa.Column('status', sa.String(20), nullable=False, server_default='received'),
        sa.Column('error_message', sa.Text),
        sa.Column('processed_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now())
    )
    op.create_index('ix_webhook_events_provider', 'webhook_events', ['provider'])

    # On-chain mirrors used by the sale report
    op.create_table(
        'transactions',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, nullable=False),
        sa.Column('transaction_type', sa.String(50), nullable=False),
        sa.Column('from_address', sa.String(64), nullable=False),
        sa.Column('amount_crypto', sa.String(78), nullable=False),
        sa.Column('amount_usd', sa.Float),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('tx_hash', sa.String(80), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.func.now())
    )
    op.create_index('ix_transactions_project_id', 'transactions', ['project_id'])

    op.create_table(
        'vesting_schedules',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, nullable=False),
        sa.Column('beneficiary_address', sa.String(64), nullable=False),
        sa.Column('schedule_type', sa.String(30), nullable=False),
        sa.Column('total_amount', sa.Float, nullable=False),
        sa.Column('released_amount', sa.Float, server_default='0'),
        sa.Column('start_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cliff_duration', sa.Integer, nullable=False),
        sa.Column('vesting_duration', sa.Integer, nullable=False),
        sa.Column('revocable', sa.Boolean, server_default=sa.false()),
        sa.Column('contract_address', sa.String(64), nullable=False),
        *_timestamps()
    )
    op.create_index('ix_vesting_schedules_project_id', 'vesting_schedules', ['project_id'])

    op.create_table(
        'liquidity_locks',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('project_id', sa.Uuid, nullable=False),
        sa.Column('lock_id', sa.Integer, nullable=False),
        sa.Column('token_address', sa.String(64), nullable=False),
        sa.Column('beneficiary_address', sa.String(64), nullable=False),
        sa.Column('amount', sa.Float, nullable=False),
        sa.Column('unlock_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('withdrawn', sa.Boolean, server_default=sa.false()),
        sa.Column('description', sa.Text),
        sa.Column('contract_address', sa.String(64), nullable=False),
        *_timestamps()
    )
    op.create_index('ix_liquidity_locks_project_id', 'liquidity_locks', ['project_id'])


def downgrade() -> None:
    """Drop all tables."""
    # Drop tables in reverse order
    op.drop_table('liquidity_locks')
    op.drop_table('vesting_schedules')
    op.drop_table('transactions')
    op.drop_table('webhook_events')
    op.drop_table('admin_audit_log')
    op.drop_table('distribution_jobs')
    op.drop_table('user_investments')
    op.drop_table('priority_whitelist')
    op.drop_table('queue_tickets')
    op.drop_table('eligibility_checks')
    op.drop_table('kyc_submissions')
    op.drop_table('projects')
