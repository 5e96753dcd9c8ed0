"""Initial dispute mirror schema

Revision ID: 0001
Revises:
Create Date: 2026-10-18 09:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = '0001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create accounts, disputes, history, messages, sync logs and settings."""

    # PayPal accounts (credentials are stored encrypted)
    op.create_table('paypal_accounts',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('account_name', sa.Text(), nullable=False),
        sa.Column('email', sa.Text()),
        sa.Column('client_id', sa.Text(), nullable=False),
        sa.Column('secret_key', sa.Text(), nullable=False),
        sa.Column('sandbox_mode', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('last_sync_at', sa.DateTime(timezone=True)),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_paypal_accounts_active', 'paypal_accounts', ['active'])

    # Disputes
    op.create_table('disputes',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('dispute_id', sa.Text(), nullable=False),
        sa.Column('paypal_account_id', sa.String(length=36), nullable=False),
        sa.Column('transaction_id', sa.Text()),
        sa.Column('invoice_number', sa.Text()),
        sa.Column('dispute_amount', sa.Numeric(12, 2)),
        sa.Column('dispute_currency', sa.String(length=3)),
        sa.Column('customer_email', sa.Text()),
        sa.Column('customer_name', sa.Text()),
        sa.Column('dispute_type', sa.Text()),
        sa.Column('dispute_reason', sa.Text()),
        sa.Column('dispute_status', sa.Text()),
        sa.Column('dispute_outcome', sa.Text()),
        sa.Column('outcome_category', sa.Text()),
        sa.Column('outcome_map_version', sa.Integer()),
        sa.Column('outcome_needs_review', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('dispute_channel', sa.Text()),
        sa.Column('dispute_create_time', sa.DateTime(timezone=True)),
        sa.Column('dispute_update_time', sa.DateTime(timezone=True)),
        sa.Column('response_due_date', sa.DateTime(timezone=True)),
        sa.Column('resolved_at', sa.DateTime(timezone=True)),
        sa.Column('raw_data', postgresql.JSONB(astext_type=sa.Text())),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['paypal_account_id'], ['paypal_accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dispute_id')
    )
    op.create_index('ix_disputes_account', 'disputes', ['paypal_account_id'])
    op.create_index('ix_disputes_status', 'disputes', ['dispute_status'])
    op.create_index('ix_disputes_update_time', 'disputes', ['dispute_update_time'])
    op.create_index('ix_disputes_needs_review', 'disputes', ['outcome_needs_review'])

    # Dispute history (append-only)
    op.create_table('dispute_history',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('dispute_id', sa.BigInteger(), nullable=False),
        sa.Column('action_type', sa.Text(), nullable=False),
        sa.Column('action_by', sa.Text(), nullable=False),
        sa.Column('old_value', sa.Text()),
        sa.Column('new_value', sa.Text()),
        sa.Column('description', sa.Text()),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text())),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['dispute_id'], ['disputes.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_dispute_history_dispute', 'dispute_history', ['dispute_id', 'created_at'])

    # Dispute messages
    op.create_table('dispute_messages',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('dispute_id', sa.BigInteger(), nullable=False),
        sa.Column('message_type', sa.Text(), nullable=False),
        sa.Column('posted_by', sa.Text()),
        sa.Column('content', sa.Text()),
        sa.Column('content_hash', sa.String(length=64), nullable=False),
        sa.Column('attachments', postgresql.JSONB(astext_type=sa.Text())),
        sa.Column('posted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['dispute_id'], ['disputes.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('dispute_id', 'posted_at', 'content_hash', name='uq_dispute_messages_natural_key')
    )

    # Sync run log
    op.create_table('sync_logs',
        sa.Column('id', sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column('paypal_account_id', sa.String(length=36), nullable=False),
        sa.Column('sync_type', sa.Text(), nullable=False),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('records_fetched', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('disputes_synced', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('disputes_created', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('disputes_updated', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_skipped', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('records_failed', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('pages_fetched', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('errors', sa.Text()),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True)),
        sa.ForeignKeyConstraint(['paypal_account_id'], ['paypal_accounts.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('ix_sync_logs_account_started', 'sync_logs', ['paypal_account_id', 'started_at'])
    op.create_index('ix_sync_logs_status', 'sync_logs', ['status'])

    # Settings (scheduler reads category "sync")
    op.create_table('settings',
        sa.Column('key', sa.String(length=100), nullable=False),
        sa.Column('value', sa.Text()),
        sa.Column('category', sa.String(length=50), nullable=False, server_default='general'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('key')
    )


def downgrade() -> None:
    """Drop all dispute mirror tables."""
    op.drop_table('settings')
    op.drop_table('sync_logs')
    op.drop_table('dispute_messages')
    op.drop_table('dispute_history')
    op.drop_table('disputes')
    op.drop_table('paypal_accounts')
