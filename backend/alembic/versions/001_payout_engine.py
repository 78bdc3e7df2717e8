"""Commission ledger, payout requests and payout settings

Revision ID: 001_payout_engine
Revises: None
Create Date: 2026-10-18
"""
from alembic import op
import sqlalchemy as sa

revision = '001_payout_engine'
down_revision = None
branch_labels = None
depends_on = None

OUTSTANDING = sa.text("status IN ('pending', 'approved', 'on_hold')")
ACTIVE_ORIGINAL = sa.text("split_from_id IS NULL AND status IN ('pending', 'paid')")


def upgrade():
    op.create_table(
        'users',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(), nullable=False),
        sa.Column('full_name', sa.String(), nullable=True),
        sa.Column('phone', sa.String(), nullable=True),
        sa.Column('role', sa.String(), nullable=False, server_default='customer'),
        sa.Column('is_active', sa.Boolean(), server_default=sa.true()),
        sa.Column('payout_hold', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('payout_hold_reason', sa.Text(), nullable=True),
        sa.Column('payout_hold_set_by', sa.String(), nullable=True),
        sa.Column('payout_hold_set_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('payout_daily_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payout_daily_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('payout_daily_reset_on', sa.Date(), nullable=True),
        sa.Column('payout_weekly_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payout_weekly_amount', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('payout_weekly_reset_on', sa.Date(), nullable=True),
        sa.Column('ledger_version', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_number', sa.String(), nullable=False),
        sa.Column('total_price', sa.Numeric(12, 2), nullable=False),
        sa.Column('item_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('created_by', sa.String(), nullable=False, server_default='customer'),
        sa.Column('agent_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('assigned_agent_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_orders_id', 'orders', ['id'])
    op.create_index('ix_orders_order_number', 'orders', ['order_number'], unique=True)
    op.create_index('ix_orders_agent_id', 'orders', ['agent_id'])
    op.create_index('ix_orders_assigned_agent_id', 'orders', ['assigned_agent_id'])

    op.create_table(
        'payout_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('min_withdrawal_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('max_withdrawal_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('delivery_commission_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('agent_order_commission_rate', sa.Numeric(5, 4), nullable=False),
        sa.Column('schedule_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('schedule_day_of_week', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('schedule_start_time', sa.String(5), nullable=False, server_default='07:00'),
        sa.Column('schedule_end_time', sa.String(5), nullable=False, server_default='23:59'),
        sa.Column('global_payout_hold', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('hold_reason', sa.Text(), server_default=''),
        sa.Column('processing_fee', sa.Numeric(12, 2), nullable=False, server_default='0'),
        sa.Column('auto_approval_threshold', sa.Numeric(12, 2), nullable=False),
        sa.Column('require_manager_approval', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('max_requests_per_day', sa.Integer(), nullable=False),
        sa.Column('max_amount_per_day', sa.Numeric(12, 2), nullable=False),
        sa.Column('max_requests_per_week', sa.Integer(), nullable=False),
        sa.Column('max_amount_per_week', sa.Numeric(12, 2), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('last_modified_by', sa.String(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        'payout_settings_history',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('settings_id', sa.Integer(), sa.ForeignKey('payout_settings.id'), nullable=False),
        sa.Column('version', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.String(), nullable=True),
        sa.Column('changed_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('changes', sa.JSON(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
    )
    op.create_index('ix_payout_settings_history_id', 'payout_settings_history', ['id'])
    op.create_index('ix_payout_settings_history_settings_id', 'payout_settings_history', ['settings_id'])

    op.create_table(
        'payout_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('agent_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('method', sa.String(), nullable=False),
        sa.Column('account_details', sa.String(), nullable=False),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_by', sa.String(), nullable=True),
        sa.Column('notes', sa.Text(), server_default=''),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('commission_ids', sa.JSON(), nullable=True),
        sa.Column('auto_approved', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('auto_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('auto_approval_threshold', sa.Numeric(12, 2), nullable=True),
        sa.Column('auto_processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('validation_warnings', sa.JSON(), nullable=True),
        sa.Column('validated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('settings_version', sa.Integer(), nullable=True),
        sa.Column('processing_fee', sa.Numeric(12, 2), server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_payout_requests_id', 'payout_requests', ['id'])
    op.create_index('ix_payout_requests_agent_id', 'payout_requests', ['agent_id'])
    op.create_index('ix_payout_requests_status', 'payout_requests', ['status'])
    op.create_index('ix_payout_requests_agent_created', 'payout_requests', ['agent_id', 'created_at'])
    op.create_index(
        'uq_payout_requests_one_outstanding', 'payout_requests', ['agent_id'],
        unique=True, postgresql_where=OUTSTANDING, sqlite_where=OUTSTANDING,
    )

    op.create_table(
        'commissions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('order_id', sa.Integer(), sa.ForeignKey('orders.id'), nullable=False),
        sa.Column('agent_id', sa.Integer(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('type', sa.String(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('order_total', sa.Numeric(12, 2), nullable=False),
        sa.Column('commission_rate', sa.Numeric(12, 4), nullable=False),
        sa.Column('is_fixed_amount', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('delivery_count', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('status', sa.String(), nullable=False, server_default='pending'),
        sa.Column('payout_request_id', sa.Integer(), sa.ForeignKey('payout_requests.id'), nullable=True),
        sa.Column('split_from_id', sa.Integer(), sa.ForeignKey('commissions.id'), nullable=True),
        sa.Column('settings_version', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index('ix_commissions_id', 'commissions', ['id'])
    op.create_index('ix_commissions_order_id', 'commissions', ['order_id'])
    op.create_index('ix_commissions_agent_id', 'commissions', ['agent_id'])
    op.create_index('ix_commissions_payout_request_id', 'commissions', ['payout_request_id'])
    op.create_index('ix_commissions_split_from_id', 'commissions', ['split_from_id'])
    op.create_index('ix_commissions_agent_status_created', 'commissions', ['agent_id', 'status', 'created_at'])
    op.create_index(
        'uq_commissions_active_order_agent_type', 'commissions', ['order_id', 'agent_id', 'type'],
        unique=True, postgresql_where=ACTIVE_ORIGINAL, sqlite_where=ACTIVE_ORIGINAL,
    )


def downgrade():
    op.drop_table('commissions')
    op.drop_table('payout_requests')
    op.drop_table('payout_settings_history')
    op.drop_table('payout_settings')
    op.drop_table('orders')
    op.drop_table('users')
