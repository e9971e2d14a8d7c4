"""pledge engine initial schema

Revision ID: 001
Revises:
Create Date: 2026-10-19 10:00:00.000000+05:30

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def _enum(*values, name):
    return sa.Enum(*values, name=name, native_enum=False, length=32)


SESSION_MODE = ('buy_only', 'sell_only', 'buy_sell_cycle')
EXECUTION_RULE = ('immediate', 'session_end', 'manual')
FEE_TYPE = ('flat', 'percentage')
SESSION_STATUS = (
    'draft', 'active', 'closed', 'executing',
    'awaiting_sell_execution', 'completed', 'cancelled',
)
PLEDGE_SIDE = ('buy', 'sell')
PLEDGE_STATUS = ('pending', 'ready_for_execution', 'paid', 'executed', 'failed')
EXECUTION_STATUS = ('completed', 'failed')
ACTOR_ROLE = ('admin', 'system', 'user')


def upgrade() -> None:
    op.create_table(
        'pledge_session',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('stock_symbol', sa.String(length=20), nullable=False),
        sa.Column('stock_name', sa.String(length=200), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('session_mode', _enum(*SESSION_MODE, name='session_mode'), nullable=False),
        sa.Column('execution_rule', _enum(*EXECUTION_RULE, name='execution_rule'), nullable=False),
        sa.Column('allow_amo', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('convenience_fee_type', _enum(*FEE_TYPE, name='fee_type'), nullable=False, server_default='flat'),
        sa.Column('convenience_fee_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('min_qty', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('max_qty', sa.Integer(), nullable=True),
        sa.Column('capacity', sa.Integer(), nullable=True),
        sa.Column('stock_price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('commission_rate', sa.Numeric(precision=6, scale=3), nullable=True),
        sa.Column('session_start', sa.DateTime(), nullable=True),
        sa.Column('session_end', sa.DateTime(), nullable=True),
        sa.Column('status', _enum(*SESSION_STATUS, name='session_status'), nullable=False, server_default='draft'),
        sa.Column('total_pledges', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_pledge_value', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('buy_pledges_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sell_pledges_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('buy_pledges_value', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('sell_pledges_value', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('last_executed_at', sa.DateTime(), nullable=True),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_pledge_session_stock_symbol'), 'pledge_session', ['stock_symbol'], unique=False)
    op.create_index(op.f('ix_pledge_session_session_end'), 'pledge_session', ['session_end'], unique=False)
    op.create_index(op.f('ix_pledge_session_status'), 'pledge_session', ['status'], unique=False)
    op.create_index('ix_pledge_session_due', 'pledge_session', ['status', 'execution_rule', 'session_end'], unique=False)

    op.create_table(
        'pledge',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('demat_account_id', sa.String(length=64), nullable=False),
        sa.Column('stock_symbol', sa.String(length=20), nullable=False),
        sa.Column('side', _enum(*PLEDGE_SIDE, name='pledge_side'), nullable=False),
        sa.Column('qty', sa.Integer(), nullable=False),
        sa.Column('price_target', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('status', _enum(*PLEDGE_STATUS, name='pledge_status'), nullable=False, server_default='pending'),
        sa.Column('convenience_fee_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('convenience_fee_paid', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('admin_notes', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.ForeignKeyConstraint(['session_id'], ['pledge_session.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_pledge_session_id'), 'pledge', ['session_id'], unique=False)
    op.create_index(op.f('ix_pledge_user_id'), 'pledge', ['user_id'], unique=False)
    op.create_index('ix_pledge_by_session_status', 'pledge', ['session_id', 'status'], unique=False)

    op.create_table(
        'pledge_execution_record',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('pledge_id', sa.Integer(), nullable=False),
        sa.Column('session_id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('demat_account_id', sa.String(length=64), nullable=False),
        sa.Column('stock_symbol', sa.String(length=20), nullable=False),
        sa.Column('side', _enum(*PLEDGE_SIDE, name='pledge_side'), nullable=False),
        sa.Column('pledged_qty', sa.Integer(), nullable=False),
        sa.Column('executed_qty', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('executed_price', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('total_execution_value', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('platform_commission', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('commission_rate', sa.Numeric(precision=6, scale=3), nullable=False, server_default='0'),
        sa.Column('net_amount', sa.Numeric(precision=14, scale=2), nullable=False, server_default='0'),
        sa.Column('status', _enum(*EXECUTION_STATUS, name='execution_status'), nullable=False),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('buy_execution_id', sa.Integer(), nullable=True),
        sa.Column('executed_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.Column('settlement_date', sa.Date(), nullable=True),
        sa.ForeignKeyConstraint(['pledge_id'], ['pledge.id']),
        sa.ForeignKeyConstraint(['session_id'], ['pledge_session.id']),
        sa.ForeignKeyConstraint(['buy_execution_id'], ['pledge_execution_record.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_pledge_execution_record_pledge_id'), 'pledge_execution_record', ['pledge_id'], unique=False)
    op.create_index(op.f('ix_pledge_execution_record_session_id'), 'pledge_execution_record', ['session_id'], unique=False)
    op.create_index('ix_execution_record_lookup', 'pledge_execution_record', ['session_id', 'side', 'status'], unique=False)
    op.create_index('ix_execution_record_executed_at', 'pledge_execution_record', ['executed_at'], unique=False)

    op.create_table(
        'pledge_audit_log',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('actor_id', sa.String(length=64), nullable=False),
        sa.Column('actor_role', _enum(*ACTOR_ROLE, name='actor_role'), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('target_type', sa.String(length=20), nullable=False),
        sa.Column('target_session_id', sa.Integer(), nullable=True),
        sa.Column('target_pledge_id', sa.Integer(), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('success', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_pledge_audit_log_action'), 'pledge_audit_log', ['action'], unique=False)
    op.create_index(op.f('ix_pledge_audit_log_target_session_id'), 'pledge_audit_log', ['target_session_id'], unique=False)
    op.create_index(op.f('ix_pledge_audit_log_target_pledge_id'), 'pledge_audit_log', ['target_pledge_id'], unique=False)


def downgrade() -> None:
    op.drop_index(op.f('ix_pledge_audit_log_target_pledge_id'), table_name='pledge_audit_log')
    op.drop_index(op.f('ix_pledge_audit_log_target_session_id'), table_name='pledge_audit_log')
    op.drop_index(op.f('ix_pledge_audit_log_action'), table_name='pledge_audit_log')
    op.drop_table('pledge_audit_log')

    op.drop_index('ix_execution_record_executed_at', table_name='pledge_execution_record')
    op.drop_index('ix_execution_record_lookup', table_name='pledge_execution_record')
    op.drop_index(op.f('ix_pledge_execution_record_session_id'), table_name='pledge_execution_record')
    op.drop_index(op.f('ix_pledge_execution_record_pledge_id'), table_name='pledge_execution_record')
    op.drop_table('pledge_execution_record')

    op.drop_index('ix_pledge_by_session_status', table_name='pledge')
    op.drop_index(op.f('ix_pledge_user_id'), table_name='pledge')
    op.drop_index(op.f('ix_pledge_session_id'), table_name='pledge')
    op.drop_table('pledge')

    op.drop_index('ix_pledge_session_due', table_name='pledge_session')
    op.drop_index(op.f('ix_pledge_session_status'), table_name='pledge_session')
    op.drop_index(op.f('ix_pledge_session_session_end'), table_name='pledge_session')
    op.drop_index(op.f('ix_pledge_session_stock_symbol'), table_name='pledge_session')
    op.drop_table('pledge_session')
