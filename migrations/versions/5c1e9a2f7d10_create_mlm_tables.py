"""create mlm tables

Revision ID: 5c1e9a2f7d10
Revises:
Create Date: 2026-10-17 09:12:31.402118

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '5c1e9a2f7d10'
down_revision = None
branch_labels = None
depends_on = None


commission_type = sa.Enum('SALE', 'SIGNUP', 'LEVEL_UP', 'BONUS', name='commissiontype')
commission_status = sa.Enum('PENDING', 'APPROVED', 'PAID', 'CANCELLED', name='commissionstatus')
withdrawal_status = sa.Enum('PENDING', 'APPROVED', 'PAID', 'REJECTED', name='withdrawalstatus')
withdrawal_method = sa.Enum('BANK', 'EASYPAISA', 'JAZZCASH', 'CRYPTO', name='withdrawalmethod')
order_status = sa.Enum('PENDING', 'CONFIRMED', 'SHIPPED', 'DELIVERED', 'CANCELLED', name='orderstatus')


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
    ]


def upgrade():
    op.create_table(
        'members',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('email', sa.String(length=120), nullable=False),
        sa.Column('phone', sa.String(length=20), nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False),
        sa.Column('sponsor_id', sa.Integer(), nullable=True),
        sa.Column('sponsor_code', sa.String(length=20), nullable=True),
        sa.Column('mlm_level', sa.Integer(), nullable=False),
        sa.Column('is_mlm_enabled', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['sponsor_id'], ['members.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
        sa.UniqueConstraint('sponsor_code'),
    )
    with op.batch_alter_table('members') as batch_op:
        batch_op.create_index('idx_member_sponsor_code', ['sponsor_code'], unique=False)
        batch_op.create_index(batch_op.f('ix_members_role'), ['role'], unique=False)
        batch_op.create_index(batch_op.f('ix_members_sponsor_id'), ['sponsor_id'], unique=False)

    op.create_table(
        'referral_network',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('ancestor_id', sa.Integer(), nullable=False),
        sa.Column('descendant_id', sa.Integer(), nullable=False),
        sa.Column('depth', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), server_default=sa.func.current_timestamp(), nullable=True),
        sa.ForeignKeyConstraint(['ancestor_id'], ['members.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['descendant_id'], ['members.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('ancestor_id', 'descendant_id', name='uq_network_relationship'),
    )
    with op.batch_alter_table('referral_network') as batch_op:
        batch_op.create_index('idx_network_ancestor_depth', ['ancestor_id', 'depth'], unique=False)
        batch_op.create_index('idx_network_descendant_ancestor', ['descendant_id', 'ancestor_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_referral_network_ancestor_id'), ['ancestor_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_referral_network_descendant_id'), ['descendant_id'], unique=False)

    op.create_table(
        'commission_rules',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('type', commission_type, nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('percentage', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('fixed_amount', sa.Numeric(precision=18, scale=2), nullable=True),
        sa.Column('min_order_value', sa.Numeric(precision=18, scale=2), nullable=True),
        sa.Column('max_commission', sa.Numeric(precision=18, scale=2), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.CheckConstraint('level >= 1', name='chk_rule_level'),
        sa.CheckConstraint('percentage >= 0 AND percentage <= 100', name='chk_rule_percentage'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('type', 'level', name='uq_commission_rule_type_level'),
    )
    with op.batch_alter_table('commission_rules') as batch_op:
        batch_op.create_index(batch_op.f('ix_commission_rules_type'), ['type'], unique=False)

    op.create_table(
        'orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=40), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=False),
        sa.Column('total_amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('status', order_status, nullable=False),
        *_timestamps(),
        sa.ForeignKeyConstraint(['member_id'], ['members.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number'),
    )
    with op.batch_alter_table('orders') as batch_op:
        batch_op.create_index(batch_op.f('ix_orders_member_id'), ['member_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_status'), ['status'], unique=False)

    op.create_table(
        'commissions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('source_member_id', sa.Integer(), nullable=True),
        sa.Column('type', commission_type, nullable=False),
        sa.Column('level', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('percentage', sa.Numeric(precision=5, scale=2), nullable=True),
        sa.Column('status', commission_status, nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('processed_by', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['member_id'], ['members.id']),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id']),
        sa.ForeignKeyConstraint(['processed_by'], ['members.id']),
        sa.ForeignKeyConstraint(['source_member_id'], ['members.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'level', name='uq_commission_order_level'),
    )
    with op.batch_alter_table('commissions') as batch_op:
        batch_op.create_index('idx_commission_member_status', ['member_id', 'status'], unique=False)
        batch_op.create_index(batch_op.f('ix_commissions_member_id'), ['member_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_commissions_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_commissions_source_member_id'), ['source_member_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_commissions_status'), ['status'], unique=False)

    op.create_table(
        'wallets',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=False),
        sa.Column('balance', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('pending', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('total_earned', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('total_withdrawn', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=10), nullable=True),
        *_timestamps(),
        sa.CheckConstraint('balance >= 0', name='chk_wallet_balance'),
        sa.CheckConstraint('pending >= 0', name='chk_wallet_pending'),
        sa.ForeignKeyConstraint(['member_id'], ['members.id'], ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('wallets') as batch_op:
        batch_op.create_index(batch_op.f('ix_wallets_member_id'), ['member_id'], unique=True)

    op.create_table(
        'withdrawals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('member_id', sa.Integer(), nullable=False),
        sa.Column('amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('fee', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('net_amount', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('method', withdrawal_method, nullable=False),
        sa.Column('details', sa.JSON(), nullable=False),
        sa.Column('status', withdrawal_status, nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('processed_by', sa.Integer(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['member_id'], ['members.id']),
        sa.ForeignKeyConstraint(['processed_by'], ['members.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('withdrawals') as batch_op:
        batch_op.create_index(batch_op.f('ix_withdrawals_member_id'), ['member_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_withdrawals_status'), ['status'], unique=False)

    op.create_table(
        'mlm_settings',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('is_mlm_enabled', sa.Boolean(), nullable=False),
        sa.Column('max_levels', sa.Integer(), nullable=False),
        sa.Column('min_withdrawal', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('withdrawal_fee_percent', sa.Numeric(precision=5, scale=2), nullable=False),
        sa.Column('default_signup_bonus', sa.Numeric(precision=18, scale=2), nullable=False),
        sa.Column('auto_approve_commissions', sa.Boolean(), nullable=False),
        sa.Column('auto_enable_mlm', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
    )

    op.create_table(
        'audit_logs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=True),
        sa.Column('action', sa.String(length=255), nullable=False),
        sa.Column('entity', sa.String(length=50), nullable=True),
        sa.Column('entity_id', sa.Integer(), nullable=True),
        sa.Column('details', sa.JSON(), nullable=True),
        sa.Column('ip_address', sa.String(length=50), nullable=True),
        *_timestamps(),
        sa.ForeignKeyConstraint(['actor_id'], ['members.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    with op.batch_alter_table('audit_logs') as batch_op:
        batch_op.create_index(batch_op.f('ix_audit_logs_actor_id'), ['actor_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_logs_entity'), ['entity'], unique=False)


def downgrade():
    op.drop_table('audit_logs')
    op.drop_table('mlm_settings')
    op.drop_table('withdrawals')
    op.drop_table('wallets')
    op.drop_table('commissions')
    op.drop_table('orders')
    op.drop_table('commission_rules')
    op.drop_table('referral_network')
    op.drop_table('members')

    bind = op.get_bind()
    for enum_type in (order_status, withdrawal_method, withdrawal_status, commission_status, commission_type):
        enum_type.drop(bind, checkfirst=True)
