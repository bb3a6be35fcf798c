"""Cash balance and reconciliation schema

Revision ID: 20261019_cash_recon
Revises:
Create Date: 2026-10-19

This migration creates:
1. Stores, users and per-store access grants
2. Cash pools, movements, counts, deposits
3. Transfer and adjustment requests
4. The six reconcilable transaction tables
5. Audit events
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_cash_recon'
down_revision = None
branch_labels = None
depends_on = None


def _reconciliation_envelope():
    return [
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('reconciled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('reconciliation_source', sa.String(length=16), nullable=True),
        sa.Column('external_reference', sa.String(length=128), nullable=True),
        sa.Column('reconciliation_notes', sa.Text(), nullable=True),
        sa.Column('tender_type', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('reconciled_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(['reconciled_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['created_by_user_id'], ['users.id'], ),
    ]


def _envelope_indexes(batch_op, table):
    batch_op.create_index(batch_op.f(f'ix_{table}_status'), ['status'], unique=False)
    batch_op.create_index(batch_op.f(f'ix_{table}_created_at'), ['created_at'], unique=False)
    batch_op.create_index(
        batch_op.f(f'ix_{table}_created_by_user_id'), ['created_by_user_id'], unique=False
    )


def upgrade():
    # ==========================================================================
    # 1. STORES / USERS
    # ==========================================================================
    op.create_table('stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stores', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stores_code'), ['code'], unique=True)
        batch_op.create_index(batch_op.f('ix_stores_is_active'), ['is_active'], unique=False)

    op.create_table('users',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('username', sa.String(length=64), nullable=False),
        sa.Column('full_name', sa.String(length=255), nullable=True),
        sa.Column('role', sa.String(length=32), nullable=False),
        sa.Column('default_store_id', sa.Integer(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['default_store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('users', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_users_username'), ['username'], unique=True)
        batch_op.create_index(batch_op.f('ix_users_role'), ['role'], unique=False)

    op.create_table('user_store_access',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('user_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('can_view', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id', 'store_id', name='uq_user_store_access_user_store'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('user_store_access', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_user_store_access_user_id'), ['user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_user_store_access_store_id'), ['store_id'], unique=False)

    # ==========================================================================
    # 2. CASH POSITION
    # ==========================================================================
    op.create_table('cash_pools',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('pool', sa.String(length=16), nullable=False),
        sa.Column('balance_paise', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('low_balance_threshold_paise', sa.Integer(), nullable=True),
        sa.Column('initialized_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('balance_paise >= 0', name='ck_cash_pools_balance_non_negative'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('store_id', 'pool', name='uq_cash_pools_store_pool'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_pools', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_pools_store_id'), ['store_id'], unique=False)

    op.create_table('cash_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('pool', sa.String(length=16), nullable=False),
        sa.Column('amount_paise', sa.Integer(), nullable=False),
        sa.Column('movement_type', sa.String(length=16), nullable=False),
        sa.Column('source_type', sa.String(length=32), nullable=False),
        sa.Column('source_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('balance_after_paise', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_movements', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_movements_store_id'), ['store_id'], unique=False)
        batch_op.create_index('ix_cash_movements_store_pool_occurred', ['store_id', 'pool', 'occurred_at'], unique=False)
        batch_op.create_index('ix_cash_movements_source', ['source_type', 'source_id'], unique=False)

    op.create_table('cash_counts',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('pool', sa.String(length=16), nullable=False),
        sa.Column('count_date', sa.Date(), nullable=False),
        sa.Column('denominations', sa.JSON(), nullable=False),
        sa.Column('total_counted_paise', sa.Integer(), nullable=False),
        sa.Column('expected_amount_paise', sa.Integer(), nullable=False),
        sa.Column('variance_paise', sa.Integer(), nullable=False),
        sa.Column('variance_level', sa.String(length=16), nullable=False),
        sa.Column('variance_acknowledged', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('supersedes_count_id', sa.Integer(), nullable=True),
        sa.Column('counted_by_user_id', sa.Integer(), nullable=False),
        sa.Column('counted_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['supersedes_count_id'], ['cash_counts.id'], ),
        sa.ForeignKeyConstraint(['counted_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_counts', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_counts_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_cash_counts_counted_by_user_id'), ['counted_by_user_id'], unique=False)
        batch_op.create_index('ix_cash_counts_store_pool_date', ['store_id', 'pool', 'count_date'], unique=False)

    op.create_table('cash_deposits',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('deposit_date', sa.Date(), nullable=False),
        sa.Column('amount_paise', sa.Integer(), nullable=False),
        sa.Column('deposit_slip_number', sa.String(length=64), nullable=True),
        sa.Column('bank_name', sa.String(length=120), nullable=True),
        sa.Column('deposited_by_user_id', sa.Integer(), nullable=False),
        sa.Column('deposited_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('cash_count_id', sa.Integer(), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['deposited_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['cash_count_id'], ['cash_counts.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_deposits', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_deposits_store_id'), ['store_id'], unique=False)
        batch_op.create_index('ix_cash_deposits_store_date', ['store_id', 'deposit_date'], unique=False)

    # ==========================================================================
    # 3. TRANSFERS / ADJUSTMENTS
    # ==========================================================================
    op.create_table('cash_transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('requested_amount_paise', sa.Integer(), nullable=False),
        sa.Column('approved_amount_paise', sa.Integer(), nullable=True),
        sa.Column('approval_variance_paise', sa.Integer(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('priority', sa.String(length=8), nullable=False, server_default='low'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('requested_by_user_id', sa.Integer(), nullable=False),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approval_notes', sa.Text(), nullable=True),
        sa.Column('sales_cash_balance_paise', sa.Integer(), nullable=False),
        sa.Column('petty_cash_balance_paise', sa.Integer(), nullable=False),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['requested_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['approved_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_transfers', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_transfers_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_cash_transfers_status'), ['status'], unique=False)
        batch_op.create_index('ix_cash_transfers_store_status', ['store_id', 'status'], unique=False)

    op.create_table('cash_adjustments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('pool', sa.String(length=16), nullable=False),
        sa.Column('adjustment_type', sa.String(length=16), nullable=False),
        sa.Column('direction', sa.Integer(), nullable=False),
        sa.Column('requested_amount_paise', sa.Integer(), nullable=False),
        sa.Column('approved_amount_paise', sa.Integer(), nullable=True),
        sa.Column('final_amount_paise', sa.Integer(), nullable=False),
        sa.Column('approval_variance_paise', sa.Integer(), nullable=True),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('priority', sa.String(length=8), nullable=False, server_default='low'),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('requested_by_user_id', sa.Integer(), nullable=False),
        sa.Column('approved_by_user_id', sa.Integer(), nullable=True),
        sa.Column('applied_by_user_id', sa.Integer(), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('approved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('applied_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('approval_notes', sa.Text(), nullable=True),
        sa.Column('balance_snapshot_paise', sa.Integer(), nullable=False),
        sa.CheckConstraint('direction IN (-1, 1)', name='ck_cash_adjustments_direction'),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['requested_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['approved_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['applied_by_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('cash_adjustments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_cash_adjustments_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_cash_adjustments_status'), ['status'], unique=False)
        batch_op.create_index('ix_cash_adjustments_store_pool_status', ['store_id', 'pool', 'status'], unique=False)
        batch_op.create_index(
            'uq_cash_adjustments_initial_setup',
            ['store_id', 'pool'],
            unique=True,
            sqlite_where=sa.text("adjustment_type = 'initial_setup' AND status <> 'rejected'"),
            postgresql_where=sa.text("adjustment_type = 'initial_setup' AND status <> 'rejected'"),
        )

    # ==========================================================================
    # 4. RECONCILABLE TRANSACTIONS
    # ==========================================================================
    op.create_table('sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('sale_date', sa.Date(), nullable=False),
        sa.Column('amount_paise', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        *_reconciliation_envelope(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sales_store_id'), ['store_id'], unique=False)
        batch_op.create_index('ix_sales_store_date_status', ['store_id', 'sale_date', 'status'], unique=False)
        _envelope_indexes(batch_op, 'sales')

    op.create_table('expenses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('expense_date', sa.Date(), nullable=False),
        sa.Column('amount_paise', sa.Integer(), nullable=False),
        sa.Column('category', sa.String(length=64), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        *_reconciliation_envelope(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('expenses', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_expenses_store_id'), ['store_id'], unique=False)
        batch_op.create_index('ix_expenses_store_date_status', ['store_id', 'expense_date', 'status'], unique=False)
        _envelope_indexes(batch_op, 'expenses')

    op.create_table('returns',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('return_date', sa.Date(), nullable=False),
        sa.Column('return_amount_paise', sa.Integer(), nullable=False),
        sa.Column('original_bill_reference', sa.String(length=64), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('customer_name', sa.String(length=120), nullable=True),
        *_reconciliation_envelope(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('returns', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_returns_store_id'), ['store_id'], unique=False)
        batch_op.create_index('ix_returns_store_date_status', ['store_id', 'return_date', 'status'], unique=False)
        _envelope_indexes(batch_op, 'returns')

    op.create_table('hand_bills',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('bill_date', sa.Date(), nullable=False),
        sa.Column('bill_number', sa.String(length=64), nullable=False),
        sa.Column('total_amount_paise', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=120), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        *_reconciliation_envelope(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('hand_bills', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_hand_bills_store_id'), ['store_id'], unique=False)
        batch_op.create_index('ix_hand_bills_store_date_status', ['store_id', 'bill_date', 'status'], unique=False)
        _envelope_indexes(batch_op, 'hand_bills')

    op.create_table('gift_vouchers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('voucher_number', sa.String(length=64), nullable=False),
        sa.Column('issued_date', sa.Date(), nullable=False),
        sa.Column('amount_paise', sa.Integer(), nullable=False),
        sa.Column('customer_name', sa.String(length=120), nullable=True),
        sa.Column('voucher_status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('redeemed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('redeemed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('redeemed_store_id', sa.Integer(), nullable=True),
        *_reconciliation_envelope(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['redeemed_by_user_id'], ['users.id'], ),
        sa.ForeignKeyConstraint(['redeemed_store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('gift_vouchers', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_gift_vouchers_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_gift_vouchers_voucher_number'), ['voucher_number'], unique=True)
        batch_op.create_index(batch_op.f('ix_gift_vouchers_voucher_status'), ['voucher_status'], unique=False)
        batch_op.create_index('ix_gift_vouchers_issued_status', ['issued_date', 'status'], unique=False)
        _envelope_indexes(batch_op, 'gift_vouchers')

    op.create_table('sales_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('order_date', sa.Date(), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=False),
        sa.Column('customer_name', sa.String(length=120), nullable=True),
        sa.Column('total_amount_paise', sa.Integer(), nullable=False),
        sa.Column('advance_amount_paise', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        *_reconciliation_envelope(),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('sales_orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_sales_orders_store_id'), ['store_id'], unique=False)
        batch_op.create_index('ix_sales_orders_store_date_status', ['store_id', 'order_date', 'status'], unique=False)
        _envelope_indexes(batch_op, 'sales_orders')

    # ==========================================================================
    # 5. AUDIT
    # ==========================================================================
    op.create_table('audit_events',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('event_type', sa.String(length=64), nullable=False),
        sa.Column('entity_type', sa.String(length=64), nullable=False),
        sa.Column('entity_id', sa.Integer(), nullable=False),
        sa.Column('actor_user_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['actor_user_id'], ['users.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('audit_events', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_audit_events_store_id'), ['store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_events_event_type'), ['event_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_events_actor_user_id'), ['actor_user_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_audit_events_occurred_at'), ['occurred_at'], unique=False)
        batch_op.create_index('ix_audit_events_entity', ['entity_type', 'entity_id'], unique=False)
        batch_op.create_index('ix_audit_events_store_occurred', ['store_id', 'occurred_at'], unique=False)


def downgrade():
    for table in (
        'audit_events',
        'sales_orders',
        'gift_vouchers',
        'hand_bills',
        'returns',
        'expenses',
        'sales',
        'cash_adjustments',
        'cash_transfers',
        'cash_deposits',
        'cash_counts',
        'cash_movements',
        'cash_pools',
        'user_store_access',
        'users',
        'stores',
    ):
        op.drop_table(table)
