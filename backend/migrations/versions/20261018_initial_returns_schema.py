"""Initial schema: suppliers, expenses, purchase orders, returns

Revision ID: 20261018_returns
Revises:
Create Date: 2026-10-18

This migration adds:
1. suppliers (running balance moved by purchase returns)
2. expenses (targets of expense returns)
3. purchase_orders (embedded JSON item payload, reconciled against completed returns)
4. returns_management (purchase and expense returns with JSON items payload)

suppliers, purchase_orders and returns_management carry version_id for
optimistic locking.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261018_returns'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. SUPPLIERS TABLE
    # ==========================================================================
    op.create_table('suppliers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('city', sa.String(length=128), nullable=True),
        sa.Column('balance', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    # ==========================================================================
    # 2. EXPENSES TABLE
    # ==========================================================================
    op.create_table('expenses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('receipt_number', sa.String(length=64), nullable=True),
        sa.Column('expense_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('base_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('paid_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )

    # ==========================================================================
    # 3. PURCHASE ORDERS TABLE
    # ==========================================================================
    op.create_table('purchase_orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('purchase_number', sa.String(length=64), nullable=True),
        sa.Column('reference_number', sa.String(length=64), nullable=True),
        sa.Column('purchase_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('items_payload', sa.JSON(), nullable=True),
        sa.Column('subtotal', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('tax_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('paid_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('remaining_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('purchase_orders', schema=None) as batch_op:
        batch_op.create_index('ix_purchase_orders_supplier', ['supplier_id'], unique=False)

    # ==========================================================================
    # 4. RETURNS TABLE
    # ==========================================================================
    op.create_table('returns_management',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('return_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('items_payload', sa.JSON(), nullable=True),
        sa.Column('refund_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('total_amount', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('remaining_amount', sa.Numeric(precision=12, scale=2), nullable=True),
        sa.Column('affects_inventory', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('purchase_order_id', sa.Integer(), nullable=True),
        sa.Column('expense_id', sa.Integer(), nullable=True),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=True),
        sa.Column('updated_by_user_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['purchase_order_id'], ['purchase_orders.id'], ),
        sa.ForeignKeyConstraint(['expense_id'], ['expenses.id'], ),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('returns_management', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_returns_management_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_returns_management_created_at'), ['created_at'], unique=False)
        batch_op.create_index(batch_op.f('ix_returns_management_purchase_order_id'), ['purchase_order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_returns_management_expense_id'), ['expense_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_returns_management_supplier_id'), ['supplier_id'], unique=False)
        batch_op.create_index('ix_returns_purchase_status', ['purchase_order_id', 'status'], unique=False)
        batch_op.create_index('ix_returns_status_created', ['status', 'created_at'], unique=False)


def downgrade():
    with op.batch_alter_table('returns_management', schema=None) as batch_op:
        batch_op.drop_index('ix_returns_status_created')
        batch_op.drop_index('ix_returns_purchase_status')
        batch_op.drop_index(batch_op.f('ix_returns_management_supplier_id'))
        batch_op.drop_index(batch_op.f('ix_returns_management_expense_id'))
        batch_op.drop_index(batch_op.f('ix_returns_management_purchase_order_id'))
        batch_op.drop_index(batch_op.f('ix_returns_management_created_at'))
        batch_op.drop_index(batch_op.f('ix_returns_management_status'))
    op.drop_table('returns_management')

    with op.batch_alter_table('purchase_orders', schema=None) as batch_op:
        batch_op.drop_index('ix_purchase_orders_supplier')
    op.drop_table('purchase_orders')
    op.drop_table('expenses')
    op.drop_table('suppliers')
