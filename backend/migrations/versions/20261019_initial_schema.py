"""Initial schema: counterparties, items, stock/price ledger, orders, payments

Revision ID: 20261019_initial
Revises:
Create Date: 2026-10-19

This migration adds:
1. suppliers, customers (soft-deletable counterparties)
2. items (master data + low-stock threshold)
3. item_balances (per-warehouse stock/price cache)
4. ledger_entries (append-only item history)
5. orders, order_lines (purchase and sales orders)
6. payments
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261019_initial'
down_revision = None
branch_labels = None
depends_on = None


def _party_table(name):
    op.create_table(name,
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('contact_name', sa.String(length=255), nullable=True),
        sa.Column('phone', sa.String(length=64), nullable=True),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('address', sa.Text(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table(name, schema=None) as batch_op:
        batch_op.create_index(f'ix_{name}_deleted_name', ['is_deleted', 'name'], unique=False)


def upgrade():
    # ==========================================================================
    # 1. COUNTERPARTIES
    # ==========================================================================
    _party_table('suppliers')
    _party_table('customers')

    # ==========================================================================
    # 2. ITEMS
    # ==========================================================================
    op.create_table('items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('code', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('unit', sa.String(length=32), nullable=True),
        sa.Column('low_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('items', schema=None) as batch_op:
        batch_op.create_index('ix_items_deleted_name', ['is_deleted', 'name'], unique=False)

    # ==========================================================================
    # 3. ITEM BALANCES (cache)
    # ==========================================================================
    op.create_table('item_balances',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_code', sa.String(length=64), nullable=False),
        sa.Column('stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('item_id', 'warehouse_code', name='uq_item_balances_item_warehouse'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('item_balances', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_item_balances_item_id'), ['item_id'], unique=False)

    # ==========================================================================
    # 4. LEDGER ENTRIES (append-only)
    # ==========================================================================
    op.create_table('ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('warehouse_code', sa.String(length=64), nullable=False),
        sa.Column('measure', sa.String(length=16), nullable=False),
        sa.Column('change_type', sa.String(length=32), nullable=False),
        sa.Column('amount', sa.Integer(), nullable=False),
        sa.Column('old_value', sa.Integer(), nullable=False),
        sa.Column('new_value', sa.Integer(), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('order_line_id', sa.Integer(), nullable=True),
        sa.Column('payment_id', sa.Integer(), nullable=True),
        sa.Column('reference', sa.String(length=128), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('ledger_entries', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_ledger_entries_item_id'), ['item_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_entries_change_type'), ['change_type'], unique=False)
        batch_op.create_index(batch_op.f('ix_ledger_entries_order_id'), ['order_id'], unique=False)
        batch_op.create_index('ix_ledger_entries_item_wh_occurred', ['item_id', 'warehouse_code', 'occurred_at'], unique=False)
        batch_op.create_index('ix_ledger_entries_item_wh_measure', ['item_id', 'warehouse_code', 'measure'], unique=False)

    # ==========================================================================
    # 5. ORDERS
    # ==========================================================================
    op.create_table('orders',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_number', sa.String(length=64), nullable=True),
        sa.Column('direction', sa.String(length=16), nullable=False),
        sa.Column('supplier_id', sa.Integer(), nullable=True),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('warehouse_code', sa.String(length=64), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default='draft'),
        sa.Column('payment_status', sa.String(length=16), nullable=False, server_default='unpaid'),
        sa.Column('ordered_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('estimated_arrival', sa.Date(), nullable=True),
        sa.Column('due_date', sa.Date(), nullable=True),
        sa.Column('term_of_payment', sa.String(length=16), nullable=False, server_default='FULL'),
        sa.Column('dp_amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('total_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.ForeignKeyConstraint(['supplier_id'], ['suppliers.id'], ),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_number'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('orders', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_orders_supplier_id'), ['supplier_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_orders_customer_id'), ['customer_id'], unique=False)
        batch_op.create_index('ix_orders_direction_status', ['direction', 'status'], unique=False)
        batch_op.create_index('ix_orders_direction_payment_status', ['direction', 'payment_status'], unique=False)
        batch_op.create_index('ix_orders_direction_deleted', ['direction', 'is_deleted'], unique=False)
        batch_op.create_index('ix_orders_due_date', ['due_date'], unique=False)

    op.create_table('order_lines',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('item_id', sa.Integer(), nullable=False),
        sa.Column('ordered_quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('received_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('accepted_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('rejected_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('shipped_quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.CheckConstraint('ordered_quantity > 0', name='ck_order_lines_ordered_positive'),
        sa.CheckConstraint('received_quantity <= ordered_quantity', name='ck_order_lines_received_ceiling'),
        sa.CheckConstraint('shipped_quantity <= ordered_quantity', name='ck_order_lines_shipped_ceiling'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.ForeignKeyConstraint(['item_id'], ['items.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('order_id', 'item_id', name='uq_order_lines_order_item'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('order_lines', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_order_lines_order_id'), ['order_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_order_lines_item_id'), ['item_id'], unique=False)

    # ==========================================================================
    # 6. PAYMENTS
    # ==========================================================================
    op.create_table('payments',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.Integer(), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('method', sa.String(length=64), nullable=False),
        sa.Column('payment_type', sa.String(length=16), nullable=False, server_default='INSTALLMENT'),
        sa.Column('reference_number', sa.String(length=128), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default='0'),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('amount_cents > 0', name='ck_payments_amount_positive'),
        sa.ForeignKeyConstraint(['order_id'], ['orders.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('payments', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_payments_order_id'), ['order_id'], unique=False)
        batch_op.create_index('ix_payments_order_deleted', ['order_id', 'is_deleted'], unique=False)


def downgrade():
    op.drop_table('payments')
    op.drop_table('order_lines')
    op.drop_table('orders')
    op.drop_table('ledger_entries')
    op.drop_table('item_balances')
    op.drop_table('items')
    op.drop_table('customers')
    op.drop_table('suppliers')
