"""initial ledger schema

Revision ID: p1a0c0ffee01
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the complete posledger schema:
- categories: product grouping
- products / stock_movements: inventory ledger (materialized stock + movement log)
- cashboxes / cashbox_transactions: per-currency cash ledger
- customers / customer_ledger_entries: customer accounts + account log
- sales / sale_items: sale headers and line snapshots
- expenses / revenues: non-sale cash movements
- document_sequences: atomic document numbering
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = 'p1a0c0ffee01'
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
    ]


def upgrade():
    # ============================================================================
    # categories: product grouping for the checkout catalogue
    # ============================================================================
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_categories_name'),
        sqlite_autoincrement=True
    )

    # ============================================================================
    # products: Product master; current_stock is owned by the inventory ledger
    # ============================================================================
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('barcode', sa.String(length=64), nullable=True),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('cost_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('selling_price_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_stock', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id']),
        sa.UniqueConstraint('sku', name='uq_products_sku'),
        sa.CheckConstraint('current_stock >= 0', name='ck_products_stock_non_negative'),
        sa.CheckConstraint('cost_price_cents >= 0', name='ck_products_cost_non_negative'),
        sa.CheckConstraint('selling_price_cents >= 0', name='ck_products_price_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_products_barcode', 'products', ['barcode'])
    op.create_index('ix_products_category_id', 'products', ['category_id'])
    op.create_index('ix_products_name', 'products', ['name'])

    # ============================================================================
    # stock_movements: Append-only movement log
    # ============================================================================
    op.create_table(
        'stock_movements',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('previous_stock', sa.Integer(), nullable=False),
        sa.Column('new_stock', sa.Integer(), nullable=False),
        sa.Column('unit_cost_cents', sa.Integer(), nullable=True),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint("type IN ('in', 'out', 'adjustment')", name='ck_stock_movements_type'),
        sa.CheckConstraint('new_stock >= 0', name='ck_stock_movements_new_stock_non_negative'),
        sa.CheckConstraint(
            "(type = 'in' AND quantity > 0 AND new_stock = previous_stock + quantity) OR "
            "(type = 'out' AND quantity > 0 AND new_stock = previous_stock - quantity) OR "
            "(type = 'adjustment' AND quantity <> 0 AND new_stock = previous_stock + quantity)",
            name='ck_stock_movements_arithmetic',
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_stock_movements_product_id', 'stock_movements', ['product_id'])
    op.create_index('ix_stock_movements_type', 'stock_movements', ['type'])
    op.create_index('ix_stock_movements_created_at', 'stock_movements', ['created_at'])
    op.create_index('ix_stock_movements_reference', 'stock_movements', ['reference_type', 'reference_id'])
    op.create_index('ix_stock_movements_product_created', 'stock_movements', ['product_id', 'created_at'])

    # ============================================================================
    # cashboxes / cashbox_transactions
    # ============================================================================
    op.create_table(
        'cashboxes',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('balance_usd_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance_lyd_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_reconciliation_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name', name='uq_cashboxes_name'),
        sqlite_autoincrement=True
    )

    op.create_table(
        'cashbox_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('cashbox_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=16), nullable=False),
        sa.Column('amount_usd_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount_lyd_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('exchange_rate', sa.Numeric(10, 4), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['cashbox_id'], ['cashboxes.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint(
            "type IN ('sale', 'expense', 'deposit', 'withdrawal', 'adjustment', 'refund')",
            name='ck_cashbox_transactions_type',
        ),
        sqlite_autoincrement=True
    )
    op.create_index('ix_cashbox_transactions_cashbox_id', 'cashbox_transactions', ['cashbox_id'])
    op.create_index('ix_cashbox_transactions_type', 'cashbox_transactions', ['type'])
    op.create_index('ix_cashbox_transactions_created_at', 'cashbox_transactions', ['created_at'])
    op.create_index('ix_cashbox_txns_cashbox_created', 'cashbox_transactions', ['cashbox_id', 'created_at'])
    op.create_index('ix_cashbox_txns_reference', 'cashbox_transactions', ['reference_type', 'reference_id'])

    # ============================================================================
    # customers / customer_ledger_entries
    # ============================================================================
    op.create_table(
        'customers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('phone', sa.String(length=32), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=True),
        sa.Column('address', sa.String(length=255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('balance_owed_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_purchases_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('phone', name='uq_customers_phone'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customers_name', 'customers', ['name'])
    op.create_index('ix_customers_is_active', 'customers', ['is_active'])

    op.create_table(
        'customer_ledger_entries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=False),
        sa.Column('entry_type', sa.String(length=16), nullable=False),
        sa.Column('balance_delta_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('purchase_delta_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('balance_after_cents', sa.Integer(), nullable=False),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('note', sa.String(length=255), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_customer_ledger_entries_customer_id', 'customer_ledger_entries', ['customer_id'])
    op.create_index('ix_customer_ledger_entries_entry_type', 'customer_ledger_entries', ['entry_type'])
    op.create_index('ix_customer_ledger_entries_created_at', 'customer_ledger_entries', ['created_at'])
    op.create_index('ix_customer_ledger_customer_created', 'customer_ledger_entries', ['customer_id', 'created_at'])

    # ============================================================================
    # sales / sale_items
    # ============================================================================
    op.create_table(
        'sales',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_number', sa.String(length=64), nullable=False),
        sa.Column('customer_id', sa.Integer(), nullable=True),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='completed'),
        sa.Column('subtotal_cents', sa.Integer(), nullable=False),
        sa.Column('discount_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_cents', sa.Integer(), nullable=False),
        sa.Column('amount_paid_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('amount_due_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('change_due_cents', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('payment_method', sa.String(length=16), nullable=False, server_default='cash'),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='LYD'),
        sa.Column('exchange_rate', sa.Numeric(10, 4), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.Column('closed_by_user_id', sa.Integer(), nullable=True),
        sa.Column('closed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.ForeignKeyConstraint(['customer_id'], ['customers.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sale_number', name='uq_sales_sale_number'),
        sa.CheckConstraint(
            "status IN ('completed', 'pending', 'cancelled', 'returned')",
            name='ck_sales_status',
        ),
        sa.CheckConstraint('total_cents = subtotal_cents - discount_cents', name='ck_sales_total'),
        sa.CheckConstraint('amount_due_cents = total_cents - amount_paid_cents', name='ck_sales_amount_due'),
        sa.CheckConstraint('discount_cents >= 0', name='ck_sales_discount_non_negative'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sales_customer_id', 'sales', ['customer_id'])
    op.create_index('ix_sales_status', 'sales', ['status'])
    op.create_index('ix_sales_created_at', 'sales', ['created_at'])
    op.create_index('ix_sales_status_created', 'sales', ['status', 'created_at'])

    op.create_table(
        'sale_items',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sale_id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('product_name', sa.String(length=255), nullable=False),
        sa.Column('product_sku', sa.String(length=64), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('unit_price_cents', sa.Integer(), nullable=False),
        sa.Column('cost_price_cents', sa.Integer(), nullable=False),
        sa.Column('total_price_cents', sa.Integer(), nullable=False),
        sa.Column('profit_cents', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('added_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('returned_by_user_id', sa.Integer(), nullable=True),
        sa.Column('returned_at', sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['sale_id'], ['sales.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('quantity > 0', name='ck_sale_items_quantity_positive'),
        sa.CheckConstraint('total_price_cents = quantity * unit_price_cents', name='ck_sale_items_total'),
        sa.CheckConstraint(
            'profit_cents = total_price_cents - quantity * cost_price_cents',
            name='ck_sale_items_profit',
        ),
        sa.CheckConstraint("status IN ('active', 'returned')", name='ck_sale_items_status'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_sale_items_sale_id', 'sale_items', ['sale_id'])
    op.create_index('ix_sale_items_product_id', 'sale_items', ['product_id'])
    op.create_index('ix_sale_items_sale_status', 'sale_items', ['sale_id', 'status'])

    # ============================================================================
    # expenses / revenues
    # ============================================================================
    op.create_table(
        'expenses',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('expense_number', sa.String(length=32), nullable=False),
        sa.Column('category', sa.String(length=32), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='LYD'),
        sa.Column('exchange_rate', sa.Numeric(10, 4), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=False),
        sa.Column('person_name', sa.String(length=255), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('cashbox_transaction_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['cashbox_transaction_id'], ['cashbox_transactions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('expense_number', name='uq_expenses_number'),
        sa.CheckConstraint('amount_cents > 0', name='ck_expenses_amount_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_expenses_category', 'expenses', ['category'])
    op.create_index('ix_expenses_occurred_at', 'expenses', ['occurred_at'])

    op.create_table(
        'revenues',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('revenue_number', sa.String(length=32), nullable=False),
        sa.Column('source', sa.String(length=255), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False, server_default='LYD'),
        sa.Column('exchange_rate', sa.Numeric(10, 4), nullable=True),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('reference_type', sa.String(length=32), nullable=True),
        sa.Column('reference_id', sa.Integer(), nullable=True),
        sa.Column('occurred_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.Column('cashbox_transaction_id', sa.Integer(), nullable=True),
        sa.Column('created_by_user_id', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.ForeignKeyConstraint(['cashbox_transaction_id'], ['cashbox_transactions.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('revenue_number', name='uq_revenues_number'),
        sa.CheckConstraint('amount_cents > 0', name='ck_revenues_amount_positive'),
        sqlite_autoincrement=True
    )
    op.create_index('ix_revenues_occurred_at', 'revenues', ['occurred_at'])

    # ============================================================================
    # document_sequences: Atomic numbering (sales, expenses, revenues)
    # ============================================================================
    op.create_table(
        'document_sequences',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('document_type', sa.String(length=32), nullable=False),
        sa.Column('next_number', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False,
                  server_default=sa.text('CURRENT_TIMESTAMP')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('document_type', name='uq_doc_sequences_type'),
        sqlite_autoincrement=True
    )


def downgrade():
    op.drop_table('document_sequences')
    op.drop_index('ix_revenues_occurred_at', table_name='revenues')
    op.drop_table('revenues')
    op.drop_index('ix_expenses_occurred_at', table_name='expenses')
    op.drop_index('ix_expenses_category', table_name='expenses')
    op.drop_table('expenses')
    op.drop_table('sale_items')
    op.drop_table('sales')
    op.drop_table('customer_ledger_entries')
    op.drop_table('customers')
    op.drop_table('cashbox_transactions')
    op.drop_table('cashboxes')
    op.drop_table('stock_movements')
    op.drop_table('products')
    op.drop_table('categories')
