"""Stock ledger and transfers: initial schema

Revision ID: 20261016_initial
Revises:
Create Date: 2026-10-16

This migration adds:
1. stores and skus (identity only)
2. stock_records (per SKU x store quantity, optimistic version column)
3. transfers (inter-store workflow record)
4. stock_transactions (append-only audit trail, linked to transfers)
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261016_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    # ==========================================================================
    # 1. CATALOG IDENTITY
    # ==========================================================================
    op.create_table('stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=120), nullable=False),
        sa.Column('code', sa.String(length=32), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code', name='uq_stores_code'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stores', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stores_code'), ['code'], unique=False)

    op.create_table('skus',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku', sa.String(length=64), nullable=False),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku', name='uq_skus_sku'),
        sqlite_autoincrement=True
    )

    # ==========================================================================
    # 2. STOCK RECORDS
    # ==========================================================================
    op.create_table('stock_records',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), nullable=False),
        sa.Column('store_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('low_stock_threshold', sa.Integer(), nullable=False, server_default='5'),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
        sa.CheckConstraint('quantity >= 0', name='ck_stock_records_quantity_non_negative'),
        sa.CheckConstraint('low_stock_threshold >= 0', name='ck_stock_records_threshold_non_negative'),
        sa.ForeignKeyConstraint(['sku_id'], ['skus.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('sku_id', 'store_id', name='uq_stock_records_sku_store'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_records', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_records_sku_id'), ['sku_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_records_store_id'), ['store_id'], unique=False)
        batch_op.create_index('ix_stock_records_store_quantity', ['store_id', 'quantity'], unique=False)

    # ==========================================================================
    # 3. TRANSFERS
    # ==========================================================================
    op.create_table('transfers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('from_store_id', sa.Integer(), nullable=False),
        sa.Column('to_store_id', sa.Integer(), nullable=False),
        sa.Column('sku_id', sa.Integer(), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='pending'),
        sa.Column('actor_id', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('order_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('shipped_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('version_id', sa.Integer(), nullable=False, server_default='1'),
        sa.CheckConstraint('from_store_id <> to_store_id', name='ck_transfers_distinct_stores'),
        sa.CheckConstraint('quantity > 0', name='ck_transfers_quantity_positive'),
        sa.ForeignKeyConstraint(['from_store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['to_store_id'], ['stores.id'], ),
        sa.ForeignKeyConstraint(['sku_id'], ['skus.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('transfers', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_transfers_from_store_id'), ['from_store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_transfers_to_store_id'), ['to_store_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_transfers_sku_id'), ['sku_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_transfers_status'), ['status'], unique=False)
        batch_op.create_index(batch_op.f('ix_transfers_order_id'), ['order_id'], unique=False)
        batch_op.create_index('ix_transfers_status_created', ['status', 'created_at'], unique=False)

    # ==========================================================================
    # 4. STOCK TRANSACTIONS (append-only)
    # ==========================================================================
    op.create_table('stock_transactions',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('stock_record_id', sa.Integer(), nullable=False),
        sa.Column('actor_id', sa.Integer(), nullable=False),
        sa.Column('type', sa.String(length=32), nullable=False),
        sa.Column('delta', sa.Integer(), nullable=False),
        sa.Column('quantity_before', sa.Integer(), nullable=False),
        sa.Column('quantity_after', sa.Integer(), nullable=False),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('transfer_id', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.CheckConstraint('quantity_after = quantity_before + delta', name='ck_stock_transactions_balanced'),
        sa.CheckConstraint('quantity_after >= 0', name='ck_stock_transactions_after_non_negative'),
        sa.ForeignKeyConstraint(['stock_record_id'], ['stock_records.id'], ),
        sa.ForeignKeyConstraint(['transfer_id'], ['transfers.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sqlite_autoincrement=True
    )
    with op.batch_alter_table('stock_transactions', schema=None) as batch_op:
        batch_op.create_index(batch_op.f('ix_stock_transactions_stock_record_id'), ['stock_record_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_transactions_actor_id'), ['actor_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_transactions_type'), ['type'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_transactions_transfer_id'), ['transfer_id'], unique=False)
        batch_op.create_index(batch_op.f('ix_stock_transactions_created_at'), ['created_at'], unique=False)
        batch_op.create_index('ix_stock_txn_record_created', ['stock_record_id', 'created_at'], unique=False)
        batch_op.create_index('ix_stock_txn_record_type_created', ['stock_record_id', 'type', 'created_at'], unique=False)


def downgrade():
    op.drop_table('stock_transactions')
    op.drop_table('transfers')
    op.drop_table('stock_records')
    op.drop_table('skus')
    op.drop_table('stores')
