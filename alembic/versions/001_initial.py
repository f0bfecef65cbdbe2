"""Initial migration

Revision ID: 001_initial
Revises: 
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Stores table
    op.create_table(
        'stores',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('store_type', sa.String(length=32), nullable=True),
        sa.Column('api_enabled', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('scrape_enabled', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('scrape_config', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    # Products table
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('msrp', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('preferred_condition_id', sa.Integer(), nullable=True),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('id')
    )

    # Deals table
    op.create_table(
        'deals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=True),
        sa.Column('store_id', sa.Integer(), nullable=True),
        sa.Column('url', sa.Text(), nullable=True),
        sa.Column('store_item_id', sa.String(length=64), nullable=True),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('in_stock', sa.Boolean(), nullable=True),
        sa.Column('sold', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('status', sa.String(length=16), nullable=False, server_default='active'),
        sa.Column('price_selectors', sa.JSON(), nullable=True),
        sa.Column('condition_id', sa.Integer(), nullable=True),
        sa.Column('free_shipping', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('discount_percent', sa.Integer(), nullable=True),
        sa.Column('error_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.Column('last_checked_at', sa.DateTime(), nullable=True),
        sa.Column('next_check_at', sa.DateTime(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ),
        sa.ForeignKeyConstraint(['store_id'], ['stores.id'], )
    )
    op.create_index('ix_deals_store_item_id', 'deals', ['store_item_id'])
    op.create_index('ix_deals_status', 'deals', ['status'])
    op.create_index('ix_deals_next_check_at', 'deals', ['next_check_at'])

    # Deal price history table
    op.create_table(
        'deal_price_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('deal_id', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=True),
        sa.Column('changed_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['deal_id'], ['deals.id'], )
    )

    # Stop words table
    op.create_table(
        'stop_words',
        sa.Column('name', sa.String(length=64), nullable=False),
        sa.Column('active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint('name')
    )


def downgrade() -> None:
    op.drop_table('stop_words')
    op.drop_table('deal_price_history')
    op.drop_index('ix_deals_next_check_at', table_name='deals')
    op.drop_index('ix_deals_status', table_name='deals')
    op.drop_index('ix_deals_store_item_id', table_name='deals')
    op.drop_table('deals')
    op.drop_table('products')
    op.drop_table('stores')
