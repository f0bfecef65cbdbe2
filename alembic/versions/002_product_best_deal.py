"""Track each product's best deal

Revision ID: 002_product_best_deal
Revises: 001_initial
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '002_product_best_deal'
down_revision = '001_initial'
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column('products', sa.Column('best_deal_id', sa.Integer(), nullable=True))


def downgrade() -> None:
    op.drop_column('products', 'best_deal_id')
