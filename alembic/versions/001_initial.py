"""Initial migration

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001_initial'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Reference data
    op.create_table(
        'categories',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('slug', sa.String(length=128), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('slug')
    )

    op.create_table(
        'countries',
        sa.Column('code', sa.String(length=8), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('currency_symbol', sa.String(length=8), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('code')
    )

    op.create_table(
        'retailers',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=128), nullable=False),
        sa.Column('website_url', sa.Text(), nullable=True),
        sa.Column('logo_url', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name')
    )

    op.create_table(
        'retailer_countries',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('retailer_id', sa.Integer(), nullable=False),
        sa.Column('country_code', sa.String(length=8), nullable=False),
        sa.Column('website_url', sa.Text(), nullable=True),
        sa.Column('is_primary', sa.Boolean(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['retailer_id'], ['retailers.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['country_code'], ['countries.code'], ondelete='CASCADE'),
        sa.UniqueConstraint('retailer_id', 'country_code', name='uq_retailer_country')
    )

    # Catalog
    op.create_table(
        'products',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('name', sa.String(length=500), nullable=False),
        sa.Column('brand', sa.String(length=128), nullable=False),
        sa.Column('model', sa.String(length=128), nullable=True),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('image_url', sa.Text(), nullable=True),
        sa.Column('specifications', postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('updated_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ondelete='SET NULL'),
        sa.UniqueConstraint('name', 'brand', name='uq_product_name_brand')
    )

    op.create_table(
        'prices',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('retailer_id', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('product_url', sa.Text(), nullable=True),
        sa.Column('availability', sa.String(length=32), nullable=False),
        sa.Column('last_checked', sa.DateTime(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['retailer_id'], ['retailers.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('product_id', 'retailer_id', name='uq_price_product_retailer'),
        sa.CheckConstraint('price > 0', name='ck_price_positive')
    )

    op.create_table(
        'price_history',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('retailer_id', sa.Integer(), nullable=False),
        sa.Column('price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=False),
        sa.Column('recorded_at', sa.DateTime(), nullable=False),
        sa.Column('price_change_percent', sa.Float(), nullable=True),
        sa.Column('deal_score', sa.Float(), nullable=True),
        sa.Column('is_deal', sa.Boolean(), nullable=True),
        sa.Column('source', sa.String(length=16), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['retailer_id'], ['retailers.id'], ondelete='CASCADE')
    )

    op.create_table(
        'featured_deals',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('scope', sa.String(length=16), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('savings_amount', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('savings_percentage', sa.Float(), nullable=False),
        sa.Column('lowest_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('highest_price', sa.Numeric(precision=10, scale=2), nullable=False),
        sa.Column('currency', sa.String(length=8), nullable=True),
        sa.Column('deal_rank', sa.Integer(), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.Column('expires_at', sa.DateTime(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.UniqueConstraint('scope', 'product_id', name='uq_featured_deal_scope_product'),
        sa.UniqueConstraint('scope', 'deal_rank', name='uq_featured_deal_scope_rank')
    )

    # Pipeline bookkeeping
    op.create_table(
        'scheduler_runs',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('run_type', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('lock_run_id', sa.String(length=64), nullable=True),
        sa.Column('started_at', sa.DateTime(), nullable=False),
        sa.Column('completed_at', sa.DateTime(), nullable=True),
        sa.Column('execution_time_seconds', sa.Float(), nullable=True),
        sa.Column('tasks_completed', sa.Integer(), nullable=False),
        sa.Column('tasks_failed', sa.Integer(), nullable=False),
        sa.Column('summary', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('error_details', sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_table(
        'product_discovery_log',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('product_id', sa.Integer(), nullable=False),
        sa.Column('source', sa.String(length=64), nullable=False),
        sa.Column('category_id', sa.Integer(), nullable=True),
        sa.Column('country_code', sa.String(length=8), nullable=True),
        sa.Column('initial_price', sa.Numeric(precision=10, scale=2), nullable=True),
        sa.Column('initial_retailer_id', sa.Integer(), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['product_id'], ['products.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['category_id'], ['categories.id'], ondelete='SET NULL')
    )

    # Create indexes
    op.create_index('ix_price_history_series', 'price_history', ['product_id', 'retailer_id', 'recorded_at'])
    op.create_index('ix_price_history_recorded_at', 'price_history', ['recorded_at'])
    op.create_index('ix_scheduler_runs_started_at', 'scheduler_runs', ['started_at'])


def downgrade() -> None:
    # Drop indexes
    op.drop_index('ix_scheduler_runs_started_at', table_name='scheduler_runs')
    op.drop_index('ix_price_history_recorded_at', table_name='price_history')
    op.drop_index('ix_price_history_series', table_name='price_history')

    # Drop tables
    op.drop_table('product_discovery_log')
    op.drop_table('scheduler_runs')
    op.drop_table('featured_deals')
    op.drop_table('price_history')
    op.drop_table('prices')
    op.drop_table('products')
    op.drop_table('retailer_countries')
    op.drop_table('retailers')
    op.drop_table('countries')
    op.drop_table('categories')
