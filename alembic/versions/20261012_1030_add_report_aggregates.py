"""Add report aggregates table

Revision ID: 20261012_report_aggregates
Revises: 20261012_outcome_records
Create Date: 2026-10-12

Per-bucket request counts by outcome category, written by the aggregation worker.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261012_report_aggregates'
down_revision = '20261012_outcome_records'
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create report_aggregates table"""
    op.create_table(
        'report_aggregates',
        sa.Column('id', sa.Integer(), nullable=False),
        sa.Column('bucket_start', sa.DateTime(), nullable=False, comment="Bucket start (UTC), floored to granularity"),
        sa.Column('granularity', sa.String(10), nullable=False, comment="hour, day or month"),
        sa.Column('category', sa.Integer(), nullable=False, comment="0 other, 2 success, 4 client error, 5 server error"),
        sa.Column('count', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('last_updated_at', sa.DateTime(), nullable=False, comment="Last time count changed"),
        sa.PrimaryKeyConstraint('id')
    )

    # Upsert target: one row per (bucket, granularity, category)
    op.create_index(
        'idx_report_aggregates_unique',
        'report_aggregates',
        ['bucket_start', 'granularity', 'category'],
        unique=True
    )


def downgrade() -> None:
    """Drop report_aggregates table"""
    op.drop_index('idx_report_aggregates_unique', table_name='report_aggregates')
    op.drop_table('report_aggregates')
