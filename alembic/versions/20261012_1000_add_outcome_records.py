"""Add outcome records table

Revision ID: 20261012_outcome_records
Revises:
Create Date: 2026-10-12

Raw, append-only request outcomes. Reports scan it directly for filtered and
recent windows; the aggregation worker rolls it up into report_aggregates.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = '20261012_outcome_records'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create outcome_records table"""
    op.create_table(
        'outcome_records',
        sa.Column('id', sa.String(36), nullable=False),
        sa.Column('created_at', sa.DateTime(), nullable=False, comment="Request completion time (UTC)"),
        sa.Column('trace_id', sa.String(64), nullable=True),
        sa.Column('method', sa.String(10), nullable=True),
        sa.Column('path', sa.String(500), nullable=True),
        sa.Column('client_ip', sa.String(64), nullable=True),
        sa.Column('downstream_host', sa.String(255), nullable=True),
        sa.Column('downstream_port', sa.Integer(), nullable=True),
        sa.Column('status_code', sa.Integer(), nullable=True, comment="Downstream status; NULL counts as 'other'"),
        sa.Column('latency_ms', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('is_error', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('request_size', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('response_size', sa.BigInteger(), nullable=False, server_default='0'),
        sa.PrimaryKeyConstraint('id')
    )

    # Range scans and equality filters
    op.create_index('idx_outcome_records_created', 'outcome_records', ['created_at'])
    op.create_index('idx_outcome_records_path', 'outcome_records', ['path'])
    op.create_index('idx_outcome_records_host', 'outcome_records', ['downstream_host'])


def downgrade() -> None:
    """Drop outcome_records table"""
    op.drop_index('idx_outcome_records_host', table_name='outcome_records')
    op.drop_index('idx_outcome_records_path', table_name='outcome_records')
    op.drop_index('idx_outcome_records_created', table_name='outcome_records')
    op.drop_table('outcome_records')
