"""Initial schema

Revision ID: 001_initial
Revises:
Create Date: 2026-10-01 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """
    Create the shared resource-event store (ip_resource_logs).

    Path partitions (ip_logs_*) are not managed here; the partition router
    creates them on first use.
    """
    bind = op.get_bind()
    existing_tables = inspect(bind).get_table_names()

    # The router may already have provisioned the table
    if 'ip_resource_logs' in existing_tables:
        return

    op.create_table(
        'ip_resource_logs',
        sa.Column('id', sa.Integer(), nullable=False, autoincrement=True),
        sa.Column('hashed_ip', sa.String(length=64), nullable=True),
        sa.Column('raw_ip', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.Column('method', sa.String(length=10), nullable=False),
        sa.Column('path', sa.Text(), nullable=False),
        sa.Column('resource_type', sa.String(length=50), nullable=False),
        sa.Column('resource_id', sa.String(length=100), nullable=False),
        sa.Column('action', sa.String(length=50), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )

    op.create_index(
        'ix_ip_resource_logs_resource',
        'ip_resource_logs',
        ['resource_type', 'resource_id', 'action']
    )
    op.create_index(
        'ix_ip_resource_logs_hashed_ip',
        'ip_resource_logs',
        ['hashed_ip']
    )
    op.create_index(
        'ix_ip_resource_logs_created_at',
        'ip_resource_logs',
        ['created_at']
    )


def downgrade() -> None:
    """
    Drop the shared resource-event store.

    Partition tables are left in place.
    """
    op.drop_index('ix_ip_resource_logs_created_at', table_name='ip_resource_logs')
    op.drop_index('ix_ip_resource_logs_hashed_ip', table_name='ip_resource_logs')
    op.drop_index('ix_ip_resource_logs_resource', table_name='ip_resource_logs')
    op.drop_table('ip_resource_logs')
