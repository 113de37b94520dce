"""Add generations table

Revision ID: add_generations_table
Revises: add_ai_models_table
Create Date: 2026-09-02 10:30:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'add_generations_table'
down_revision: Union[str, None] = 'add_ai_models_table'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'generations',
        sa.Column('id', sa.String(length=64), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('model_id', sa.String(length=128), nullable=False),
        sa.Column('type', sa.String(length=10), nullable=False),
        sa.Column('prompt', sa.Text(), nullable=False),
        sa.Column('parameters', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('external_task_id', sa.String(length=128), nullable=True),
        sa.Column('status', sa.String(length=20), nullable=False),
        sa.Column('result_url', sa.Text(), nullable=True),
        sa.Column('result_urls', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('thumbnail_url', sa.Text(), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('credits_charged', sa.Numeric(precision=10, scale=1), nullable=False, server_default='0'),
        sa.Column('refunded', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('is_hidden', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_task_id')
    )
    op.create_index('ix_generations_user_id', 'generations', ['user_id'], unique=False)
    op.create_index('idx_generations_status', 'generations', ['status'], unique=False)
    op.create_index('idx_generations_user_created', 'generations', ['user_id', 'created_at'], unique=False)


def downgrade() -> None:
    op.drop_index('idx_generations_user_created', table_name='generations')
    op.drop_index('idx_generations_status', table_name='generations')
    op.drop_index('ix_generations_user_id', table_name='generations')
    op.drop_table('generations')
