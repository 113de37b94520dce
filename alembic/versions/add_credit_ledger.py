"""Add user_credits and credit_transactions tables

Revision ID: add_credit_ledger
Revises: add_generations_table
Create Date: 2026-09-02 11:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = 'add_credit_ledger'
down_revision: Union[str, None] = 'add_generations_table'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        'user_credits',
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=1), nullable=False, server_default='0'),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('user_id'),
        sa.CheckConstraint('amount >= 0', name='ck_user_credits_non_negative')
    )
    
    op.create_table(
        'credit_transactions',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('user_id', sa.String(length=64), nullable=False),
        sa.Column('kind', sa.String(length=20), nullable=False),
        sa.Column('amount', sa.Numeric(precision=10, scale=1), nullable=False),
        sa.Column('balance_after', sa.Numeric(precision=10, scale=1), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('related_generation_id', sa.String(length=64), nullable=True),
        sa.Column('reference_id', sa.String(length=128), nullable=True),
        sa.Column('metadata', postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index('idx_credit_tx_user_created', 'credit_transactions', ['user_id', 'created_at'], unique=False)
    op.create_index('idx_credit_tx_generation', 'credit_transactions', ['related_generation_id'], unique=False)
    # One ledger entry per external payment reference (Omise charge id)
    op.create_index('uq_credit_tx_reference', 'credit_transactions', ['reference_id'], unique=True)
    # At most one refund per generation
    op.create_index(
        'uq_credit_tx_refund_generation',
        'credit_transactions',
        ['related_generation_id'],
        unique=True,
        postgresql_where=sa.text("kind = 'refund'")
    )


def downgrade() -> None:
    op.drop_index('uq_credit_tx_refund_generation', table_name='credit_transactions')
    op.drop_index('uq_credit_tx_reference', table_name='credit_transactions')
    op.drop_index('idx_credit_tx_generation', table_name='credit_transactions')
    op.drop_index('idx_credit_tx_user_created', table_name='credit_transactions')
    op.drop_table('credit_transactions')
    op.drop_table('user_credits')
