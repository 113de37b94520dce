"""Seed the generation model catalogue

Revision ID: seed_ai_models
Revises: add_credit_ledger
Create Date: 2026-09-03 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'seed_ai_models'
down_revision: Union[str, None] = 'add_credit_ledger'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


MODELS = [
    # (id, provider model id, name, type, credits per generation)
    ('nano-banana', 'google/nano-banana', 'Nano Banana', 'image', 20),
    ('nano-banana-edit', 'google/nano-banana-edit', 'Nano Banana Edit', 'image', 25),
    ('seedream-v4', 'bytedance/seedream-v4-text-to-image', 'Seedream V4', 'image', 25),
    ('seedream-v4-edit', 'bytedance/seedream-v4-edit', 'Seedream V4 Edit', 'image', 30),
    ('ideogram-character', 'ideogram/character', 'Ideogram Character', 'image', 35),
    ('sora-2', 'sora-2-text-to-video', 'Sora 2', 'video', 60),
    ('sora-2-i2v', 'sora-2-image-to-video', 'Sora 2 Image-to-Video', 'video', 70),
    ('veo3-fast', 'veo3_fast', 'Veo 3.1 Fast', 'video', 30),
    ('veo3', 'veo3', 'Veo 3.1 Quality', 'video', 50),
    ('kling-v2-1-standard', 'kling/v2-1-standard', 'Kling 2.1 Standard', 'video', 40),
    ('kling-v2-1-pro', 'kling/v2-1-pro', 'Kling 2.1 Pro', 'video', 60),
]

ai_models = sa.table(
    'ai_models',
    sa.column('id', sa.String),
    sa.column('model_id', sa.String),
    sa.column('name', sa.String),
    sa.column('type', sa.String),
    sa.column('cost_per_generation', sa.Numeric),
    sa.column('is_active', sa.Boolean),
)


def upgrade() -> None:
    op.bulk_insert(
        ai_models,
        [
            {
                'id': id_,
                'model_id': model_id,
                'name': name,
                'type': type_,
                'cost_per_generation': cost,
                'is_active': True,
            }
            for id_, model_id, name, type_, cost in MODELS
        ]
    )


def downgrade() -> None:
    op.execute(
        ai_models.delete().where(ai_models.c.id.in_([m[0] for m in MODELS]))
    )
