"""add low_confidence flag to articles

Revision ID: 8b2e4d6f0a13
Revises: 3f9a1c2b7d10
Create Date: 2025-10-02

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '8b2e4d6f0a13'
down_revision: Union[str, None] = '3f9a1c2b7d10'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Items synthesized from free-text LLM answers rather than structured JSON
    op.add_column(
        'articles',
        sa.Column('low_confidence', sa.Boolean(), server_default=sa.false(), nullable=False),
    )


def downgrade() -> None:
    op.drop_column('articles', 'low_confidence')
