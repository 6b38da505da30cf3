"""create companies, articles, ingestion_runs and telemetry_events

Revision ID: 3f9a1c2b7d10
Revises:
Create Date: 2025-09-18

"""
from typing import Sequence, Union
import uuid

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = '3f9a1c2b7d10'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

SEED_COMPANIES = [
    ("Qualcomm", ["Snapdragon"]),
    ("Google", ["Android", "Pixel"]),
    ("Samsung", ["Galaxy"]),
    ("Whirlpool", ["KitchenAid", "Maytag"]),
    ("Best Buy", ["Geek Squad"]),
]


def upgrade() -> None:
    companies = op.create_table(
        'companies',
        sa.Column('id', sa.String(length=36), nullable=False),
        sa.Column('canonical_name', sa.String(), nullable=False),
        sa.Column('aliases', sa.JSON(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('canonical_name', name='uq_companies_canonical_name')
    )

    op.create_table(
        'articles',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('company_id', sa.String(length=36), nullable=False),
        sa.Column('title', sa.Text(), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('url_norm', sa.Text(), nullable=False),
        sa.Column('source_domain', sa.String(), nullable=False),
        sa.Column('published_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('raw_json', sa.JSON(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['company_id'], ['companies.id'], ),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('url_norm', name='uq_articles_url_norm')
    )
    op.create_index(op.f('ix_articles_company_id'), 'articles', ['company_id'], unique=False)
    op.create_index('ix_articles_published_at', 'articles', ['published_at'], unique=False)

    op.create_table(
        'ingestion_runs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('run_id', sa.String(length=36), nullable=False),
        sa.Column('provider', sa.String(), nullable=False),
        sa.Column('item_count', sa.Integer(), nullable=False),
        sa.Column('dedupe_rate', sa.Float(), nullable=False),
        sa.Column('scheduled', sa.Boolean(), nullable=False),
        sa.Column('error_kind', sa.String(), nullable=True),
        sa.Column('ts', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_ingestion_runs_run_id'), 'ingestion_runs', ['run_id'], unique=False)
    op.create_index(op.f('ix_ingestion_runs_ts'), 'ingestion_runs', ['ts'], unique=False)

    op.create_table(
        'telemetry_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('event', sa.String(), nullable=False),
        sa.Column('payload', sa.JSON(), nullable=True),
        sa.Column('ts', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id')
    )
    op.create_index(op.f('ix_telemetry_events_event'), 'telemetry_events', ['event'], unique=False)

    op.bulk_insert(
        companies,
        [
            {'id': str(uuid.uuid4()), 'canonical_name': name, 'aliases': aliases}
            for name, aliases in SEED_COMPANIES
        ],
    )


def downgrade() -> None:
    op.drop_index(op.f('ix_telemetry_events_event'), table_name='telemetry_events')
    op.drop_table('telemetry_events')
    op.drop_index(op.f('ix_ingestion_runs_ts'), table_name='ingestion_runs')
    op.drop_index(op.f('ix_ingestion_runs_run_id'), table_name='ingestion_runs')
    op.drop_table('ingestion_runs')
    op.drop_index('ix_articles_published_at', table_name='articles')
    op.drop_index(op.f('ix_articles_company_id'), table_name='articles')
    op.drop_table('articles')
    op.drop_table('companies')
