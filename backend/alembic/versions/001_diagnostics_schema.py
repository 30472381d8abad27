"""diagnostics_schema

Revision ID: 001_diagnostics
Revises:
Create Date: 2025-12-10

Creates the diagnostics table: unit / building identity, the compiled
source records and the canonical analysis, with lookup indexes.

Idempotent: skips creation when Base.metadata.create_all() already made it.
"""
import logging
from alembic import op
import sqlalchemy as sa
from sqlalchemy import text
from sqlalchemy.dialects.postgresql import JSONB

revision = '001_diagnostics'
down_revision = None
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.001")


def _table_exists(conn, table_name: str) -> bool:
    result = conn.execute(
        text(
            "SELECT EXISTS("
            "  SELECT 1 FROM information_schema.tables"
            "  WHERE table_name = :tname"
            ")"
        ),
        {"tname": table_name},
    )
    return bool(result.scalar())


def upgrade() -> None:
    conn = op.get_bind()

    if _table_exists(conn, 'diagnostics'):
        logger.info("Table diagnostics already exists — skipping create")
        return

    op.create_table(
        'diagnostics',
        sa.Column('id', sa.String(36), primary_key=True),
        sa.Column('unit_id', sa.Text, nullable=False),
        sa.Column('unit_name', sa.Text, nullable=False),
        sa.Column('building_name', sa.Text, nullable=False),
        sa.Column('generated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('visit_reports', JSONB, nullable=False, server_default='[]'),
        sa.Column('breakdowns', JSONB, nullable=False, server_default='[]'),
        sa.Column('maintenance_issues', JSONB, nullable=False, server_default='[]'),
        sa.Column('repair_requests', JSONB, nullable=True),
        sa.Column('analysis', JSONB, nullable=True),
    )
    for column in ('unit_id', 'generated_at', 'unit_name', 'building_name'):
        op.create_index(f'ix_diagnostics_{column}', 'diagnostics', [column])
    logger.info("Created table: diagnostics")


def downgrade() -> None:
    conn = op.get_bind()
    if _table_exists(conn, 'diagnostics'):
        op.drop_table('diagnostics')
