"""diagnostics_owner_country

Revision ID: 002_owner_country
Revises: 001_diagnostics
Create Date: 2025-12-10

Adds country (default 'FR'), user_id and user_name to diagnostics so the
recent list can be filtered per country and per author.
"""
import logging
from alembic import op
import sqlalchemy as sa
from sqlalchemy import text

revision = '002_owner_country'
down_revision = '001_diagnostics'
branch_labels = None
depends_on = None

logger = logging.getLogger("alembic.002")

_COLUMNS = [
    ('country', sa.Column('country', sa.String(8), nullable=False, server_default='FR')),
    ('user_id', sa.Column('user_id', sa.Text, nullable=True)),
    ('user_name', sa.Column('user_name', sa.Text, nullable=True)),
]


def _column_exists(conn, table_name: str, column_name: str) -> bool:
    result = conn.execute(
        text(
            "SELECT EXISTS("
            "  SELECT 1 FROM information_schema.columns"
            "  WHERE table_name = :tname AND column_name = :cname"
            ")"
        ),
        {"tname": table_name, "cname": column_name},
    )
    return bool(result.scalar())


def upgrade() -> None:
    conn = op.get_bind()
    with op.batch_alter_table('diagnostics') as batch_op:
        for col_name, col_def in _COLUMNS:
            if not _column_exists(conn, 'diagnostics', col_name):
                batch_op.add_column(col_def)
                logger.info(f"Added column diagnostics.{col_name}")
    op.create_index('ix_diagnostics_country', 'diagnostics', ['country'], if_not_exists=True)
    op.create_index('ix_diagnostics_user_id', 'diagnostics', ['user_id'], if_not_exists=True)


def downgrade() -> None:
    conn = op.get_bind()
    op.drop_index('ix_diagnostics_user_id', table_name='diagnostics', if_exists=True)
    op.drop_index('ix_diagnostics_country', table_name='diagnostics', if_exists=True)
    with op.batch_alter_table('diagnostics') as batch_op:
        for col_name, _ in reversed(_COLUMNS):
            if _column_exists(conn, 'diagnostics', col_name):
                batch_op.drop_column(col_name)
