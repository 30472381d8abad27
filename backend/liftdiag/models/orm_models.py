"""ORM Models for the Lift Diagnostic Service — SQLAlchemy 2.0"""
import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import String, Text, DateTime, Index
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func
from liftdiag.db import Base


def gen_uuid():
    return str(uuid.uuid4())


# ── DIAGNOSTICS ──────────────────────────────────────────────────────────────
class Diagnostic(Base):
    """One generated diagnostic. Immutable once written; only hard delete."""
    __tablename__ = "diagnostics"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=gen_uuid)
    unit_id: Mapped[str] = mapped_column(Text, nullable=False)
    unit_name: Mapped[str] = mapped_column(Text, nullable=False)
    building_name: Mapped[str] = mapped_column(Text, nullable=False)
    country: Mapped[str] = mapped_column(String(8), nullable=False, default="FR", server_default="FR")
    user_id: Mapped[Optional[str]] = mapped_column(Text)
    user_name: Mapped[Optional[str]] = mapped_column(Text)
    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    # Source records as compiled for the prompt
    visit_reports: Mapped[list] = mapped_column(JSONB, nullable=False, default=list, server_default="[]")
    breakdowns: Mapped[list] = mapped_column(JSONB, nullable=False, default=list, server_default="[]")
    maintenance_issues: Mapped[list] = mapped_column(JSONB, nullable=False, default=list, server_default="[]")
    repair_requests: Mapped[Optional[list]] = mapped_column(JSONB)
    # Canonical DiagnosticReport (camelCase JSON)
    analysis: Mapped[Optional[dict]] = mapped_column(JSONB)

    __table_args__ = (
        Index("ix_diagnostics_unit_id", "unit_id"),
        Index("ix_diagnostics_unit_name", "unit_name"),
        Index("ix_diagnostics_building_name", "building_name"),
        Index("ix_diagnostics_generated_at", "generated_at"),
        Index("ix_diagnostics_country", "country"),
        Index("ix_diagnostics_user_id", "user_id"),
    )
