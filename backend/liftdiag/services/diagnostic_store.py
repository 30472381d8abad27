"""
Diagnostic Store — persisted diagnostics (put / list / get / delete, no update).

Stored analyses are passed through the normalizer on every read so rows written
under an older schema generation present the canonical shape.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete as sa_delete, select

from liftdiag import config
from liftdiag.db import AsyncSessionLocal
from liftdiag.models.orm_models import Diagnostic, gen_uuid
from liftdiag.models.records import UnitRecords
from liftdiag.models.report_schema import DiagnosticReport
from liftdiag.services.response_normalizer import ResponseNormalizer

logger = logging.getLogger("liftdiag-store")

DEFAULT_LIST_LIMIT = 200


@dataclass
class DiagnosticFilters:
    country: Optional[str] = None
    user_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    unit_id: Optional[str] = None
    unit_name: Optional[str] = None      # case-insensitive contains
    limit: int = DEFAULT_LIST_LIMIT


def build_list_query(filters: DiagnosticFilters):
    """SELECT for `list`, newest first."""
    stmt = select(Diagnostic)
    if filters.country:
        stmt = stmt.where(Diagnostic.country == filters.country)
    if filters.user_id:
        stmt = stmt.where(Diagnostic.user_id == filters.user_id)
    if filters.start_date:
        stmt = stmt.where(Diagnostic.generated_at >= filters.start_date)
    if filters.end_date:
        stmt = stmt.where(Diagnostic.generated_at <= filters.end_date)
    if filters.unit_id:
        stmt = stmt.where(Diagnostic.unit_id == filters.unit_id)
    if filters.unit_name:
        stmt = stmt.where(Diagnostic.unit_name.ilike(f"%{filters.unit_name}%"))
    stmt = stmt.order_by(Diagnostic.generated_at.desc())
    if filters.limit:
        stmt = stmt.limit(filters.limit)
    return stmt


def serialize(row: Diagnostic, normalizer: Optional[ResponseNormalizer] = None) -> dict:
    normalizer = normalizer or ResponseNormalizer()
    generated_at = row.generated_at.isoformat() if row.generated_at else None
    return {
        "id": row.id,
        "unitId": row.unit_id,
        "unitName": row.unit_name,
        "buildingName": row.building_name,
        "country": row.country,
        "userId": row.user_id,
        "userName": row.user_name,
        "visitReports": row.visit_reports or [],
        "breakdowns": row.breakdowns or [],
        "maintenanceIssues": row.maintenance_issues or [],
        "repairRequests": row.repair_requests or [],
        "analysis": normalizer.normalize(row.analysis).to_dict() if row.analysis else None,
        "generatedAt": generated_at,
    }


class DiagnosticStore:

    def __init__(self, session_factory=None, normalizer: Optional[ResponseNormalizer] = None):
        self._session_factory = session_factory or AsyncSessionLocal
        self._normalizer = normalizer or ResponseNormalizer()

    async def put(self, report: DiagnosticReport, metadata: dict, records: UnitRecords) -> str:
        """
        Persist one diagnostic. `metadata` carries unitId, unitName, buildingName
        and optionally country, userId, userName, generatedAt.
        """
        payload = records.to_payload()
        row = Diagnostic(
            id=gen_uuid(),
            unit_id=str(metadata["unitId"]),
            unit_name=str(metadata["unitName"]),
            building_name=str(metadata["buildingName"]),
            country=metadata.get("country") or config.DEFAULT_COUNTRY,
            user_id=metadata.get("userId"),
            user_name=metadata.get("userName"),
            generated_at=metadata.get("generatedAt") or datetime.now(timezone.utc),
            visit_reports=payload["visitReports"],
            breakdowns=payload["breakdowns"],
            maintenance_issues=payload["maintenanceIssues"],
            repair_requests=payload["repairRequests"],
            analysis=report.to_dict(),
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
        logger.info(f"Stored diagnostic {row.id} for unit {row.unit_id}")
        return row.id

    async def list(self, filters: Optional[DiagnosticFilters] = None) -> list:
        stmt = build_list_query(filters or DiagnosticFilters())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            rows = result.scalars().all()
        return [serialize(row, self._normalizer) for row in rows]

    async def get(self, diagnostic_id: str) -> Optional[dict]:
        async with self._session_factory() as session:
            row = await session.get(Diagnostic, diagnostic_id)
        return serialize(row, self._normalizer) if row else None

    async def delete(self, diagnostic_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(sa_delete(Diagnostic).where(Diagnostic.id == diagnostic_id))
            await session.commit()
        deleted = (result.rowcount or 0) > 0
        if deleted:
            logger.info(f"Deleted diagnostic {diagnostic_id}")
        return deleted
