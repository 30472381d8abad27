"""
Diagnostic Pipeline — one request, end to end.

  resolve window -> fetch records -> link events -> build prompt
  -> generate -> normalize

Each stage is injected so routes and tests can swap the external boundaries
(analytics backend, generation backend) without touching the flow.
"""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from liftdiag.models.records import UnitRecords
from liftdiag.models.report_schema import SCHEMA_STRUCTURED, DiagnosticReport, Identity
from liftdiag.services import date_range
from liftdiag.services.event_linker import EventLinker, LinkageResult
from liftdiag.services.llm_client import GenerationClient
from liftdiag.services.prompt_builder import PromptBuilder
from liftdiag.services.record_source import LookerRecordSource, RecordSource
from liftdiag.services.response_normalizer import ResponseNormalizer

logger = logging.getLogger("liftdiag-pipeline")


@dataclass
class DiagnosticResult:
    unit: dict
    building: dict
    days: int
    records: UnitRecords
    linkage: LinkageResult
    report: DiagnosticReport
    generated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_response(self) -> dict:
        payload = self.records.to_payload()
        payload["analysis"] = self.report.to_dict()
        return payload


def preview_sentence(days: int, counts: dict) -> str:
    return (
        f"I'll compile the last {days} days of visits ({counts['visits']}), "
        f"breakdowns ({counts['breakdowns']}), maintenance issues ({counts['maintenanceIssues']}), "
        f"and repair requests ({counts['repairRequests']}) for this unit."
    )


class DiagnosticPipeline:

    def __init__(
        self,
        source: Optional[RecordSource] = None,
        linker: Optional[EventLinker] = None,
        builder: Optional[PromptBuilder] = None,
        client: Optional[GenerationClient] = None,
        normalizer: Optional[ResponseNormalizer] = None,
    ):
        self.source = source or LookerRecordSource()
        self.linker = linker or EventLinker()
        self.builder = builder or PromptBuilder()
        self.client = client or GenerationClient()
        self.normalizer = normalizer or ResponseNormalizer()

    async def run(
        self,
        unit: dict,
        building: dict,
        user_context: Optional[str] = None,
        schema_generation: str = SCHEMA_STRUCTURED,
    ) -> DiagnosticResult:
        """Generate one diagnostic. Raises DiagnosticError subclasses on failure."""
        start = time.perf_counter()
        unit_id = str(unit["id"])
        days = date_range.resolve(user_context)
        logger.info(f"Diagnostic requested for unit {unit_id}: {days} days, schema {schema_generation}")

        records = await self.source.fetch_all(unit_id, days)
        linkage = self.linker.link(records.visits, records.downtimes, records.issues, records.parts_requests)
        request = self.builder.build(unit, building, records, linkage, user_context, schema_generation)
        raw = await self.client.generate_json(request)
        report = self.normalizer.normalize(raw, schema_hint=schema_generation)
        report = report.model_copy(update={
            "unit": Identity(id=unit_id, name=str(unit.get("name", ""))),
            "building": Identity(id=str(building.get("id", "")), name=str(building.get("name", ""))),
        })

        duration_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            f"Diagnostic for unit {unit_id} complete: {len(report.parts_replaced)} parts, "
            f"{len(report.repeated_patterns)} patterns, confidence {report.confidence_level}",
            extra={"duration_ms": duration_ms, "unit_id": unit_id},
        )
        return DiagnosticResult(unit, building, days, records, linkage, report)

    async def preview(self, unit_id: str, user_context: Optional[str] = None, days: Optional[int] = None) -> dict:
        """Record counts for the window the request would use, without generating."""
        days = date_range.clamp_days(int(days)) if days else date_range.resolve(user_context)
        records = await self.source.fetch_all(str(unit_id), days)
        counts = records.counts()
        return {"preview": preview_sentence(days, counts), "days": days, "counts": counts}
