"""
Diagnostic Routes — generate, preview, list, and delete lift diagnostics.

POST   /api/diagnostic/analyze   — run the pipeline, store, return records + analysis
POST   /api/diagnostic/generate  — run the pipeline, return the PDF summary
POST   /api/diagnostic/preview   — record counts for the window a request would use
GET    /api/diagnostic/recent    — stored diagnostics, newest first
DELETE /api/diagnostic/delete    — hard delete (authenticated)
"""
import logging
from datetime import datetime, time, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from liftdiag.api.deps import (
    CurrentUser,
    get_current_user,
    get_optional_user,
    get_pipeline,
    get_renderer,
    get_store,
)
from liftdiag.models.report_schema import SCHEMA_GENERATIONS, SCHEMA_STRUCTURED
from liftdiag.services.diagnostic_pipeline import DiagnosticPipeline, DiagnosticResult
from liftdiag.services.diagnostic_store import DiagnosticFilters, DiagnosticStore
from liftdiag.services.report_engine import ReportRenderer, pdf_filename

router = APIRouter(prefix="/api/diagnostic", tags=["Diagnostics"])
logger = logging.getLogger("liftdiag-api.diagnostics")

RECENT_DEFAULT_DAYS = 30


class DiagnosticRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)

    unit_id: Optional[str] = None
    unit_name: Optional[str] = None
    building_id: Optional[str] = None
    building_name: Optional[str] = None
    context: Optional[str] = None
    country: Optional[str] = None
    schema_generation: Optional[str] = None


class PreviewRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, coerce_numbers_to_str=True)

    unit_id: Optional[str] = None
    context: Optional[str] = None
    days_back: Optional[int] = None


def _validated(body: DiagnosticRequest) -> tuple:
    if not (body.unit_id and body.unit_name and body.building_id and body.building_name):
        raise HTTPException(status_code=400, detail="unitId, unitName, buildingId, and buildingName are required")
    schema = body.schema_generation or SCHEMA_STRUCTURED
    if schema not in SCHEMA_GENERATIONS:
        raise HTTPException(status_code=400, detail=f"schemaGeneration must be one of {', '.join(SCHEMA_GENERATIONS)}")
    unit = {"id": body.unit_id, "name": body.unit_name}
    building = {"id": body.building_id, "name": body.building_name}
    return unit, building, schema


async def _store_result(
    store: Optional[DiagnosticStore],
    result: DiagnosticResult,
    body: DiagnosticRequest,
    user: Optional[CurrentUser],
) -> Optional[str]:
    """Persist a finished diagnostic. Failures are logged and never fail the request."""
    if store is None:
        return None
    metadata = {
        "unitId": result.unit["id"],
        "unitName": result.unit["name"],
        "buildingName": result.building["name"],
        "country": body.country or (user.country if user else None),
        "userId": user.id if user else None,
        "userName": user.name if user else None,
        "generatedAt": result.generated_at,
    }
    try:
        return await store.put(result.report, metadata, result.records)
    except Exception as e:
        logger.error(f"Error storing diagnostic for unit {result.unit['id']}: {e}")
        return None


def _parse_date(value: Optional[str], name: str, end_of_day: bool = False) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        raise HTTPException(status_code=400, detail=f"{name} must be an ISO date")
    if end_of_day and len(value) == 10:
        parsed = datetime.combine(parsed.date(), time.max)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@router.post("/analyze")
async def analyze(
    body: DiagnosticRequest,
    pipeline: DiagnosticPipeline = Depends(get_pipeline),
    store: Optional[DiagnosticStore] = Depends(get_store),
    user: Optional[CurrentUser] = Depends(get_optional_user),
):
    unit, building, schema = _validated(body)
    result = await pipeline.run(unit, building, body.context, schema)
    diagnostic_id = await _store_result(store, result, body, user)
    response = result.to_response()
    if diagnostic_id:
        response["diagnosticId"] = diagnostic_id
    return response


@router.post("/generate")
async def generate(
    body: DiagnosticRequest,
    pipeline: DiagnosticPipeline = Depends(get_pipeline),
    store: Optional[DiagnosticStore] = Depends(get_store),
    renderer: ReportRenderer = Depends(get_renderer),
    user: Optional[CurrentUser] = Depends(get_optional_user),
):
    """Diagnostic as a downloadable PDF."""
    unit, building, schema = _validated(body)
    result = await pipeline.run(unit, building, body.context, schema)
    await _store_result(store, result, body, user)
    pdf = renderer.render(result.report, unit, building, result.records.counts(), result.generated_at)
    filename = pdf_filename(unit["id"], unit["name"], result.generated_at)
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/preview")
async def preview(
    body: PreviewRequest,
    pipeline: DiagnosticPipeline = Depends(get_pipeline),
):
    if not body.unit_id:
        raise HTTPException(status_code=400, detail="unitId is required")
    return await pipeline.preview(body.unit_id, body.context, body.days_back)


@router.get("/recent")
async def recent(
    country: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None, alias="userId"),
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    unit_id: Optional[str] = Query(None, alias="unitId"),
    unit_name: Optional[str] = Query(None, alias="unitName"),
    store: Optional[DiagnosticStore] = Depends(get_store),
    user: Optional[CurrentUser] = Depends(get_optional_user),
):
    """
    Stored diagnostics matching the filters. userId=me resolves to the caller;
    with no date filter at all, only the last 30 days are returned.
    """
    if user_id == "me":
        user_id = user.id if user else None

    filters = DiagnosticFilters(
        country=country,
        user_id=user_id,
        start_date=_parse_date(start_date, "startDate"),
        end_date=_parse_date(end_date, "endDate", end_of_day=True),
        unit_id=unit_id,
        unit_name=unit_name,
    )
    if filters.start_date is None and filters.end_date is None:
        filters.start_date = datetime.now(timezone.utc) - timedelta(days=RECENT_DEFAULT_DAYS)

    if store is None:
        return {"results": []}
    results = await store.list(filters)
    logger.info(f"Found {len(results)} stored diagnostics")
    return {"results": results}


@router.delete("/delete")
async def delete_diagnostic(
    diagnostic_id: Optional[str] = Query(None, alias="id"),
    store: Optional[DiagnosticStore] = Depends(get_store),
    user: CurrentUser = Depends(get_current_user),
):
    if not diagnostic_id:
        raise HTTPException(status_code=400, detail="Missing diagnostic ID")
    if store is None or not await store.delete(diagnostic_id):
        raise HTTPException(status_code=404, detail="Diagnostic not found")
    logger.info(f"Diagnostic {diagnostic_id} deleted by {user.id}")
    return {"success": True, "message": "Diagnostic deleted successfully", "deletedId": diagnostic_id}
