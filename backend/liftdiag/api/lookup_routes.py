"""Building and unit lookups for the unit picker."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from liftdiag.api.deps import get_record_source
from liftdiag.services.record_source import RecordSource

router = APIRouter(prefix="/api", tags=["Lookups"])


@router.get("/buildings")
async def list_buildings(
    country: Optional[str] = Query(None),
    source: RecordSource = Depends(get_record_source),
):
    buildings = await source.fetch_buildings(country)
    return {"buildings": buildings}


@router.get("/units")
async def list_units(
    building_id: Optional[str] = Query(None, alias="buildingId"),
    source: RecordSource = Depends(get_record_source),
):
    if not building_id:
        raise HTTPException(status_code=400, detail="buildingId parameter is required")
    units = await source.fetch_units(building_id)
    return {"units": units}
