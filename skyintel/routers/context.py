"""
Position context API endpoints.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from skyintel.core.errors import ValidationError
from skyintel.schemas import ApiResponse, ErrorResponse
from skyintel.services.context import ContextIntelligence, INFRASTRUCTURE_TYPES
from skyintel.services.engines import get_context_intelligence

router = APIRouter(prefix="/api/v1/context", tags=["Context"])

BOUND_NAMES = ("north", "south", "east", "west")


@router.get(
    "",
    response_model=ApiResponse,
    summary="Get Position Context",
    description="""
Nearest infrastructure, recent strike reports and an intelligence value
(`low`, `moderate`, `high`, `critical`) for a position.
    """,
    responses={400: {"model": ErrorResponse, "description": "Invalid coordinates"}},
)
async def get_context(
    lat: Optional[float] = Query(None, ge=-90, le=90, description="Latitude"),
    lon: Optional[float] = Query(None, ge=-180, le=180, description="Longitude"),
    alt: Optional[float] = Query(None, description="Altitude in meters"),
    context: ContextIntelligence = Depends(get_context_intelligence),
):
    if lat is None or lon is None:
        raise ValidationError("lat and lon are required")
    data = await context.get_position_context(lat, lon, alt)
    return {"success": True, "data": data}


@router.get(
    "/infrastructure",
    response_model=ApiResponse,
    summary="Get Infrastructure",
    description=f"""
Active infrastructure, optionally within bounds.

Supply all four of `north`, `south`, `east`, `west` or none of them.
`types` is a comma-separated subset of: {", ".join(sorted(INFRASTRUCTURE_TYPES))}.
    """,
    responses={400: {"model": ErrorResponse, "description": "Invalid bounds or types"}},
)
async def get_infrastructure(
    north: Optional[float] = Query(None, ge=-90, le=90),
    south: Optional[float] = Query(None, ge=-90, le=90),
    east: Optional[float] = Query(None, ge=-180, le=180),
    west: Optional[float] = Query(None, ge=-180, le=180),
    types: Optional[str] = Query(None, description="Comma-separated infrastructure types"),
    context: ContextIntelligence = Depends(get_context_intelligence),
):
    supplied = {name: value for name, value in zip(BOUND_NAMES, (north, south, east, west))
                if value is not None}
    bounds = None
    if supplied:
        if len(supplied) != len(BOUND_NAMES):
            raise ValidationError("north, south, east and west must be supplied together")
        if supplied["south"] > supplied["north"]:
            raise ValidationError("south must not exceed north")
        bounds = supplied

    type_list = [t.strip() for t in types.split(",") if t.strip()] if types else None
    data = await context.get_infrastructure(bounds, type_list)
    return {"success": True, "data": data}
