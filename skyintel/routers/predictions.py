"""
Prediction API endpoints.

- Trajectory predictions per aircraft (latest generation, or a new one)
- Proximity events between aircraft pairs
- Combined accuracy and proximity statistics
"""
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

from skyintel.core.config import get_settings
from skyintel.core.errors import ValidationError
from skyintel.core.utils import ensure_utc, utcnow
from skyintel.domain import AircraftState, RiskLevel
from skyintel.schemas import (
    ErrorResponse, PredictionStatsResponse, ProximityListResponse, TrajectoryListResponse,
    TrajectoryRequest,
)
from skyintel.services.engines import get_proximity_analyzer, get_trajectory_predictor
from skyintel.services.proximity import ProximityAnalyzer
from skyintel.services.trajectory import TrajectoryPredictor

router = APIRouter(prefix="/api/v1/predictions", tags=["Predictions"])

REQUIRED_FIELDS = ("aircraft_id", "icao_hex", "latitude", "longitude")


@router.get(
    "/trajectory",
    response_model=TrajectoryListResponse,
    summary="Get Trajectory Predictions",
    description="""
Latest prediction generation for one aircraft, ascending by horizon.

Identify the aircraft with either `aircraftId` or `icaoHex`. An aircraft
with no predictions returns an empty list.
    """,
    responses={400: {"model": ErrorResponse, "description": "No aircraft identifier"}},
)
async def get_trajectory(
    aircraft_id: Optional[str] = Query(None, alias="aircraftId", description="Aircraft identifier"),
    icao_hex: Optional[str] = Query(None, alias="icaoHex", description="ICAO hex", example="a12345"),
    predictor: TrajectoryPredictor = Depends(get_trajectory_predictor),
):
    if aircraft_id:
        predictions = await predictor.get_predictions(aircraft_id)
    elif icao_hex:
        predictions = await predictor.get_predictions_by_icao(icao_hex)
    else:
        raise ValidationError("aircraftId or icaoHex is required")

    return {"success": True, "data": [p.to_dict() for p in predictions]}


@router.post(
    "/trajectory",
    response_model=TrajectoryListResponse,
    summary="Create Trajectory Prediction",
    description="""
Predict positions for every configured horizon from the supplied state.

Units are SI: meters, m/s, degrees, deg/s. `aircraft_id`, `icao_hex`,
`latitude` and `longitude` are required.
    """,
    responses={400: {"model": ErrorResponse, "description": "Missing or invalid fields"}},
)
async def create_trajectory(
    body: TrajectoryRequest,
    predictor: TrajectoryPredictor = Depends(get_trajectory_predictor),
):
    missing = [name for name in REQUIRED_FIELDS if getattr(body, name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    state = AircraftState(
        aircraft_id=body.aircraft_id,
        icao_hex=body.icao_hex,
        latitude=body.latitude,
        longitude=body.longitude,
        observed_at=ensure_utc(body.observed_at) if body.observed_at else utcnow(),
        altitude=body.altitude,
        heading=body.heading,
        ground_speed=body.ground_speed,
        turn_rate=body.turn_rate,
        vertical_rate=body.vertical_rate,
    )
    predictions = await predictor.predict_trajectory(state)
    return {"success": True, "data": [p.to_dict() for p in predictions]}


@router.get(
    "/proximity",
    response_model=ProximityListResponse,
    summary="Get Proximity Events",
    description="""
Recorded proximity events, newest first.

**Risk Levels:**
- **CRITICAL**: < 1 km horizontal, < 300 m vertical, converging
- **WARNING**: < 5 km horizontal, < 1000 m vertical, converging
- **ADVISORY**: < 10 km horizontal, converging
    """,
)
async def get_proximity(
    aircraft_id: Optional[str] = Query(None, alias="aircraftId", description="Either aircraft of the pair"),
    risk_level: Optional[RiskLevel] = Query(None, alias="riskLevel", description="Filter by risk level"),
    hours: int = Query(24, ge=1, le=168, description="Look back this many hours"),
    limit: int = Query(100, ge=1, le=1000, description="Maximum events"),
    analyzer: ProximityAnalyzer = Depends(get_proximity_analyzer),
):
    if risk_level == RiskLevel.NONE:
        raise ValidationError("NONE events are never recorded")

    events = await analyzer.get_events(
        aircraft_id=aircraft_id,
        risk_level=risk_level,
        since=utcnow() - timedelta(hours=hours),
        limit=limit,
    )
    return {"success": True, "data": [e.to_dict() for e in events]}


@router.get(
    "/stats",
    response_model=PredictionStatsResponse,
    summary="Get Prediction Statistics",
    description="""
Trajectory accuracy per horizon and proximity statistics over the rolling
window. Accuracy only counts predictions matched against a real
observation.
    """,
)
async def get_stats(
    by_icao: Optional[bool] = Query(None, alias="byIcao", description="Group accuracy per aircraft"),
    window_hours: Optional[int] = Query(None, alias="windowHours", ge=1, le=720),
    predictor: TrajectoryPredictor = Depends(get_trajectory_predictor),
    analyzer: ProximityAnalyzer = Depends(get_proximity_analyzer),
):
    if by_icao is None:
        by_icao = get_settings().accuracy_stats_by_icao

    accuracy = await predictor.get_accuracy_stats(by_icao=by_icao)
    proximity = await analyzer.get_stats(window_hours)
    return {
        "success": True,
        "data": {
            "trajectory": [s.to_dict() for s in accuracy],
            "proximity": proximity.to_dict(),
        },
    }
