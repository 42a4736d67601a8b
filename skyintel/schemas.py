"""
Pydantic schemas for request/response validation with full OpenAPI documentation.
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field, ConfigDict


# ============================================================================
# Envelope
# ============================================================================

class ApiResponse(BaseModel):
    """Every endpoint answers with this envelope."""
    success: bool = Field(..., description="Whether the request succeeded")
    data: Optional[Any] = Field(None, description="Payload on success")
    error: Optional[str] = Field(None, description="Error message on failure")


class ErrorResponse(BaseModel):
    """Failure envelope."""
    model_config = ConfigDict(
        json_schema_extra={
            "example": {"success": False, "error": "aircraftId or icaoHex is required"}
        }
    )

    success: bool = Field(False, description="Always false")
    error: str = Field(..., description="Error message")


# ============================================================================
# Trajectory Schemas
# ============================================================================

class TrajectoryRequest(BaseModel):
    """
    Aircraft state to predict from, in SI units.

    Required fields are checked by the endpoint so that a missing field
    produces a 400 with the standard envelope.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "aircraft_id": "a12345",
                "icao_hex": "a12345",
                "latitude": 47.6062,
                "longitude": -122.3321,
                "altitude": 10668.0,
                "heading": 270.5,
                "ground_speed": 231.5,
                "turn_rate": 0.0,
                "vertical_rate": 0.0,
            }
        }
    )

    aircraft_id: Optional[str] = Field(None, description="Aircraft identifier")
    icao_hex: Optional[str] = Field(None, description="ICAO 24-bit hex identifier")
    latitude: Optional[float] = Field(None, description="Latitude in decimal degrees")
    longitude: Optional[float] = Field(None, description="Longitude in decimal degrees")
    altitude: Optional[float] = Field(None, description="Altitude in meters")
    heading: Optional[float] = Field(None, description="True track in degrees")
    ground_speed: Optional[float] = Field(None, description="Ground speed in m/s")
    turn_rate: Optional[float] = Field(None, description="Turn rate in deg/s, positive clockwise")
    vertical_rate: Optional[float] = Field(None, description="Vertical rate in m/s")
    observed_at: Optional[datetime] = Field(None, description="Observation time, defaults to now")


class TrajectoryPredictionResponse(BaseModel):
    """Single trajectory prediction row."""
    prediction_id: str = Field(..., description="Prediction ID")
    aircraft_id: str = Field(..., description="Aircraft identifier")
    icao_hex: str = Field(..., description="ICAO hex")
    generated_at: str = Field(..., description="Generation time shared by all horizons")
    horizon_seconds: int = Field(..., description="Prediction horizon in seconds")
    target_time: str = Field(..., description="generated_at + horizon")
    predicted_latitude: float = Field(..., description="Predicted latitude")
    predicted_longitude: float = Field(..., description="Predicted longitude")
    predicted_altitude: Optional[float] = Field(None, description="Predicted altitude in meters")
    predicted_heading: Optional[float] = Field(None, description="Predicted heading in degrees")
    uncertainty_radius_meters: Optional[float] = Field(None, description="Radius the true position is expected within")
    confidence: Optional[float] = Field(None, description="Confidence in the prediction, 0 to 1")
    actual_latitude: Optional[float] = Field(None, description="Observed latitude once matched")
    actual_longitude: Optional[float] = Field(None, description="Observed longitude once matched")
    actual_altitude: Optional[float] = Field(None, description="Observed altitude once matched")
    error_distance_meters: Optional[float] = Field(None, description="Great-circle error once matched")
    reconciled_at: Optional[str] = Field(None, description="Reconciliation time")
    reconciliation_status: str = Field(..., description="pending, matched or no_ground_truth")


class TrajectoryListResponse(BaseModel):
    """Latest prediction generation."""
    success: bool = Field(True)
    data: list[TrajectoryPredictionResponse] = Field(default_factory=list)


# ============================================================================
# Proximity Schemas
# ============================================================================

class ProximityEventResponse(BaseModel):
    """Single proximity event record."""
    event_id: str = Field(..., description="Event ID")
    aircraft_a_id: str = Field(..., description="Lower aircraft id of the pair")
    aircraft_b_id: str = Field(..., description="Higher aircraft id of the pair")
    icao_hex_a: Optional[str] = Field(None, description="ICAO hex of aircraft A")
    icao_hex_b: Optional[str] = Field(None, description="ICAO hex of aircraft B")
    detected_at: str = Field(..., description="Detection time")
    horizontal_separation_meters: float = Field(..., description="Great-circle separation")
    vertical_separation_meters: float = Field(..., description="Altitude difference")
    closure_rate_mps: float = Field(..., description="Separation rate, negative when converging")
    risk_level: str = Field(..., description="CRITICAL, WARNING or ADVISORY")
    closest_approach_meters: Optional[float] = Field(None, description="Predicted minimum horizontal separation")
    time_to_closest_seconds: Optional[float] = Field(None, description="Seconds until closest approach, null beyond look-ahead")
    context_snapshot: Optional[dict] = Field(None, description="Position context at detection")


class ProximityListResponse(BaseModel):
    """Proximity events, newest first."""
    success: bool = Field(True)
    data: list[ProximityEventResponse] = Field(default_factory=list)


# ============================================================================
# Stats Schemas
# ============================================================================

class AccuracyStatResponse(BaseModel):
    """Error aggregate for one horizon bucket."""
    horizon_seconds: int = Field(..., description="Prediction horizon in seconds")
    icao_hex: Optional[str] = Field(None, description="Aircraft, when grouped per aircraft")
    sample_count: int = Field(..., description="Matched predictions in the bucket")
    mean_error_meters: float = Field(..., description="Mean error")
    median_error_meters: float = Field(..., description="Median error")
    p95_error_meters: float = Field(..., description="95th percentile error")
    accurate_count: int = Field(0, description="Errors within the predicted uncertainty radius")
    accuracy_rate: float = Field(0.0, description="accurate_count / sample_count")
    last_updated: Optional[str] = Field(None, description="Latest reconciliation in the bucket")


class ProximityStatsResponse(BaseModel):
    """Proximity event aggregate over a rolling window."""
    window_hours: int = Field(..., description="Window size in hours")
    total_events: int = Field(0, description="Events in the window")
    events_by_risk: dict[str, int] = Field(default_factory=dict, description="Event count by risk level")
    mean_horizontal_separation_meters: Optional[float] = Field(None)
    mean_vertical_separation_meters: Optional[float] = Field(None)
    mean_closure_rate_mps: Optional[float] = Field(None)


class PredictionStatsData(BaseModel):
    trajectory: list[AccuracyStatResponse] = Field(default_factory=list, description="Accuracy per horizon")
    proximity: ProximityStatsResponse


class PredictionStatsResponse(BaseModel):
    """Combined accuracy and proximity statistics."""
    success: bool = Field(True)
    data: PredictionStatsData
