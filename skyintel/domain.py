"""
Domain records shared by the prediction and proximity engines.

Units are SI throughout: meters, meters per second, degrees, seconds.
All timestamps are timezone-aware UTC datetimes.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional


class RiskLevel(str, Enum):
    """Proximity risk classification, most severe first."""
    CRITICAL = "CRITICAL"
    WARNING = "WARNING"
    ADVISORY = "ADVISORY"
    NONE = "NONE"


class ReconciliationStatus(str, Enum):
    """Lifecycle of a trajectory prediction."""
    PENDING = "pending"
    MATCHED = "matched"
    NO_GROUND_TRUTH = "no_ground_truth"


@dataclass(frozen=True)
class AircraftState:
    """Immutable snapshot of one aircraft at one instant."""
    aircraft_id: str
    icao_hex: str
    latitude: float
    longitude: float
    observed_at: datetime
    altitude: Optional[float] = None
    heading: Optional[float] = None
    ground_speed: Optional[float] = None
    turn_rate: Optional[float] = None  # deg/s, positive = clockwise
    vertical_rate: Optional[float] = None

    def __post_init__(self):
        if self.icao_hex:
            object.__setattr__(self, "icao_hex", self.icao_hex.strip().lower())

    def to_dict(self) -> dict:
        return {
            "aircraft_id": self.aircraft_id,
            "icao_hex": self.icao_hex,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "altitude": self.altitude,
            "heading": self.heading,
            "ground_speed": self.ground_speed,
            "turn_rate": self.turn_rate,
            "vertical_rate": self.vertical_rate,
            "observed_at": self.observed_at.isoformat(),
        }


@dataclass(frozen=True)
class PredictedState:
    """Output of the kinematic model for one elapsed time."""
    latitude: float
    longitude: float
    altitude: Optional[float]
    heading: Optional[float]
    ground_speed: Optional[float]
    dt_seconds: float


@dataclass
class TrajectoryPrediction:
    """One predicted position for one (aircraft, generation, horizon)."""
    prediction_id: str
    aircraft_id: str
    icao_hex: str
    generated_at: datetime
    horizon_seconds: int
    predicted_latitude: float
    predicted_longitude: float
    predicted_altitude: Optional[float] = None
    predicted_heading: Optional[float] = None
    uncertainty_radius_meters: Optional[float] = None
    confidence: Optional[float] = None
    actual_latitude: Optional[float] = None
    actual_longitude: Optional[float] = None
    actual_altitude: Optional[float] = None
    error_distance_meters: Optional[float] = None
    reconciled_at: Optional[datetime] = None
    reconciliation_status: ReconciliationStatus = ReconciliationStatus.PENDING

    @property
    def target_time(self) -> datetime:
        return self.generated_at + timedelta(seconds=self.horizon_seconds)

    @property
    def is_pending(self) -> bool:
        return self.reconciliation_status == ReconciliationStatus.PENDING

    def copy(self) -> "TrajectoryPrediction":
        return replace(self)

    def to_dict(self) -> dict:
        return {
            "prediction_id": self.prediction_id,
            "aircraft_id": self.aircraft_id,
            "icao_hex": self.icao_hex,
            "generated_at": self.generated_at.isoformat(),
            "horizon_seconds": self.horizon_seconds,
            "target_time": self.target_time.isoformat(),
            "predicted_latitude": self.predicted_latitude,
            "predicted_longitude": self.predicted_longitude,
            "predicted_altitude": self.predicted_altitude,
            "predicted_heading": self.predicted_heading,
            "uncertainty_radius_meters": self.uncertainty_radius_meters,
            "confidence": self.confidence,
            "actual_latitude": self.actual_latitude,
            "actual_longitude": self.actual_longitude,
            "actual_altitude": self.actual_altitude,
            "error_distance_meters": self.error_distance_meters,
            "reconciled_at": self.reconciled_at.isoformat() if self.reconciled_at else None,
            "reconciliation_status": self.reconciliation_status.value,
        }


@dataclass(frozen=True)
class AccuracyStat:
    """Error aggregate over matched predictions for one horizon bucket."""
    horizon_seconds: int
    sample_count: int
    mean_error_meters: float
    median_error_meters: float
    p95_error_meters: float
    last_updated: Optional[datetime]
    icao_hex: Optional[str] = None
    accurate_count: int = 0  # errors within the predicted uncertainty radius

    @property
    def accuracy_rate(self) -> float:
        return self.accurate_count / self.sample_count if self.sample_count else 0.0

    def to_dict(self) -> dict:
        return {
            "horizon_seconds": self.horizon_seconds,
            "icao_hex": self.icao_hex,
            "sample_count": self.sample_count,
            "mean_error_meters": self.mean_error_meters,
            "median_error_meters": self.median_error_meters,
            "p95_error_meters": self.p95_error_meters,
            "accurate_count": self.accurate_count,
            "accuracy_rate": self.accuracy_rate,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


@dataclass(frozen=True)
class ProximityEvent:
    """A detected close encounter. Never mutated once written."""
    event_id: str
    aircraft_a_id: str
    aircraft_b_id: str
    detected_at: datetime
    horizontal_separation_meters: float
    vertical_separation_meters: float
    closure_rate_mps: float  # negative = converging
    risk_level: RiskLevel
    icao_hex_a: Optional[str] = None
    icao_hex_b: Optional[str] = None
    closest_approach_meters: Optional[float] = None
    time_to_closest_seconds: Optional[float] = None  # None when no approach within look-ahead
    context_snapshot: Optional[dict[str, Any]] = None

    def to_dict(self) -> dict:
        return {
            "event_id": self.event_id,
            "aircraft_a_id": self.aircraft_a_id,
            "aircraft_b_id": self.aircraft_b_id,
            "icao_hex_a": self.icao_hex_a,
            "icao_hex_b": self.icao_hex_b,
            "detected_at": self.detected_at.isoformat(),
            "horizontal_separation_meters": self.horizontal_separation_meters,
            "vertical_separation_meters": self.vertical_separation_meters,
            "closure_rate_mps": self.closure_rate_mps,
            "risk_level": self.risk_level.value,
            "closest_approach_meters": self.closest_approach_meters,
            "time_to_closest_seconds": self.time_to_closest_seconds,
            "context_snapshot": self.context_snapshot,
        }


@dataclass(frozen=True)
class ProximityStats:
    """Aggregate over persisted proximity events in a rolling window."""
    window_hours: int
    total_events: int
    events_by_risk: dict[str, int] = field(default_factory=dict)
    mean_horizontal_separation_meters: Optional[float] = None
    mean_vertical_separation_meters: Optional[float] = None
    mean_closure_rate_mps: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            "window_hours": self.window_hours,
            "total_events": self.total_events,
            "events_by_risk": dict(self.events_by_risk),
            "mean_horizontal_separation_meters": self.mean_horizontal_separation_meters,
            "mean_vertical_separation_meters": self.mean_vertical_separation_meters,
            "mean_closure_rate_mps": self.mean_closure_rate_mps,
        }
