"""Services package."""
from skyintel.services.kinematics import extrapolate
from skyintel.services.storage import Storage, MemoryStorage, SqlStorage
from skyintel.services.trajectory import TrajectoryPredictor, ReconciliationResult
from skyintel.services.proximity import ProximityAnalyzer, classify_risk, closure_rate
from skyintel.services.context import ContextIntelligence
from skyintel.services.ingestion import fetch_aircraft_states, parse_aircraft_json
from skyintel.services.cycle import run_prediction_cycle

__all__ = [
    # Kinematics
    "extrapolate",
    # Storage
    "Storage",
    "MemoryStorage",
    "SqlStorage",
    # Engines
    "TrajectoryPredictor",
    "ReconciliationResult",
    "ProximityAnalyzer",
    "classify_risk",
    "closure_rate",
    # Collaborators
    "ContextIntelligence",
    "fetch_aircraft_states",
    "parse_aircraft_json",
    "run_prediction_cycle",
]
