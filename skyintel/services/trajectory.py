"""
Trajectory prediction service.

Generates one prediction per configured horizon for an aircraft, later
reconciles each prediction against the observation that arrives near its
target time, and aggregates the resulting error distances into accuracy
statistics.

Prediction lifecycle:
- pending: created, waiting for ground truth
- matched: an observation arrived within the tolerance window
- no_ground_truth: the horizon plus grace period elapsed with no match
"""
import logging
import statistics as pystats
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

import numpy as np

from skyintel.core.config import get_settings
from skyintel.core.errors import ValidationError
from skyintel.core.utils import METERS_PER_NM, haversine_m, is_valid_position, utcnow
from skyintel.domain import AccuracyStat, AircraftState, TrajectoryPrediction
from skyintel.services.kinematics import DEFAULT_TURN_RATE_EPSILON, extrapolate
from skyintel.services.storage import Storage

logger = logging.getLogger(__name__)

# Uncertainty radius, per second of extrapolation:
# - 0.2 NM per minute regardless of motion
# - 2% of the distance flown
# - 1 NM per hour for every deg/s of turn rate above the turn threshold
UNCERTAINTY_GROWTH_MPS = 0.2 * METERS_PER_NM / 60.0
SPEED_UNCERTAINTY_FACTOR = 0.02
TURN_UNCERTAINTY_FACTOR = METERS_PER_NM / 3600.0
TURN_UNCERTAINTY_MIN_RATE = 0.5  # deg/s

# Physics-only confidence, decaying linearly to zero over CONFIDENCE_DECAY_SECONDS
BASE_CONFIDENCE = 0.7
CONFIDENCE_DECAY_SECONDS = 6000.0


@dataclass
class ReconciliationResult:
    """Outcome of reconciling one observation."""
    matched: int = 0
    expired: int = 0
    skipped: int = 0  # already reconciled by an earlier delivery

    def to_dict(self) -> dict:
        return {"matched": self.matched, "expired": self.expired, "skipped": self.skipped}


def validate_state(state: AircraftState) -> None:
    """Raise ValidationError for states no prediction can be built from."""
    if not state.aircraft_id:
        raise ValidationError("aircraft_id is required")
    if not state.icao_hex:
        raise ValidationError("icao_hex is required")
    if not is_valid_position(state.latitude, state.longitude):
        raise ValidationError("latitude and longitude are required and must be in range")
    if state.observed_at is None:
        raise ValidationError("observed_at is required")


def uncertainty_radius(state: AircraftState, dt_seconds: float) -> float:
    """Radius in meters the true position is expected within after dt_seconds."""
    radius = UNCERTAINTY_GROWTH_MPS * dt_seconds
    if state.ground_speed:
        radius += SPEED_UNCERTAINTY_FACTOR * abs(state.ground_speed) * dt_seconds
    if state.turn_rate is not None and abs(state.turn_rate) > TURN_UNCERTAINTY_MIN_RATE:
        radius += TURN_UNCERTAINTY_FACTOR * abs(state.turn_rate) * dt_seconds
    return radius


def prediction_confidence(dt_seconds: float) -> float:
    return BASE_CONFIDENCE * max(0.0, 1.0 - dt_seconds / CONFIDENCE_DECAY_SECONDS)


class TrajectoryPredictor:
    """
    Short-horizon trajectory prediction with ground-truth reconciliation.

    Holds no per-aircraft state of its own; everything lives in storage.
    """

    def __init__(
        self,
        storage: Storage,
        horizons: Optional[list[int]] = None,
        tolerance_seconds: Optional[float] = None,
        grace_seconds: Optional[float] = None,
        turn_rate_epsilon: float = DEFAULT_TURN_RATE_EPSILON,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.storage = storage
        self.horizons = sorted(horizons if horizons is not None else settings.prediction_horizons)
        if not self.horizons:
            raise ValidationError("at least one prediction horizon is required")
        self.tolerance = timedelta(
            seconds=tolerance_seconds if tolerance_seconds is not None
            else settings.reconcile_tolerance_seconds
        )
        self.grace = timedelta(
            seconds=grace_seconds if grace_seconds is not None
            else settings.reconcile_grace_seconds
        )
        self.turn_rate_epsilon = turn_rate_epsilon
        self._clock = clock

    # -------------------------------------------------------------------------
    # Prediction
    # -------------------------------------------------------------------------

    def _build(self, state: AircraftState, generated_at: datetime) -> list[TrajectoryPrediction]:
        # A state observed before generation time is extrapolated further so
        # that each prediction describes the position at generated_at + horizon.
        staleness = max(0.0, (generated_at - state.observed_at).total_seconds())
        predictions = []
        for horizon in self.horizons:
            dt = horizon + staleness
            predicted = extrapolate(state, dt, self.turn_rate_epsilon)
            predictions.append(TrajectoryPrediction(
                prediction_id=str(uuid.uuid4()),
                aircraft_id=state.aircraft_id,
                icao_hex=state.icao_hex,
                generated_at=generated_at,
                horizon_seconds=horizon,
                predicted_latitude=predicted.latitude,
                predicted_longitude=predicted.longitude,
                predicted_altitude=predicted.altitude,
                predicted_heading=predicted.heading,
                uncertainty_radius_meters=uncertainty_radius(state, dt),
                confidence=prediction_confidence(dt),
            ))
        return predictions

    async def predict_trajectory(self, state: AircraftState) -> list[TrajectoryPrediction]:
        """Predict and persist one position per horizon, ascending by horizon."""
        validate_state(state)
        predictions = self._build(state, self._clock())
        await self.storage.add_predictions(predictions)
        logger.debug(
            f"Predicted {len(predictions)} horizons for {state.aircraft_id} ({state.icao_hex})"
        )
        return predictions

    async def predict_all(self, states: Iterable[AircraftState]) -> dict:
        """
        Predict every state in a batch.

        Invalid states are counted and logged; they never abort the batch.
        All predictions in the batch share one generation time.
        """
        generated_at = self._clock()
        total = 0
        errors = 0
        batch: list[TrajectoryPrediction] = []

        for state in states:
            total += 1
            try:
                validate_state(state)
            except ValidationError as e:
                errors += 1
                logger.warning(f"Skipping prediction for {state.aircraft_id or '?'}: {e.message}")
                continue
            batch.extend(self._build(state, generated_at))

        if batch:
            await self.storage.add_predictions(batch)

        predicted = total - errors
        logger.info(f"Prediction batch: {predicted}/{total} aircraft, {len(batch)} rows")
        return {"total": total, "predicted": predicted, "errors": errors, "rows": len(batch)}

    async def get_predictions(self, aircraft_id: str) -> list[TrajectoryPrediction]:
        """Most recent generation for an aircraft, empty when none exists."""
        return await self.storage.latest_generation(aircraft_id=aircraft_id)

    async def get_predictions_by_icao(self, icao_hex: str) -> list[TrajectoryPrediction]:
        return await self.storage.latest_generation(icao_hex=icao_hex.strip().lower())

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    async def reconcile(self, observation: AircraftState) -> ReconciliationResult:
        """
        Reconcile an incoming observation against pending predictions.

        Safe under at-least-once delivery: every write is conditional on the
        prediction still being pending, so a replayed observation changes
        nothing.
        """
        result = ReconciliationResult()
        if not is_valid_position(observation.latitude, observation.longitude):
            return result

        observed_at = observation.observed_at
        pending = await self.storage.pending_predictions(aircraft_id=observation.aircraft_id)

        for prediction in pending:
            offset = abs(prediction.target_time - observed_at)
            if offset <= self.tolerance:
                error_m = haversine_m(
                    prediction.predicted_latitude, prediction.predicted_longitude,
                    observation.latitude, observation.longitude,
                )
                updated = await self.storage.mark_matched(
                    prediction.prediction_id,
                    observation.latitude,
                    observation.longitude,
                    observation.altitude,
                    error_m,
                    self._clock(),
                )
                if updated:
                    result.matched += 1
                else:
                    result.skipped += 1
            elif prediction.target_time + self.grace < observed_at:
                if await self.storage.mark_no_ground_truth(prediction.prediction_id, self._clock()):
                    result.expired += 1
                else:
                    result.skipped += 1

        if result.matched or result.expired:
            logger.debug(
                f"Reconciled {observation.aircraft_id}: "
                f"{result.matched} matched, {result.expired} expired"
            )
        return result

    async def expire_stale(self, now: Optional[datetime] = None) -> int:
        """Mark pending predictions past target time + grace as having no ground truth."""
        now = now or self._clock()
        stale = await self.storage.pending_predictions(target_before=now - self.grace)
        expired = 0
        for prediction in stale:
            if await self.storage.mark_no_ground_truth(prediction.prediction_id, now):
                expired += 1
        if expired:
            logger.info(f"Expired {expired} predictions without ground truth")
        return expired

    async def cleanup_reconciled(self, older_than: timedelta) -> int:
        """Delete reconciled predictions older than the retention window."""
        deleted = await self.storage.delete_reconciled_before(self._clock() - older_than)
        if deleted:
            logger.info(f"Deleted {deleted} reconciled predictions")
        return deleted

    # -------------------------------------------------------------------------
    # Accuracy
    # -------------------------------------------------------------------------

    async def get_accuracy_stats(self, by_icao: bool = False) -> list[AccuracyStat]:
        """
        Error statistics over matched predictions, per horizon bucket.

        Reads one snapshot; predictions written while this runs may or may
        not be included. Sentinel rows are never matched, so they never
        contribute.
        """
        matched = await self.storage.matched_predictions()

        buckets: dict[tuple[int, Optional[str]], list[TrajectoryPrediction]] = {}
        for prediction in matched:
            if prediction.error_distance_meters is None:
                continue
            key = (prediction.horizon_seconds, prediction.icao_hex if by_icao else None)
            buckets.setdefault(key, []).append(prediction)

        stats = []
        for (horizon, icao_hex), rows in sorted(
            buckets.items(), key=lambda item: (item[0][0], item[0][1] or "")
        ):
            errors = [r.error_distance_meters for r in rows]
            accurate = sum(
                1 for r in rows
                if r.uncertainty_radius_meters is not None
                and r.error_distance_meters <= r.uncertainty_radius_meters
            )
            stats.append(AccuracyStat(
                horizon_seconds=horizon,
                icao_hex=icao_hex,
                sample_count=len(errors),
                mean_error_meters=pystats.fmean(errors),
                median_error_meters=pystats.median(errors),
                p95_error_meters=float(np.percentile(errors, 95)),
                accurate_count=accurate,
                last_updated=max(r.reconciled_at for r in rows if r.reconciled_at),
            ))
        return stats
