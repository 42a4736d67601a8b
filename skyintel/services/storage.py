"""
Storage capability used by the prediction and proximity engines.

Engines never talk to the database directly; they receive a `Storage`
value. Two implementations are provided:

- `SqlStorage`: SQLAlchemy async sessions (PostgreSQL in production,
  SQLite in tests)
- `MemoryStorage`: lock-protected in-process lists, used by unit tests
  and when no database is configured

Reads return copies so callers always work on a consistent snapshot.
Reconciliation writes are conditional on the row still being pending,
which makes them idempotent under duplicate or out-of-order delivery.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from skyintel.core.errors import InternalError
from skyintel.core.utils import ensure_utc
from skyintel.domain import (
    AircraftState, ProximityEvent, ReconciliationStatus, RiskLevel, TrajectoryPrediction,
)
from skyintel.models import AircraftStateRecord, ProximityEventRecord, TrajectoryPredictionRecord

logger = logging.getLogger(__name__)


class Storage(ABC):
    """Capability set: read/write states, predictions and proximity events."""

    # -- aircraft states --------------------------------------------------

    @abstractmethod
    async def save_states(self, states: Iterable[AircraftState]) -> list[AircraftState]:
        """Persist states, returning only those not already stored."""

    @abstractmethod
    async def get_recent_states(self, since: datetime) -> list[AircraftState]:
        """States observed at or after `since`, oldest first."""

    # -- trajectory predictions -------------------------------------------

    @abstractmethod
    async def add_predictions(self, predictions: list[TrajectoryPrediction]) -> None:
        ...

    @abstractmethod
    async def latest_generation(
        self, aircraft_id: Optional[str] = None, icao_hex: Optional[str] = None
    ) -> list[TrajectoryPrediction]:
        """Predictions of the most recent generation, ascending by horizon."""

    @abstractmethod
    async def pending_predictions(
        self, aircraft_id: Optional[str] = None, target_before: Optional[datetime] = None
    ) -> list[TrajectoryPrediction]:
        ...

    @abstractmethod
    async def mark_matched(
        self,
        prediction_id: str,
        actual_latitude: float,
        actual_longitude: float,
        actual_altitude: Optional[float],
        error_distance_meters: float,
        reconciled_at: datetime,
    ) -> bool:
        """Fill ground truth if still pending. Returns False when already reconciled."""

    @abstractmethod
    async def mark_no_ground_truth(self, prediction_id: str, reconciled_at: datetime) -> bool:
        ...

    @abstractmethod
    async def matched_predictions(self) -> list[TrajectoryPrediction]:
        ...

    @abstractmethod
    async def delete_reconciled_before(self, cutoff: datetime) -> int:
        ...

    # -- proximity events -------------------------------------------------

    @abstractmethod
    async def add_proximity_events(self, events: list[ProximityEvent]) -> None:
        ...

    @abstractmethod
    async def list_proximity_events(
        self,
        since: Optional[datetime] = None,
        aircraft_id: Optional[str] = None,
        risk_level: Optional[RiskLevel] = None,
        limit: Optional[int] = None,
    ) -> list[ProximityEvent]:
        """Events newest first."""


def _sort_generation(rows: list[TrajectoryPrediction]) -> list[TrajectoryPrediction]:
    if not rows:
        return []
    latest = max(r.generated_at for r in rows)
    return sorted((r for r in rows if r.generated_at == latest), key=lambda r: r.horizon_seconds)


class MemoryStorage(Storage):
    """In-process storage guarded by a single lock."""

    def __init__(self):
        self._lock = threading.Lock()
        self._states: dict[tuple[str, datetime], AircraftState] = {}
        self._predictions: dict[str, TrajectoryPrediction] = {}
        self._events: list[ProximityEvent] = []

    async def save_states(self, states: Iterable[AircraftState]) -> list[AircraftState]:
        added = []
        with self._lock:
            for state in states:
                key = (state.aircraft_id, state.observed_at)
                if key in self._states:
                    continue
                self._states[key] = state
                added.append(state)
        return added

    async def get_recent_states(self, since: datetime) -> list[AircraftState]:
        with self._lock:
            states = [s for s in self._states.values() if s.observed_at >= since]
        return sorted(states, key=lambda s: s.observed_at)

    async def add_predictions(self, predictions: list[TrajectoryPrediction]) -> None:
        with self._lock:
            for prediction in predictions:
                self._predictions[prediction.prediction_id] = prediction.copy()

    async def latest_generation(
        self, aircraft_id: Optional[str] = None, icao_hex: Optional[str] = None
    ) -> list[TrajectoryPrediction]:
        with self._lock:
            rows = [
                p.copy() for p in self._predictions.values()
                if (aircraft_id is None or p.aircraft_id == aircraft_id)
                and (icao_hex is None or p.icao_hex == icao_hex)
            ]
        return _sort_generation(rows)

    async def pending_predictions(
        self, aircraft_id: Optional[str] = None, target_before: Optional[datetime] = None
    ) -> list[TrajectoryPrediction]:
        with self._lock:
            rows = [
                p.copy() for p in self._predictions.values()
                if p.is_pending
                and (aircraft_id is None or p.aircraft_id == aircraft_id)
                and (target_before is None or p.target_time < target_before)
            ]
        return sorted(rows, key=lambda p: p.target_time)

    async def mark_matched(
        self,
        prediction_id: str,
        actual_latitude: float,
        actual_longitude: float,
        actual_altitude: Optional[float],
        error_distance_meters: float,
        reconciled_at: datetime,
    ) -> bool:
        with self._lock:
            prediction = self._predictions.get(prediction_id)
            if prediction is None or not prediction.is_pending:
                return False
            prediction.actual_latitude = actual_latitude
            prediction.actual_longitude = actual_longitude
            prediction.actual_altitude = actual_altitude
            prediction.error_distance_meters = error_distance_meters
            prediction.reconciled_at = reconciled_at
            prediction.reconciliation_status = ReconciliationStatus.MATCHED
            return True

    async def mark_no_ground_truth(self, prediction_id: str, reconciled_at: datetime) -> bool:
        with self._lock:
            prediction = self._predictions.get(prediction_id)
            if prediction is None or not prediction.is_pending:
                return False
            prediction.reconciled_at = reconciled_at
            prediction.reconciliation_status = ReconciliationStatus.NO_GROUND_TRUTH
            return True

    async def matched_predictions(self) -> list[TrajectoryPrediction]:
        with self._lock:
            return [
                p.copy() for p in self._predictions.values()
                if p.reconciliation_status == ReconciliationStatus.MATCHED
            ]

    async def delete_reconciled_before(self, cutoff: datetime) -> int:
        with self._lock:
            doomed = [
                pid for pid, p in self._predictions.items()
                if p.reconciled_at is not None and p.reconciled_at < cutoff
            ]
            for pid in doomed:
                del self._predictions[pid]
        return len(doomed)

    async def add_proximity_events(self, events: list[ProximityEvent]) -> None:
        with self._lock:
            self._events.extend(events)

    async def list_proximity_events(
        self,
        since: Optional[datetime] = None,
        aircraft_id: Optional[str] = None,
        risk_level: Optional[RiskLevel] = None,
        limit: Optional[int] = None,
    ) -> list[ProximityEvent]:
        with self._lock:
            events = [
                e for e in self._events
                if (since is None or e.detected_at >= since)
                and (aircraft_id is None or aircraft_id in (e.aircraft_a_id, e.aircraft_b_id))
                and (risk_level is None or e.risk_level == risk_level)
            ]
        events.sort(key=lambda e: e.detected_at, reverse=True)
        return events[:limit] if limit else events


# =============================================================================
# SQL implementation
# =============================================================================

def _state_from_record(row: AircraftStateRecord) -> AircraftState:
    return AircraftState(
        aircraft_id=row.aircraft_id,
        icao_hex=row.icao_hex,
        latitude=row.latitude,
        longitude=row.longitude,
        observed_at=ensure_utc(row.observed_at),
        altitude=row.altitude,
        heading=row.heading,
        ground_speed=row.ground_speed,
        turn_rate=row.turn_rate,
        vertical_rate=row.vertical_rate,
    )


def _prediction_from_record(row: TrajectoryPredictionRecord) -> TrajectoryPrediction:
    return TrajectoryPrediction(
        prediction_id=row.id,
        aircraft_id=row.aircraft_id,
        icao_hex=row.icao_hex,
        generated_at=ensure_utc(row.generated_at),
        horizon_seconds=row.horizon_seconds,
        predicted_latitude=row.predicted_latitude,
        predicted_longitude=row.predicted_longitude,
        predicted_altitude=row.predicted_altitude,
        predicted_heading=row.predicted_heading,
        uncertainty_radius_meters=row.uncertainty_radius_meters,
        confidence=row.confidence,
        actual_latitude=row.actual_latitude,
        actual_longitude=row.actual_longitude,
        actual_altitude=row.actual_altitude,
        error_distance_meters=row.error_distance_meters,
        reconciled_at=ensure_utc(row.reconciled_at) if row.reconciled_at else None,
        reconciliation_status=ReconciliationStatus(row.reconciliation_status),
    )


def _event_from_record(row: ProximityEventRecord) -> ProximityEvent:
    return ProximityEvent(
        event_id=row.id,
        aircraft_a_id=row.aircraft_a_id,
        aircraft_b_id=row.aircraft_b_id,
        icao_hex_a=row.icao_hex_a,
        icao_hex_b=row.icao_hex_b,
        detected_at=ensure_utc(row.detected_at),
        horizontal_separation_meters=row.horizontal_separation_meters,
        vertical_separation_meters=row.vertical_separation_meters,
        closure_rate_mps=row.closure_rate_mps,
        risk_level=RiskLevel(row.risk_level),
        closest_approach_meters=row.closest_approach_meters,
        time_to_closest_seconds=row.time_to_closest_seconds,
        context_snapshot=row.context_snapshot,
    )


class SqlStorage(Storage):
    """Storage over an async SQLAlchemy session factory."""

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def _read(self, query):
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Storage read failed: {e}")
            raise InternalError("storage read failed") from e

    async def _write(self, statement) -> int:
        try:
            async with self._session_factory() as session:
                result = await session.execute(statement)
                await session.commit()
                return result.rowcount or 0
        except SQLAlchemyError as e:
            logger.error(f"Storage write failed: {e}")
            raise InternalError("storage write failed") from e

    async def _add_all(self, records: list) -> None:
        if not records:
            return
        try:
            async with self._session_factory() as session:
                session.add_all(records)
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(f"Storage insert failed: {e}")
            raise InternalError("storage insert failed") from e

    async def save_states(self, states: Iterable[AircraftState]) -> list[AircraftState]:
        added = []
        try:
            async with self._session_factory() as session:
                for state in states:
                    session.add(AircraftStateRecord(
                        aircraft_id=state.aircraft_id,
                        icao_hex=state.icao_hex,
                        observed_at=state.observed_at,
                        latitude=state.latitude,
                        longitude=state.longitude,
                        altitude=state.altitude,
                        heading=state.heading,
                        ground_speed=state.ground_speed,
                        turn_rate=state.turn_rate,
                        vertical_rate=state.vertical_rate,
                    ))
                    try:
                        await session.commit()
                        added.append(state)
                    except IntegrityError:
                        # Same (aircraft, observed_at) already stored
                        await session.rollback()
        except SQLAlchemyError as e:
            logger.error(f"Storage insert failed: {e}")
            raise InternalError("storage insert failed") from e
        return added

    async def get_recent_states(self, since: datetime) -> list[AircraftState]:
        rows = await self._read(
            select(AircraftStateRecord)
            .where(AircraftStateRecord.observed_at >= since)
            .order_by(AircraftStateRecord.observed_at)
        )
        return [_state_from_record(r) for r in rows]

    async def add_predictions(self, predictions: list[TrajectoryPrediction]) -> None:
        await self._add_all([
            TrajectoryPredictionRecord(
                id=p.prediction_id,
                aircraft_id=p.aircraft_id,
                icao_hex=p.icao_hex,
                generated_at=p.generated_at,
                horizon_seconds=p.horizon_seconds,
                target_time=p.target_time,
                predicted_latitude=p.predicted_latitude,
                predicted_longitude=p.predicted_longitude,
                predicted_altitude=p.predicted_altitude,
                predicted_heading=p.predicted_heading,
                uncertainty_radius_meters=p.uncertainty_radius_meters,
                confidence=p.confidence,
                reconciliation_status=p.reconciliation_status.value,
            )
            for p in predictions
        ])

    async def latest_generation(
        self, aircraft_id: Optional[str] = None, icao_hex: Optional[str] = None
    ) -> list[TrajectoryPrediction]:
        conditions = []
        if aircraft_id is not None:
            conditions.append(TrajectoryPredictionRecord.aircraft_id == aircraft_id)
        if icao_hex is not None:
            conditions.append(TrajectoryPredictionRecord.icao_hex == icao_hex)

        latest = (
            select(func.max(TrajectoryPredictionRecord.generated_at))
            .where(*conditions)
            .scalar_subquery()
        )
        rows = await self._read(
            select(TrajectoryPredictionRecord)
            .where(*conditions, TrajectoryPredictionRecord.generated_at == latest)
            .order_by(TrajectoryPredictionRecord.horizon_seconds)
        )
        return [_prediction_from_record(r) for r in rows]

    async def pending_predictions(
        self, aircraft_id: Optional[str] = None, target_before: Optional[datetime] = None
    ) -> list[TrajectoryPrediction]:
        conditions = [TrajectoryPredictionRecord.reconciliation_status == ReconciliationStatus.PENDING.value]
        if aircraft_id is not None:
            conditions.append(TrajectoryPredictionRecord.aircraft_id == aircraft_id)
        if target_before is not None:
            conditions.append(TrajectoryPredictionRecord.target_time < target_before)
        rows = await self._read(
            select(TrajectoryPredictionRecord)
            .where(*conditions)
            .order_by(TrajectoryPredictionRecord.target_time)
        )
        return [_prediction_from_record(r) for r in rows]

    def _pending_update(self, prediction_id: str):
        return update(TrajectoryPredictionRecord).where(
            TrajectoryPredictionRecord.id == prediction_id,
            TrajectoryPredictionRecord.reconciliation_status == ReconciliationStatus.PENDING.value,
        )

    async def mark_matched(
        self,
        prediction_id: str,
        actual_latitude: float,
        actual_longitude: float,
        actual_altitude: Optional[float],
        error_distance_meters: float,
        reconciled_at: datetime,
    ) -> bool:
        updated = await self._write(
            self._pending_update(prediction_id).values(
                actual_latitude=actual_latitude,
                actual_longitude=actual_longitude,
                actual_altitude=actual_altitude,
                error_distance_meters=error_distance_meters,
                reconciled_at=reconciled_at,
                reconciliation_status=ReconciliationStatus.MATCHED.value,
            )
        )
        return updated == 1

    async def mark_no_ground_truth(self, prediction_id: str, reconciled_at: datetime) -> bool:
        updated = await self._write(
            self._pending_update(prediction_id).values(
                reconciled_at=reconciled_at,
                reconciliation_status=ReconciliationStatus.NO_GROUND_TRUTH.value,
            )
        )
        return updated == 1

    async def matched_predictions(self) -> list[TrajectoryPrediction]:
        rows = await self._read(
            select(TrajectoryPredictionRecord).where(
                TrajectoryPredictionRecord.reconciliation_status == ReconciliationStatus.MATCHED.value
            )
        )
        return [_prediction_from_record(r) for r in rows]

    async def delete_reconciled_before(self, cutoff: datetime) -> int:
        return await self._write(
            delete(TrajectoryPredictionRecord).where(
                TrajectoryPredictionRecord.reconciled_at.is_not(None),
                TrajectoryPredictionRecord.reconciled_at < cutoff,
            )
        )

    async def add_proximity_events(self, events: list[ProximityEvent]) -> None:
        await self._add_all([
            ProximityEventRecord(
                id=e.event_id,
                aircraft_a_id=e.aircraft_a_id,
                aircraft_b_id=e.aircraft_b_id,
                icao_hex_a=e.icao_hex_a,
                icao_hex_b=e.icao_hex_b,
                detected_at=e.detected_at,
                horizontal_separation_meters=e.horizontal_separation_meters,
                vertical_separation_meters=e.vertical_separation_meters,
                closure_rate_mps=e.closure_rate_mps,
                risk_level=e.risk_level.value,
                closest_approach_meters=e.closest_approach_meters,
                time_to_closest_seconds=e.time_to_closest_seconds,
                context_snapshot=e.context_snapshot,
            )
            for e in events
        ])

    async def list_proximity_events(
        self,
        since: Optional[datetime] = None,
        aircraft_id: Optional[str] = None,
        risk_level: Optional[RiskLevel] = None,
        limit: Optional[int] = None,
    ) -> list[ProximityEvent]:
        conditions = []
        if since is not None:
            conditions.append(ProximityEventRecord.detected_at >= since)
        if aircraft_id is not None:
            conditions.append(
                (ProximityEventRecord.aircraft_a_id == aircraft_id) |
                (ProximityEventRecord.aircraft_b_id == aircraft_id)
            )
        if risk_level is not None:
            conditions.append(ProximityEventRecord.risk_level == risk_level.value)

        query = (
            select(ProximityEventRecord)
            .where(*conditions)
            .order_by(ProximityEventRecord.detected_at.desc())
        )
        if limit:
            query = query.limit(limit)
        rows = await self._read(query)
        return [_event_from_record(r) for r in rows]
