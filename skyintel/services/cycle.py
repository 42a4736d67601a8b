"""
Periodic prediction cycle.

One invocation runs, in order:
1. ingestion of fresh aircraft states
2. persistence and reconciliation of each new state
3. expiry of predictions that never got ground truth
4. a new prediction generation for every fresh aircraft
5. proximity analysis over the current snapshot
6. retention cleanup of old reconciled predictions

Re-running within the same period is safe: states are deduplicated on
(aircraft_id, observed_at) and reconciliation writes are conditional.
"""
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from skyintel.core.config import get_settings
from skyintel.core.errors import SkyIntelError, UpstreamError
from skyintel.core.utils import utcnow
from skyintel.domain import AircraftState
from skyintel.services.ingestion import fetch_aircraft_states
from skyintel.services.proximity import ProximityAnalyzer
from skyintel.services.storage import Storage
from skyintel.services.trajectory import TrajectoryPredictor

logger = logging.getLogger(__name__)

Fetcher = Callable[[datetime], Awaitable[list[AircraftState]]]


def _latest_per_aircraft(states: list[AircraftState]) -> list[AircraftState]:
    latest: dict[str, AircraftState] = {}
    for state in states:
        current = latest.get(state.aircraft_id)
        if current is None or state.observed_at > current.observed_at:
            latest[state.aircraft_id] = state
    return list(latest.values())


async def run_prediction_cycle(
    storage: Storage,
    now: Optional[datetime] = None,
    fetch: Optional[Fetcher] = fetch_aircraft_states,
    predictor: Optional[TrajectoryPredictor] = None,
    analyzer: Optional[ProximityAnalyzer] = None,
) -> dict:
    """Run one full cycle and return a summary of what it did."""
    settings = get_settings()
    now = now or utcnow()
    clock = lambda: now  # noqa: E731
    predictor = predictor or TrajectoryPredictor(storage, clock=clock)
    analyzer = analyzer or ProximityAnalyzer(storage, clock=clock)

    summary = {
        "timestamp": now.isoformat(),
        "ingested": 0,
        "new_states": 0,
        "ingestion_error": None,
        "validation": {"matched": 0, "expired": 0, "skipped": 0, "errors": 0},
        "trajectory": {"total": 0, "predicted": 0, "errors": 0, "rows": 0},
        "proximity": {"events": 0, "by_risk": {}},
        "expired_cleaned": 0,
    }

    # 1. Ingestion
    fetched: list[AircraftState] = []
    if fetch is not None:
        try:
            fetched = await fetch(now)
        except UpstreamError as e:
            logger.warning(f"Ingestion failed, continuing with stored states: {e.message}")
            summary["ingestion_error"] = e.message
    summary["ingested"] = len(fetched)

    # 2. Persist and reconcile
    new_states = await storage.save_states(fetched)
    summary["new_states"] = len(new_states)

    validation = summary["validation"]
    for state in sorted(new_states, key=lambda s: s.observed_at):
        try:
            result = await predictor.reconcile(state)
        except SkyIntelError as e:
            # Left pending; the next cycle retries
            validation["errors"] += 1
            logger.error(f"Reconciliation failed for {state.aircraft_id}: {e.message}")
            continue
        validation["matched"] += result.matched
        validation["expired"] += result.expired
        validation["skipped"] += result.skipped

    # 3. Expiry
    validation["expired"] += await predictor.expire_stale(now)

    # 4. Prediction
    recent = await storage.get_recent_states(now - timedelta(seconds=settings.state_max_age_seconds))
    fresh = [s for s in _latest_per_aircraft(recent) if s.observed_at <= now]
    if new_states:
        new_ids = {s.aircraft_id for s in new_states}
        summary["trajectory"] = await predictor.predict_all(
            s for s in fresh if s.aircraft_id in new_ids
        )

    # 5. Proximity, only when the snapshot changed
    events = await analyzer.analyze_snapshot(fresh, now) if new_states else []
    by_risk: dict[str, int] = {}
    for event in events:
        by_risk[event.risk_level.value] = by_risk.get(event.risk_level.value, 0) + 1
    summary["proximity"] = {"events": len(events), "by_risk": by_risk}

    # 6. Retention
    summary["expired_cleaned"] = await predictor.cleanup_reconciled(
        timedelta(hours=settings.prediction_retention_hours)
    )

    logger.info(
        f"Prediction cycle: {summary['new_states']} new states, "
        f"{validation['matched']} matched, {validation['expired']} expired, "
        f"{summary['trajectory']['predicted']} predicted, {len(events)} proximity events"
    )
    return summary
