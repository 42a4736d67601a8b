"""
Proximity analysis service.

Examines a snapshot of current aircraft states pairwise, measures
horizontal separation, vertical separation and closure rate for each pair,
and records an event for every pair that classifies above NONE.

Risk levels (converging means closure rate < 0):
- CRITICAL: < 1000 m horizontal, < 300 m vertical, converging
- WARNING:  < 5000 m horizontal, < 1000 m vertical, converging
- ADVISORY: < 10000 m horizontal, converging
- NONE:     anything else, never persisted

Large snapshots are bucketed into a lat/lon grid whose cells are at least
the maximum separation wide, so only neighbouring cells are compared.

Each event is annotated with the predicted closest point of approach,
assuming both aircraft hold their current velocity.
"""
import logging
import math
import statistics as pystats
import uuid
from dataclasses import replace
from datetime import datetime, timedelta
from itertools import combinations
from typing import Any, Awaitable, Callable, Iterable, Optional

from skyintel.core.config import get_settings
from skyintel.core.utils import (
    EARTH_RADIUS_M, enu_offset_m, haversine_m, is_valid_position, utcnow, velocity_en,
)
from skyintel.domain import AircraftState, ProximityEvent, ProximityStats, RiskLevel
from skyintel.services.storage import Storage

logger = logging.getLogger(__name__)

# (max horizontal m, max vertical m or None) per level, most severe first
RISK_THRESHOLDS = [
    (RiskLevel.CRITICAL, 1000.0, 300.0),
    (RiskLevel.WARNING, 5000.0, 1000.0),
    (RiskLevel.ADVISORY, 10000.0, None),
]

METERS_PER_DEGREE_LAT = EARTH_RADIUS_M * math.pi / 180.0

ContextProvider = Callable[[float, float, Optional[float]], Awaitable[dict[str, Any]]]


def classify_risk(horizontal_m: float, vertical_m: float, closure_mps: float) -> RiskLevel:
    """Pure mapping from the measured quantities to a risk level."""
    if closure_mps >= 0:
        return RiskLevel.NONE
    for level, max_horizontal, max_vertical in RISK_THRESHOLDS:
        if horizontal_m >= max_horizontal:
            continue
        if max_vertical is not None and vertical_m >= max_vertical:
            continue
        return level
    return RiskLevel.NONE


def closure_rate(a: AircraftState, b: AircraftState) -> float:
    """
    Rate of change of horizontal separation between a and b, in m/s.

    Negative when the aircraft are converging. Velocities come from heading
    and ground speed; either missing counts as zero velocity.
    """
    east, north = enu_offset_m(a.latitude, a.longitude, b.latitude, b.longitude)

    ave, avn = velocity_en(a.heading, a.ground_speed)
    bve, bvn = velocity_en(b.heading, b.ground_speed)
    rel_ve = bve - ave
    rel_vn = bvn - avn

    dist = math.hypot(east, north)
    if dist < 1.0:
        # Overhead: any relative motion is treated as converging
        rel_speed = math.hypot(rel_ve, rel_vn)
        return -rel_speed if rel_speed > 0 else 0.0

    return (east * rel_ve + north * rel_vn) / dist


def closest_approach(
    a: AircraftState, b: AircraftState, look_ahead_seconds: float
) -> tuple[float, Optional[float]]:
    """
    Closest point of approach assuming both aircraft hold velocity.

    Returns (horizontal distance at closest approach in m, seconds until
    then). When the aircraft are not closing, or closest approach is more
    than look_ahead_seconds away, the current separation is returned with
    no time.
    """
    east, north = enu_offset_m(a.latitude, a.longitude, b.latitude, b.longitude)
    current = math.hypot(east, north)

    ave, avn = velocity_en(a.heading, a.ground_speed)
    bve, bvn = velocity_en(b.heading, b.ground_speed)
    rel_ve = bve - ave
    rel_vn = bvn - avn
    rel_speed_sq = rel_ve * rel_ve + rel_vn * rel_vn
    if rel_speed_sq < 1e-9:
        return current, None

    t_cpa = -(east * rel_ve + north * rel_vn) / rel_speed_sq
    if t_cpa <= 0 or t_cpa > look_ahead_seconds:
        return current, None

    return math.hypot(east + rel_ve * t_cpa, north + rel_vn * t_cpa), t_cpa


def _grid_pairs(
    states: list[AircraftState], cell_m: float
) -> Iterable[tuple[AircraftState, AircraftState]]:
    """Candidate pairs from neighbouring grid cells, each pair yielded once."""
    cell_lat = cell_m / METERS_PER_DEGREE_LAT
    # Widest longitude gap between two points within cell_m of each other,
    # at the highest latitude in the snapshot: sin(dlon/2) <= sin(d/2) / cos(lat)
    max_cos_lat = math.cos(math.radians(max(abs(s.latitude) for s in states)))
    ratio = math.sin(math.radians(cell_lat) / 2) / max_cos_lat if max_cos_lat > 0 else math.inf
    if ratio >= 1.0:
        # Near a pole every longitude is a neighbour
        cell_lon = 360.0
        lon_columns = 1
    else:
        cell_lon = math.degrees(2 * math.asin(ratio))
        # Every column at least cell_lon wide; the remainder folds into column 0
        lon_columns = max(1, math.floor(360.0 / cell_lon))

    cells: dict[tuple[int, int], list[int]] = {}
    for idx, state in enumerate(states):
        row = math.floor((state.latitude + 90.0) / cell_lat)
        col = math.floor((state.longitude + 180.0) / cell_lon) % lon_columns
        cells.setdefault((row, col), []).append(idx)

    seen: set[tuple[int, int]] = set()
    for (row, col), members in cells.items():
        for d_row in (-1, 0, 1):
            for d_col in (-1, 0, 1):
                neighbour = cells.get((row + d_row, (col + d_col) % lon_columns))
                if not neighbour:
                    continue
                for i in members:
                    for j in neighbour:
                        if i == j:
                            continue
                        key = (min(i, j), max(i, j))
                        if key in seen:
                            continue
                        seen.add(key)
                        yield states[key[0]], states[key[1]]


class ProximityAnalyzer:
    """Pairwise separation analysis over a snapshot of aircraft states."""

    def __init__(
        self,
        storage: Storage,
        simultaneity_seconds: Optional[float] = None,
        max_separation_m: Optional[float] = None,
        grid_threshold: Optional[int] = None,
        look_ahead_seconds: Optional[float] = None,
        context_provider: Optional[ContextProvider] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        settings = get_settings()
        self.storage = storage
        self.simultaneity = timedelta(
            seconds=simultaneity_seconds if simultaneity_seconds is not None
            else settings.proximity_simultaneity_seconds
        )
        self.max_separation_m = (
            max_separation_m if max_separation_m is not None
            else settings.proximity_max_separation_m
        )
        self.grid_threshold = (
            grid_threshold if grid_threshold is not None
            else settings.proximity_grid_threshold
        )
        self.look_ahead_seconds = (
            look_ahead_seconds if look_ahead_seconds is not None
            else settings.proximity_look_ahead_seconds
        )
        self.context_provider = context_provider
        self._clock = clock

    def _simultaneous(self, states: Iterable[AircraftState], as_of: datetime) -> list[AircraftState]:
        """Latest valid state per aircraft within the simultaneity window."""
        latest: dict[str, AircraftState] = {}
        for state in states:
            if not is_valid_position(state.latitude, state.longitude):
                continue
            if abs(state.observed_at - as_of) > self.simultaneity:
                continue
            current = latest.get(state.aircraft_id)
            if current is None or state.observed_at > current.observed_at:
                latest[state.aircraft_id] = state
        return sorted(latest.values(), key=lambda s: s.aircraft_id)

    def candidate_pairs(
        self, states: list[AircraftState]
    ) -> Iterable[tuple[AircraftState, AircraftState]]:
        if len(states) > self.grid_threshold:
            return _grid_pairs(states, self.max_separation_m)
        return combinations(states, 2)

    def _measure(
        self, a: AircraftState, b: AircraftState, detected_at: datetime
    ) -> Optional[ProximityEvent]:
        if a.aircraft_id > b.aircraft_id:
            a, b = b, a
        if a.altitude is None or b.altitude is None:
            return None

        horizontal = haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)
        if horizontal > self.max_separation_m:
            return None

        vertical = abs(a.altitude - b.altitude)
        closure = closure_rate(a, b)
        risk = classify_risk(horizontal, vertical, closure)
        if risk == RiskLevel.NONE:
            return None

        approach_m, time_to_closest = closest_approach(a, b, self.look_ahead_seconds)
        if time_to_closest is None:
            approach_m = horizontal

        return ProximityEvent(
            event_id=str(uuid.uuid4()),
            aircraft_a_id=a.aircraft_id,
            aircraft_b_id=b.aircraft_id,
            icao_hex_a=a.icao_hex,
            icao_hex_b=b.icao_hex,
            detected_at=detected_at,
            horizontal_separation_meters=horizontal,
            vertical_separation_meters=vertical,
            closure_rate_mps=closure,
            risk_level=risk,
            closest_approach_meters=approach_m,
            time_to_closest_seconds=time_to_closest,
        )

    async def _with_context(
        self, event: ProximityEvent, a: AircraftState, b: AircraftState
    ) -> ProximityEvent:
        mid_lat = (a.latitude + b.latitude) / 2
        mid_lon = (a.longitude + b.longitude) / 2
        mid_alt = (a.altitude + b.altitude) / 2
        try:
            context = await self.context_provider(mid_lat, mid_lon, mid_alt)
        except Exception as e:
            logger.warning(
                f"Context lookup failed for {event.aircraft_a_id}/{event.aircraft_b_id}: {e}"
            )
            return event
        return replace(event, context_snapshot=context)

    async def analyze_snapshot(
        self, states: Iterable[AircraftState], as_of: Optional[datetime] = None
    ) -> list[ProximityEvent]:
        """Detect and persist proximity events for one snapshot."""
        as_of = as_of or self._clock()
        current = self._simultaneous(states, as_of)
        by_id = {s.aircraft_id: s for s in current}

        events = []
        for a, b in self.candidate_pairs(current):
            event = self._measure(a, b, as_of)
            if event is not None:
                events.append(event)

        events.sort(key=lambda e: (e.aircraft_a_id, e.aircraft_b_id))

        if self.context_provider is not None:
            events = [
                await self._with_context(e, by_id[e.aircraft_a_id], by_id[e.aircraft_b_id])
                for e in events
            ]

        if events:
            await self.storage.add_proximity_events(events)
            critical = sum(1 for e in events if e.risk_level == RiskLevel.CRITICAL)
            logger.info(
                f"Proximity: {len(events)} events from {len(current)} aircraft "
                f"({critical} critical)"
            )
        return events

    async def get_events(
        self,
        aircraft_id: Optional[str] = None,
        risk_level: Optional[RiskLevel] = None,
        since: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[ProximityEvent]:
        return await self.storage.list_proximity_events(
            since=since, aircraft_id=aircraft_id, risk_level=risk_level, limit=limit
        )

    async def get_stats(self, window_hours: Optional[int] = None) -> ProximityStats:
        """Aggregate persisted events from the rolling window."""
        if window_hours is None:
            window_hours = get_settings().proximity_stats_window_hours
        since = self._clock() - timedelta(hours=window_hours)
        events = await self.storage.list_proximity_events(since=since)

        counts = {level.value: 0 for level, _, _ in RISK_THRESHOLDS}
        for event in events:
            counts[event.risk_level.value] = counts.get(event.risk_level.value, 0) + 1

        if not events:
            return ProximityStats(window_hours=window_hours, total_events=0, events_by_risk=counts)

        return ProximityStats(
            window_hours=window_hours,
            total_events=len(events),
            events_by_risk=counts,
            mean_horizontal_separation_meters=pystats.fmean(
                e.horizontal_separation_meters for e in events
            ),
            mean_vertical_separation_meters=pystats.fmean(
                e.vertical_separation_meters for e in events
            ),
            mean_closure_rate_mps=pystats.fmean(e.closure_rate_mps for e in events),
        )
