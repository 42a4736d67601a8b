"""
ADS-B ingestion from a readsb / ultrafeeder aircraft.json feed.

Converts the feed's aviation units into SI:
- alt_baro / alt_geom feet -> meters ("ground" -> 0)
- gs knots -> m/s
- baro_rate / geom_rate ft/min -> m/s
- track_rate deg/s, or derived from two successive tracks when absent
"""
import logging
import math
import threading
from datetime import datetime, timedelta, timezone
from typing import Optional

from skyintel.core.config import get_settings
from skyintel.core.errors import UpstreamError
from skyintel.core.utils import (
    fpm_to_mps, ft_to_m, is_valid_position, kt_to_mps, safe_int_altitude, safe_request,
    utcnow, wrap_heading,
)
from skyintel.domain import AircraftState

logger = logging.getLogger(__name__)
settings = get_settings()

# Successive tracks further apart than this are not used for turn rate
MAX_TURN_SAMPLE_GAP = 60.0  # seconds


class TurnRateTracker:
    """Remembers the last track per aircraft to derive turn rate."""

    def __init__(self, max_gap_seconds: float = MAX_TURN_SAMPLE_GAP):
        self._last: dict[str, tuple[float, datetime]] = {}
        self._lock = threading.Lock()
        self.max_gap_seconds = max_gap_seconds

    def update(self, icao_hex: str, track: Optional[float], observed_at: datetime) -> Optional[float]:
        if track is None:
            return None
        with self._lock:
            previous = self._last.get(icao_hex)
            self._last[icao_hex] = (track, observed_at)

        if previous is None:
            return None
        prev_track, prev_time = previous
        dt = (observed_at - prev_time).total_seconds()
        if dt <= 0 or dt > self.max_gap_seconds:
            return None
        # Shortest signed angle, positive clockwise
        delta = (track - prev_track + 540.0) % 360.0 - 180.0
        return delta / dt

    def prune(self, older_than: datetime) -> None:
        with self._lock:
            stale = [k for k, (_, t) in self._last.items() if t < older_than]
            for key in stale:
                del self._last[key]

    def clear(self) -> None:
        with self._lock:
            self._last.clear()


turn_rate_tracker = TurnRateTracker()


def _altitude_m(ac: dict) -> Optional[float]:
    alt_ft = safe_int_altitude(ac.get("alt_geom"))
    if alt_ft is None:
        alt_ft = safe_int_altitude(ac.get("alt_baro"))
    if alt_ft is None:
        return None
    return max(0.0, ft_to_m(alt_ft))


def _vertical_rate_mps(ac: dict) -> Optional[float]:
    rate = ac.get("geom_rate")
    if rate is None:
        rate = ac.get("baro_rate")
    if rate is None:
        return None
    try:
        return fpm_to_mps(float(rate))
    except (TypeError, ValueError):
        return None


def _float_or_none(value) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def parse_aircraft_json(
    payload: dict,
    now: Optional[datetime] = None,
    tracker: Optional[TurnRateTracker] = None,
) -> list[AircraftState]:
    """
    Convert an aircraft.json payload to AircraftState values.

    Aircraft without a hex code or a valid position are dropped.

    Report times come from the feed's own clock (`now - seen_pos`), so the
    same position report maps to the same observed_at on every poll. The
    `now` argument is only used when the payload carries no clock.
    """
    tracker = tracker or turn_rate_tracker
    feed_now = _float_or_none(payload.get("now"))
    if feed_now is None:
        feed_now = (now or utcnow()).timestamp()

    states = []
    for ac in payload.get("aircraft", []):
        icao_hex = (ac.get("hex") or "").strip().lower()
        lat, lon = ac.get("lat"), ac.get("lon")
        if not icao_hex or not is_valid_position(lat, lon):
            continue

        seen_pos = _float_or_none(ac.get("seen_pos")) or 0.0
        # Millisecond rounding absorbs float noise before truncating to whole seconds
        report_ts = math.floor(round(feed_now - seen_pos, 3))
        observed_at = datetime.fromtimestamp(report_ts, tz=timezone.utc)

        track = _float_or_none(ac.get("track"))
        if track is not None:
            track = wrap_heading(track)
        gs = _float_or_none(ac.get("gs"))

        derived_turn = tracker.update(icao_hex, track, observed_at)
        turn_rate = _float_or_none(ac.get("track_rate"))
        if turn_rate is None:
            turn_rate = derived_turn

        states.append(AircraftState(
            aircraft_id=icao_hex,
            icao_hex=icao_hex,
            latitude=float(lat),
            longitude=float(lon),
            observed_at=observed_at,
            altitude=_altitude_m(ac),
            heading=track,
            ground_speed=kt_to_mps(gs) if gs is not None else None,
            turn_rate=turn_rate,
            vertical_rate=_vertical_rate_mps(ac),
        ))

    feed_time = datetime.fromtimestamp(feed_now, tz=timezone.utc)
    tracker.prune(feed_time - timedelta(seconds=tracker.max_gap_seconds * 2))
    return states


async def fetch_aircraft_states(now: Optional[datetime] = None) -> list[AircraftState]:
    """Fetch the live feed. Raises UpstreamError when the source is unavailable."""
    url = f"{settings.ultrafeeder_url}/tar1090/data/aircraft.json"
    data = await safe_request(url)
    if data is None:
        raise UpstreamError(f"ADS-B source unavailable: {url}")

    states = parse_aircraft_json(data, now)
    logger.debug(f"Fetched {len(states)} aircraft states from {settings.ultrafeeder_url}")
    return states
