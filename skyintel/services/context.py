"""
Context intelligence for positions.

Annotates a position with what lies around it: the nearest ground
infrastructure, recent strike reports nearby, and a combined score that
rates how interesting activity at that position is.

Scoring:
- infrastructure: importance weight x linear distance decay to 0 at 100 NM
- strikes: sum of report confidence within the lookup radius, decayed by
  age over the lookup window, capped at 1
- combined: weighted sum, mapped to low / moderate / high / critical
"""
import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from skyintel.core.cache import cached
from skyintel.core.config import get_settings
from skyintel.core.errors import InternalError, ValidationError
from skyintel.core.utils import (
    EARTH_RADIUS_M, ensure_utc, haversine_m, initial_bearing, is_valid_position, m_to_nm,
    nm_to_m, parse_iso_timestamp, utcnow,
)
from skyintel.models import Infrastructure, StrikeEvent

logger = logging.getLogger(__name__)
settings = get_settings()

INFRASTRUCTURE_TYPES = {
    "military_base",
    "airport",
    "port",
    "refinery",
    "power_plant",
    "government",
    "industrial",
    "communications",
}

IMPORTANCE_SCORES = {
    "critical": 1.0,
    "high": 0.8,
    "medium": 0.5,
    "low": 0.3,
}

INFRASTRUCTURE_MAX_DISTANCE_M = nm_to_m(100)
SUMMARY_MAX_DISTANCE_M = nm_to_m(50)

WEIGHTS = {
    "infrastructure": 0.6,
    "strikes": 0.4,
}


def intelligence_value(score: float) -> str:
    if score >= 0.8:
        return "critical"
    if score >= 0.6:
        return "high"
    if score >= 0.3:
        return "moderate"
    return "low"


def _bounding_box(lat: float, lon: float, radius_m: float) -> tuple[float, float, float, float]:
    """(south, north, west, east) degrees enclosing a circle of radius_m."""
    d_lat = math.degrees(radius_m / EARTH_RADIUS_M)
    cos_lat = max(math.cos(math.radians(lat)), 0.01)
    d_lon = min(180.0, d_lat / cos_lat)
    return lat - d_lat, lat + d_lat, lon - d_lon, lon + d_lon


def _lon_clause(column, west: float, east: float):
    """Longitude range, split in two when it crosses the antimeridian."""
    if east - west >= 360:
        return column.is_not(None)
    if west > east:
        return (column >= west) | (column <= east)
    if west < -180:
        return (column >= west + 360) | (column <= east)
    if east > 180:
        return (column >= west) | (column <= east - 360)
    return column.between(west, east)


def _infrastructure_dict(row: Infrastructure) -> dict:
    return {
        "id": row.id,
        "name": row.name,
        "type": row.infrastructure_type,
        "sub_type": row.sub_type,
        "latitude": row.latitude,
        "longitude": row.longitude,
        "icao_code": row.icao_code,
        "country_code": row.country_code,
        "region": row.region,
        "strategic_importance": row.strategic_importance,
        "military_presence": row.military_presence,
        "description": row.description,
    }


class ContextIntelligence:
    """Position context lookups over the infrastructure and strike tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        strike_radius_m: Optional[float] = None,
        strike_hours: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self.strike_radius_m = strike_radius_m or settings.strike_lookup_radius_m
        self.strike_hours = strike_hours or settings.strike_lookup_hours

    async def _execute(self, query):
        try:
            async with self._session_factory() as session:
                result = await session.execute(query)
                return result.scalars().all()
        except SQLAlchemyError as e:
            logger.error(f"Context query failed: {e}")
            raise InternalError("context lookup failed") from e

    async def nearest_infrastructure(self, lat: float, lon: float) -> Optional[dict]:
        south, north, west, east = _bounding_box(lat, lon, INFRASTRUCTURE_MAX_DISTANCE_M)
        rows = await self._execute(
            select(Infrastructure).where(
                Infrastructure.is_active.is_(True),
                Infrastructure.latitude.between(south, north),
                _lon_clause(Infrastructure.longitude, west, east),
            )
        )
        if not rows:
            return None

        nearest = min(rows, key=lambda r: haversine_m(lat, lon, r.latitude, r.longitude))
        distance_m = haversine_m(lat, lon, nearest.latitude, nearest.longitude)
        return {
            "id": nearest.id,
            "name": nearest.name,
            "type": nearest.infrastructure_type,
            "distance_m": round(distance_m, 1),
            "distance_nm": round(m_to_nm(distance_m), 2),
            "bearing": round(initial_bearing(lat, lon, nearest.latitude, nearest.longitude), 1),
            "strategic_importance": nearest.strategic_importance,
        }

    async def nearby_strikes(
        self,
        lat: float,
        lon: float,
        radius_m: Optional[float] = None,
        since: Optional[datetime] = None,
    ) -> list[dict]:
        """Active strike reports within radius_m of a point, newest first."""
        radius_m = radius_m or self.strike_radius_m
        since = since or utcnow() - timedelta(hours=self.strike_hours)
        south, north, west, east = _bounding_box(lat, lon, radius_m)

        rows = await self._execute(
            select(StrikeEvent)
            .where(
                StrikeEvent.is_active.is_(True),
                StrikeEvent.reported_at >= since,
                StrikeEvent.latitude.between(south, north),
                _lon_clause(StrikeEvent.longitude, west, east),
            )
            .order_by(StrikeEvent.reported_at.desc())
        )

        strikes = []
        for row in rows:
            distance_m = haversine_m(lat, lon, row.latitude, row.longitude)
            if distance_m > radius_m:
                continue
            strikes.append({
                "id": row.id,
                "event_type": row.event_type,
                "location_name": row.location_name,
                "latitude": row.latitude,
                "longitude": row.longitude,
                "distance_m": round(distance_m, 1),
                "confidence": row.confidence,
                "reported_at": ensure_utc(row.reported_at).isoformat(),
            })
        return strikes

    def _strike_score(self, strikes: list[dict], now: datetime) -> float:
        window = self.strike_hours * 3600.0
        score = 0.0
        for strike in strikes:
            age = (now - parse_iso_timestamp(strike["reported_at"])).total_seconds()
            score += strike["confidence"] * max(0.0, 1 - age / window)
        return min(1.0, score)

    @staticmethod
    def _infrastructure_score(nearest: Optional[dict]) -> float:
        if not nearest:
            return 0.0
        importance = IMPORTANCE_SCORES.get(nearest["strategic_importance"], 0.3)
        decay = max(0.0, 1 - nearest["distance_m"] / INFRASTRUCTURE_MAX_DISTANCE_M)
        return importance * decay

    @staticmethod
    def _summary(nearest: Optional[dict], strikes: list[dict]) -> str:
        parts = []
        if nearest and nearest["distance_m"] < SUMMARY_MAX_DISTANCE_M:
            parts.append(
                f"{nearest['distance_nm']:.1f}nm from {nearest['name']} "
                f"({nearest['strategic_importance']} importance)"
            )
        if strikes:
            parts.append(f"{len(strikes)} strike report(s) nearby")
        return "; ".join(parts) if parts else "No significant context"

    @cached(ttl_seconds=settings.context_cache_ttl, skip_first_arg=True)
    async def _context(self, lat: float, lon: float, alt: Optional[float]) -> dict:
        now = utcnow()
        nearest = await self.nearest_infrastructure(lat, lon)
        strikes = await self.nearby_strikes(lat, lon)

        infra_score = self._infrastructure_score(nearest)
        strike_score = self._strike_score(strikes, now)
        combined = (
            infra_score * WEIGHTS["infrastructure"] +
            strike_score * WEIGHTS["strikes"]
        )

        return {
            "latitude": lat,
            "longitude": lon,
            "altitude": alt,
            "nearest_infrastructure": nearest,
            "recent_strikes": strikes,
            "infrastructure_score": round(infra_score, 3),
            "strike_score": round(strike_score, 3),
            "combined_score": round(combined, 3),
            "intelligence_value": intelligence_value(combined),
            "context_summary": self._summary(nearest, strikes),
        }

    async def get_position_context(
        self, lat: float, lon: float, alt: Optional[float] = None
    ) -> dict:
        """Context for a position; coordinates are rounded to ~100 m for caching."""
        if not is_valid_position(lat, lon):
            raise ValidationError("Invalid coordinates")
        return await self._context(
            round(lat, 3), round(lon, 3), round(alt) if alt is not None else None
        )

    async def get_infrastructure(
        self,
        bounds: Optional[dict] = None,
        types: Optional[list[str]] = None,
    ) -> list[dict]:
        """
        Active infrastructure, optionally within {north, south, east, west}
        bounds and restricted to the given types.
        """
        if types:
            unknown = sorted(set(types) - INFRASTRUCTURE_TYPES)
            if unknown:
                raise ValidationError(f"Unknown infrastructure type(s): {', '.join(unknown)}")

        query = select(Infrastructure).where(Infrastructure.is_active.is_(True))
        if bounds:
            query = query.where(
                Infrastructure.latitude.between(bounds["south"], bounds["north"]),
                _lon_clause(Infrastructure.longitude, bounds["west"], bounds["east"]),
            )
        if types:
            query = query.where(Infrastructure.infrastructure_type.in_(types))
        query = query.order_by(Infrastructure.name)

        rows = await self._execute(query)
        return [_infrastructure_dict(r) for r in rows]
