"""
Utility functions for geodesy, unit conversion, validation and HTTP access.
"""
import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)

EARTH_RADIUS_M = 6371008.8  # IUGG mean radius
METERS_PER_NM = 1852.0
METERS_PER_FOOT = 0.3048

MIN_REQUEST_INTERVAL = 0.2  # seconds between requests to one domain

# Rate limiting: track last request time per domain
_domain_last_request: dict[str, float] = {}
_domain_backoff_until: dict[str, float] = {}  # Backoff after 429


# =============================================================================
# Unit conversion
# =============================================================================

def ft_to_m(feet: float) -> float:
    return feet * METERS_PER_FOOT


def kt_to_mps(knots: float) -> float:
    return knots * METERS_PER_NM / 3600.0


def fpm_to_mps(fpm: float) -> float:
    return fpm * METERS_PER_FOOT / 60.0


def nm_to_m(nm: float) -> float:
    return nm * METERS_PER_NM


def m_to_nm(meters: float) -> float:
    return meters / METERS_PER_NM


# =============================================================================
# Geodesy
# =============================================================================

def wrap_heading(degrees: float) -> float:
    """Wrap an angle into [0, 360)."""
    wrapped = math.fmod(degrees, 360.0)
    if wrapped < 0:
        wrapped += 360.0
    # fmod of a tiny negative value can round up to exactly 360
    return 0.0 if wrapped >= 360.0 else wrapped


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters using the Haversine formula."""
    lat1_rad, lat2_rad = math.radians(lat1), math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2)

    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def initial_bearing(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Initial great-circle bearing from point 1 to point 2, degrees [0, 360)."""
    lat1_rad, lat2_rad = math.radians(lat1), math.radians(lat2)
    delta_lon = math.radians(lon2 - lon1)

    x = math.cos(lat2_rad) * math.sin(delta_lon)
    y = (math.cos(lat1_rad) * math.sin(lat2_rad) -
         math.sin(lat1_rad) * math.cos(lat2_rad) * math.cos(delta_lon))

    return wrap_heading(math.degrees(math.atan2(x, y)))


def destination_point(
    lat: float, lon: float, bearing_deg: float, distance_m: float
) -> tuple[float, float]:
    """Point reached travelling distance_m along a great circle from (lat, lon)."""
    if distance_m == 0:
        return lat, lon

    lat_rad = math.radians(lat)
    lon_rad = math.radians(lon)
    bearing_rad = math.radians(bearing_deg)
    angular = distance_m / EARTH_RADIUS_M

    dest_lat = math.asin(
        math.sin(lat_rad) * math.cos(angular) +
        math.cos(lat_rad) * math.sin(angular) * math.cos(bearing_rad)
    )
    dest_lon = lon_rad + math.atan2(
        math.sin(bearing_rad) * math.sin(angular) * math.cos(lat_rad),
        math.cos(angular) - math.sin(lat_rad) * math.sin(dest_lat)
    )

    # Normalise longitude to [-180, 180)
    lon_deg = (math.degrees(dest_lon) + 540.0) % 360.0 - 180.0
    return math.degrees(dest_lat), lon_deg


def enu_offset_m(lat0: float, lon0: float, lat: float, lon: float) -> tuple[float, float]:
    """
    East/north offset in meters of (lat, lon) from (lat0, lon0).

    Local tangent plane approximation, accurate well below 50 km.
    """
    mean_lat = math.radians((lat0 + lat) / 2)
    delta_lon = (lon - lon0 + 540.0) % 360.0 - 180.0
    east = math.radians(delta_lon) * EARTH_RADIUS_M * math.cos(mean_lat)
    north = math.radians(lat - lat0) * EARTH_RADIUS_M
    return east, north


def velocity_en(heading: Optional[float], ground_speed: Optional[float]) -> tuple[float, float]:
    """East/north velocity in m/s; missing heading or speed means zero velocity."""
    if heading is None or ground_speed is None:
        return 0.0, 0.0
    rad = math.radians(heading)
    return ground_speed * math.sin(rad), ground_speed * math.cos(rad)


# =============================================================================
# Validation and parsing
# =============================================================================

def is_valid_position(lat: Optional[float], lon: Optional[float]) -> bool:
    """Check if coordinates are present and within WGS-84 bounds."""
    if lat is None or lon is None:
        return False
    try:
        lat_f, lon_f = float(lat), float(lon)
    except (TypeError, ValueError):
        return False
    if math.isnan(lat_f) or math.isnan(lon_f):
        return False
    return -90 <= lat_f <= 90 and -180 <= lon_f <= 180


def safe_int_altitude(alt_value: Any) -> Optional[int]:
    """Safely convert altitude to int, handling 'ground' and other strings."""
    if alt_value is None:
        return None
    if isinstance(alt_value, bool):
        return None
    if isinstance(alt_value, int):
        return alt_value
    if isinstance(alt_value, float):
        return int(alt_value)
    if isinstance(alt_value, str):
        if alt_value.lower() == "ground":
            return 0
        try:
            return int(float(alt_value))
        except (ValueError, TypeError):
            return None
    return None


def ensure_utc(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso_timestamp(ts_str: str) -> Optional[datetime]:
    """Parse ISO 8601 or unix timestamp string into an aware UTC datetime."""
    if not ts_str:
        return None

    # Try unix timestamp first
    try:
        return datetime.fromtimestamp(float(ts_str), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        pass

    # Try ISO format
    try:
        ts_clean = ts_str.strip()
        if ts_clean.endswith("Z"):
            ts_clean = ts_clean[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(ts_clean))
    except (ValueError, TypeError):
        return None


# =============================================================================
# HTTP
# =============================================================================

async def safe_request(
    url: str,
    timeout: float = 5.0,
    max_retries: int = 2,
    min_interval: float = MIN_REQUEST_INTERVAL,
) -> Optional[dict]:
    """
    Make a safe HTTP GET request with timeout, rate limiting, and 429 handling.

    Returns the decoded JSON body, or None on any failure.
    """
    parsed = urlparse(url)
    domain = parsed.hostname.lower() if parsed.hostname else parsed.netloc.lower()

    # Check if we're in backoff period for this domain
    now = time.time()
    backoff_until = _domain_backoff_until.get(domain, 0)
    if now < backoff_until:
        wait_time = backoff_until - now
        logger.debug(f"Rate limited: {domain} in backoff for {wait_time:.1f}s more")
        return None

    # Apply per-domain rate limiting
    last_request = _domain_last_request.get(domain, 0)
    elapsed = now - last_request

    if elapsed < min_interval:
        await asyncio.sleep(min_interval - elapsed)

    _domain_last_request[domain] = time.time()

    for attempt in range(max_retries + 1):
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(
                    url,
                    headers={"User-Agent": "SkyIntel/1.0 (trajectory-engine)"}
                )

                if response.status_code == 429:
                    retry_after = response.headers.get("Retry-After")
                    if retry_after:
                        try:
                            delay = int(retry_after)
                        except ValueError:
                            delay = 60
                    else:
                        delay = min(60, 5 * (2 ** attempt))

                    logger.warning(f"Rate limited (429) from {domain}, backing off for {delay}s")
                    _domain_backoff_until[domain] = time.time() + delay

                    if attempt < max_retries:
                        await asyncio.sleep(delay)
                        continue
                    return None

                response.raise_for_status()
                return response.json()

        except httpx.HTTPStatusError as e:
            logger.debug(f"HTTP error from {domain}: {e.response.status_code}")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.debug(f"Request failed for {url}: {e}")
            return None

    return None
