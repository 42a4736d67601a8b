"""Core package containing configuration, database, errors and utilities."""
from skyintel.core.config import get_settings, Settings
from skyintel.core.database import get_session_factory, init_db, close_db, Base
from skyintel.core.cache import cached, clear_cache
from skyintel.core.errors import (
    SkyIntelError,
    ValidationError,
    AuthenticationError,
    UpstreamError,
    InternalError,
)
from skyintel.core.utils import (
    haversine_m,
    initial_bearing,
    destination_point,
    is_valid_position,
    safe_int_altitude,
    parse_iso_timestamp,
    safe_request,
    utcnow,
)

__all__ = [
    "get_settings",
    "Settings",
    "get_session_factory",
    "init_db",
    "close_db",
    "Base",
    "cached",
    "clear_cache",
    "SkyIntelError",
    "ValidationError",
    "AuthenticationError",
    "UpstreamError",
    "InternalError",
    "haversine_m",
    "initial_bearing",
    "destination_point",
    "is_valid_position",
    "safe_int_altitude",
    "parse_iso_timestamp",
    "safe_request",
    "utcnow",
]
