"""
Thread-safe in-memory TTL cache for collaborator lookups.

Context lookups hit the database for every aircraft pair; positions
repeat heavily between cycles, so results are memoised per rounded
argument tuple.
"""
import hashlib
import inspect
import threading
import time
from functools import wraps
from typing import Any, Optional, Dict, Tuple

from skyintel.core.config import get_settings

settings = get_settings()

_cache: Dict[str, Tuple[Any, float]] = {}
_cache_lock = threading.Lock()


def make_cache_key(func_name: str, args: tuple, kwargs: dict) -> str:
    """Create a cache key by hashing the repr of the call arguments."""
    key_parts = [func_name]
    for arg in args:
        key_parts.append(repr(arg))
    for k, v in sorted(kwargs.items()):
        key_parts.append(f"{k}={v!r}")
    return hashlib.md5(":".join(key_parts).encode()).hexdigest()


def _lookup(cache_key: str, ttl_seconds: float) -> Tuple[bool, Any]:
    with _cache_lock:
        if cache_key in _cache:
            data, stored_at = _cache[cache_key]
            if time.monotonic() - stored_at < ttl_seconds:
                return True, data
            del _cache[cache_key]
    return False, None


def _store(cache_key: str, data: Any) -> None:
    if data is None:
        return
    with _cache_lock:
        _cache[cache_key] = (data, time.monotonic())


def cached(ttl_seconds: Optional[int] = None, skip_first_arg: bool = False):
    """
    Decorator caching function results for ttl_seconds.

    skip_first_arg leaves `self` out of the key for bound methods.
    None results are never cached.
    """
    if ttl_seconds is None:
        ttl_seconds = settings.cache_ttl

    def decorator(func):
        def key_for(args, kwargs):
            key_args = args[1:] if skip_first_arg else args
            return make_cache_key(func.__qualname__, key_args, kwargs)

        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            cache_key = key_for(args, kwargs)
            hit, data = _lookup(cache_key, ttl_seconds)
            if hit:
                return data
            result = await func(*args, **kwargs)
            _store(cache_key, result)
            return result

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            cache_key = key_for(args, kwargs)
            hit, data = _lookup(cache_key, ttl_seconds)
            if hit:
                return data
            result = func(*args, **kwargs)
            _store(cache_key, result)
            return result

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def clear_cache():
    """Clear all cached data."""
    with _cache_lock:
        _cache.clear()
