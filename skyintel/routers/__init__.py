"""API routers package."""
from skyintel.routers import context, predictions, cron

__all__ = [
    "context",
    "predictions",
    "cron",
]
