"""
FastAPI dependency providers for the engines.

Engines are cheap to construct and hold no state of their own, so a new
set is built per request around the shared session factory. Tests swap
the backing database by overriding `get_session_factory`.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from skyintel.core.config import get_settings
from skyintel.core.database import get_session_factory
from skyintel.services.context import ContextIntelligence
from skyintel.services.proximity import ProximityAnalyzer
from skyintel.services.storage import SqlStorage, Storage
from skyintel.services.trajectory import TrajectoryPredictor


def get_storage(session_factory: async_sessionmaker = Depends(get_session_factory)) -> Storage:
    return SqlStorage(session_factory)


def get_context_intelligence(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> ContextIntelligence:
    return ContextIntelligence(session_factory)


def get_trajectory_predictor(storage: Storage = Depends(get_storage)) -> TrajectoryPredictor:
    return TrajectoryPredictor(storage)


def build_proximity_analyzer(
    storage: Storage, context: ContextIntelligence, **kwargs
) -> ProximityAnalyzer:
    """Analyzer wired to context enrichment when it is enabled."""
    provider = context.get_position_context if get_settings().context_enrichment_enabled else None
    return ProximityAnalyzer(storage, context_provider=provider, **kwargs)


def get_proximity_analyzer(
    storage: Storage = Depends(get_storage),
    context: ContextIntelligence = Depends(get_context_intelligence),
) -> ProximityAnalyzer:
    return build_proximity_analyzer(storage, context)
