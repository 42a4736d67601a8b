"""
Periodic trigger endpoint.

A scheduler calls this once per period to ingest fresh states, reconcile
and expire predictions, generate new predictions and run proximity
analysis. Authentication is default-deny: a request passes only with
`Authorization: Bearer <cron_secret>`, with the trusted scheduler header,
or when `cron_allow_unauthenticated` is explicitly set.
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from skyintel.core.config import get_settings
from skyintel.core.errors import AuthenticationError
from skyintel.core.utils import utcnow
from skyintel.schemas import ApiResponse, ErrorResponse
from skyintel.services.context import ContextIntelligence
from skyintel.services.cycle import Fetcher, run_prediction_cycle
from skyintel.services.engines import (
    build_proximity_analyzer, get_context_intelligence, get_storage,
)
from skyintel.services.ingestion import fetch_aircraft_states
from skyintel.services.storage import Storage
from skyintel.services.trajectory import TrajectoryPredictor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/cron", tags=["Cron"])


def get_fetcher() -> Fetcher:
    """Dependency returning the ingestion function."""
    return fetch_aircraft_states


def verify_cron_request(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> None:
    settings = get_settings()

    if request.headers.get(settings.trusted_scheduler_header) == "1":
        return

    if settings.cron_secret:
        expected = f"Bearer {settings.cron_secret}"
        if authorization and hmac.compare_digest(authorization.encode(), expected.encode()):
            return
    elif settings.cron_allow_unauthenticated:
        return

    logger.warning(f"Rejected cron request from {request.client.host if request.client else '?'}")
    raise AuthenticationError("Unauthorized")


@router.api_route(
    "/update-predictions",
    methods=["GET", "POST"],
    response_model=ApiResponse,
    summary="Run Prediction Cycle",
    description="""
Run one prediction cycle: ingestion, reconciliation, expiry, prediction,
proximity analysis and retention cleanup.

Safe to call repeatedly within one period. An unavailable ADS-B source is
reported in `data.ingestion_error` while the rest of the cycle still runs.
    """,
    responses={401: {"model": ErrorResponse, "description": "Authentication failed"}},
)
async def update_predictions(
    _: None = Depends(verify_cron_request),
    storage: Storage = Depends(get_storage),
    context: ContextIntelligence = Depends(get_context_intelligence),
    fetch: Fetcher = Depends(get_fetcher),
):
    now = utcnow()
    clock = lambda: now  # noqa: E731
    logger.info("Starting prediction update")

    summary = await run_prediction_cycle(
        storage,
        now=now,
        fetch=fetch,
        predictor=TrajectoryPredictor(storage, clock=clock),
        analyzer=build_proximity_analyzer(storage, context, clock=clock),
    )
    return {"success": True, "data": summary}
