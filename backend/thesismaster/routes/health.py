"""
ThesisMaster Backend - Health Check Route
==========================================

What:  GET /health for container probes and load balancers.
How:   SELECT 1 against the database plus the payment gateway's circuit state.

Status levels:
    - healthy:   database reachable, gateway circuit closed
    - degraded:  database reachable, gateway circuit open or half open
    - unhealthy: database unreachable
"""

import logging
import time

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from thesismaster import __version__
from thesismaster.database import engine
from thesismaster.schemas.common import HealthResponse
from thesismaster.services.payment_gateway import get_payment_gateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check() -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    circuit = get_payment_gateway().circuit_state
    if circuit != "closed" and overall == "healthy":
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        payment_gateway=circuit,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
