"""
ThesisMaster Backend - Dashboard Route
=======================================

GET /api/dashboard/stats: the student's writing progress and payment totals.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from thesismaster.database import get_db_session
from thesismaster.identity import CurrentIdentity, get_current_identity
from thesismaster.schemas.dashboard import DashboardStatsResponse
from thesismaster.services.dashboard_service import dashboard_service

router = APIRouter(prefix="/api", tags=["Dashboard"])


@router.get(
    "/dashboard/stats",
    response_model=DashboardStatsResponse,
    summary="Student dashboard statistics",
)
async def get_dashboard_stats(
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> DashboardStatsResponse:
    return await dashboard_service.get_stats(db, identity.user_id)
