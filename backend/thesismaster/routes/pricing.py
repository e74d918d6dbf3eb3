"""
ThesisMaster Backend - Pricing Quote Route
===========================================

GET /api/pricing/quote prices a chapter before it is created, with the same
rules used when the chapter is saved.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from thesismaster.domain.enums import AcademicLevel, Urgency, WorkType
from thesismaster.identity import get_current_identity
from thesismaster.schemas.chapter import PricingQuoteResponse
from thesismaster.schemas.common import ErrorResponse
from thesismaster.services.chapter_service import quote

router = APIRouter(prefix="/api", tags=["Pricing"])


@router.get(
    "/pricing/quote",
    response_model=PricingQuoteResponse,
    responses={400: {"model": ErrorResponse}},
    dependencies=[Depends(get_current_identity)],
    summary="Quote the price of a chapter",
)
async def get_quote(
    target_word_count: int = Query(..., description="Planned length in words"),
    level: AcademicLevel = Query(default=AcademicLevel.MASTERS),
    work_type: WorkType = Query(default=WorkType.COURSEWORK),
    urgency: Urgency = Query(default=Urgency.NORMAL),
) -> PricingQuoteResponse:
    snapshot = quote(target_word_count, level.value, work_type.value, urgency.value)
    return PricingQuoteResponse(
        target_word_count=target_word_count,
        level=level.value,
        work_type=work_type.value,
        urgency=urgency.value,
        estimated_pages=snapshot.pages,
        estimated_cost=snapshot.total_price,
        pricing=snapshot.to_dict(),
    )
