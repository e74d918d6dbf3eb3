"""
ThesisMaster Backend - Writer Route Handlers
=============================================

What:  Endpoints for callers with the writer role.
How:   Every route depends on require_writer (401 anonymous, 403 other roles)
       and delegates to WriterService.

Endpoints:
    GET  /api/writer/chapters?scope=available|mine
    POST /api/writer/chapters/{id}/accept
    PUT  /api/writer/chapters/{id}/status
    GET  /api/writer/earnings?start=&end=
    POST /api/writer/payouts
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from thesismaster.database import get_db_session
from thesismaster.identity import CurrentIdentity, require_writer
from thesismaster.schemas.chapter import ChapterSummary
from thesismaster.schemas.common import ErrorResponse
from thesismaster.schemas.earnings import (
    EarningsResponse,
    PayoutRequest,
    PayoutResponse,
    WriterChapterListResponse,
    WriterStatusUpdate,
)
from thesismaster.services.writer_service import writer_service

router = APIRouter(prefix="/api/writer", tags=["Writer"])


@router.get(
    "/chapters",
    response_model=WriterChapterListResponse,
    summary="Chapters open for claiming, or the writer's own",
)
async def list_writer_chapters(
    scope: str = Query(default="available", description="available or mine"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: Optional[str] = Query(default=None),
    writer: CurrentIdentity = Depends(require_writer),
    db: AsyncSession = Depends(get_db_session),
) -> WriterChapterListResponse:
    return await writer_service.list_chapters(
        db, writer.user_id, scope=scope, page=page, limit=limit, status=status
    )


@router.post(
    "/chapters/{chapter_id}/accept",
    response_model=ChapterSummary,
    responses={
        404: {"model": ErrorResponse},
        409: {"description": "Unpaid or already claimed", "model": ErrorResponse},
    },
    summary="Claim a paid chapter",
)
async def accept_chapter(
    chapter_id: UUID,
    writer: CurrentIdentity = Depends(require_writer),
    db: AsyncSession = Depends(get_db_session),
) -> ChapterSummary:
    chapter = await writer_service.accept_chapter(db, writer.user_id, chapter_id)
    return ChapterSummary.model_validate(chapter)


@router.put(
    "/chapters/{chapter_id}/status",
    response_model=ChapterSummary,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Update the status of an assigned chapter",
)
async def update_chapter_status(
    chapter_id: UUID,
    data: WriterStatusUpdate,
    writer: CurrentIdentity = Depends(require_writer),
    db: AsyncSession = Depends(get_db_session),
) -> ChapterSummary:
    chapter = await writer_service.update_status(db, writer.user_id, chapter_id, data.status)
    return ChapterSummary.model_validate(chapter)


@router.get(
    "/earnings",
    response_model=EarningsResponse,
    summary="Earnings summary, monthly series and pending payout",
)
async def get_earnings(
    start: Optional[datetime] = Query(default=None, description="Completed on or after (ISO 8601)"),
    end: Optional[datetime] = Query(default=None, description="Completed on or before (ISO 8601)"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    writer: CurrentIdentity = Depends(require_writer),
    db: AsyncSession = Depends(get_db_session),
) -> EarningsResponse:
    return await writer_service.get_earnings(
        db, writer.user_id, start=start, end=end, page=page, limit=limit
    )


@router.post(
    "/payouts",
    response_model=PayoutResponse,
    status_code=201,
    responses={
        400: {"model": ErrorResponse},
        409: {"description": "Amount exceeds available earnings", "model": ErrorResponse},
    },
    summary="Request a payout of pending earnings",
)
async def request_payout(
    data: PayoutRequest,
    writer: CurrentIdentity = Depends(require_writer),
    db: AsyncSession = Depends(get_db_session),
) -> PayoutResponse:
    return await writer_service.request_payout(db, writer.user_id, data)
