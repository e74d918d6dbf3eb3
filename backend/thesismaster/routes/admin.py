"""
ThesisMaster Backend - Admin Route Handlers
============================================

What:  Platform oversight. Every endpoint requires X-User-Role: admin.

Endpoints:
    GET /api/admin/stats                 platform aggregates
    GET /api/admin/payments              every payment, per-status totals
    PUT /api/admin/payments/{id}         mark_paid | refund | fail
    GET /api/admin/chapters              every chapter, with statistics
    PUT /api/admin/chapters/{id}         assign_writer | change_status | extend_deadline
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from thesismaster.database import get_db_session
from thesismaster.identity import CurrentIdentity, require_admin
from thesismaster.schemas.admin import (
    AdminChapterActionRequest,
    AdminChapterItem,
    AdminChapterListResponse,
    AdminPaymentActionRequest,
    AdminPaymentActionResponse,
    PlatformStatsResponse,
)
from thesismaster.schemas.common import ErrorResponse
from thesismaster.schemas.payment import PaymentListResponse, PaymentResponse
from thesismaster.services.admin_service import admin_service

router = APIRouter(
    prefix="/api/admin",
    tags=["Admin"],
    responses={403: {"description": "Admin access required", "model": ErrorResponse}},
)


@router.get("/stats", response_model=PlatformStatsResponse, summary="Platform statistics")
async def get_platform_stats(
    admin: CurrentIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> PlatformStatsResponse:
    return await admin_service.platform_stats(db)


@router.get("/payments", response_model=PaymentListResponse, summary="List every payment")
async def list_all_payments(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: Optional[str] = Query(default=None, description="Filter by payment status"),
    admin: CurrentIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> PaymentListResponse:
    result = await admin_service.list_payments(db, page=page, limit=limit, status=status)
    response.headers["X-Total-Count"] = str(result.pagination.total)
    return result


@router.put(
    "/payments/{payment_id}",
    response_model=AdminPaymentActionResponse,
    responses={
        400: {"description": "Missing reason or invalid amount", "model": ErrorResponse},
        404: {"description": "Payment not found", "model": ErrorResponse},
        409: {"description": "Action not allowed in the current status", "model": ErrorResponse},
    },
    summary="Mark paid, refund or fail a payment",
)
async def apply_payment_action(
    payment_id: UUID,
    data: AdminPaymentActionRequest,
    admin: CurrentIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> AdminPaymentActionResponse:
    payment = await admin_service.apply_payment_action(db, admin.user_id, payment_id, data)
    return AdminPaymentActionResponse(
        message=f"Payment {data.action.value.replace('_', ' ')} applied",
        payment=PaymentResponse.model_validate(payment),
    )


@router.get("/chapters", response_model=AdminChapterListResponse, summary="List every chapter")
async def list_all_chapters(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    status: Optional[str] = Query(default=None, description="Chapter status or 'overdue'"),
    is_paid: Optional[bool] = Query(default=None),
    search: Optional[str] = Query(default=None, max_length=200, description="Title contains"),
    admin: CurrentIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> AdminChapterListResponse:
    result = await admin_service.list_chapters(
        db, page=page, limit=limit, status=status, is_paid=is_paid, search=search
    )
    response.headers["X-Total-Count"] = str(result.pagination.total)
    return result


@router.put(
    "/chapters/{chapter_id}",
    response_model=AdminChapterItem,
    responses={
        400: {"description": "Missing or invalid action field", "model": ErrorResponse},
        404: {"description": "Chapter not found", "model": ErrorResponse},
        409: {"description": "Chapter not paid", "model": ErrorResponse},
    },
    summary="Assign a writer, change status or extend the deadline",
)
async def apply_chapter_action(
    chapter_id: UUID,
    data: AdminChapterActionRequest,
    admin: CurrentIdentity = Depends(require_admin),
    db: AsyncSession = Depends(get_db_session),
) -> AdminChapterItem:
    chapter = await admin_service.apply_chapter_action(db, admin.user_id, chapter_id, data)
    return AdminChapterItem.model_validate(chapter)
