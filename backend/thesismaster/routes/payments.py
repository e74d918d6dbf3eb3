"""
ThesisMaster Backend - Payment Route Handlers
==============================================

What:  Payments owned by the calling student.
How:   Thin wrappers around PaymentService. Status changes and deletes carry
       the chapter side effects (is_paid, payment_id, draft -> in_progress);
       the service applies them in the same transaction as the payment.

Endpoints:
    GET    /api/payments            list with per-status totals
    POST   /api/payments            create a pending payment
    POST   /api/payments/process    create and charge through the gateway
    GET    /api/payments/{id}
    PUT    /api/payments/{id}       status transition / detail update
    DELETE /api/payments/{id}       pending or failed only
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from thesismaster.database import get_db_session
from thesismaster.domain.enums import PaymentStatus
from thesismaster.identity import CurrentIdentity, get_current_identity
from thesismaster.schemas.common import ErrorResponse, MessageResponse
from thesismaster.schemas.payment import (
    PaymentCreate,
    PaymentListResponse,
    PaymentProcessRequest,
    PaymentProcessResponse,
    PaymentResponse,
    PaymentUpdate,
)
from thesismaster.services.gateway_base import PaymentGateway
from thesismaster.services.payment_gateway import get_payment_gateway
from thesismaster.services.payment_service import payment_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Payments"])


@router.get(
    "/payments",
    response_model=PaymentListResponse,
    summary="List the caller's payments",
)
async def list_payments(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: Optional[str] = Query(default=None, description="Filter by payment status"),
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> PaymentListResponse:
    result = await payment_service.list_payments(
        db, identity.user_id, page=page, limit=limit, status=status
    )
    response.headers["X-Total-Count"] = str(result.pagination.total)
    return result


@router.post(
    "/payments",
    response_model=PaymentResponse,
    status_code=201,
    responses={
        404: {"description": "Chapter not found", "model": ErrorResponse},
        409: {"description": "Chapter already paid for", "model": ErrorResponse},
    },
    summary="Create a pending payment",
)
async def create_payment(
    data: PaymentCreate,
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> PaymentResponse:
    payment = await payment_service.create_payment(db, identity.user_id, data)
    return PaymentResponse.model_validate(payment)


@router.post(
    "/payments/process",
    response_model=PaymentProcessResponse,
    responses={
        409: {"description": "Chapter already paid for", "model": ErrorResponse},
        503: {"description": "Gateway unavailable", "model": ErrorResponse},
    },
    summary="Pay for a chapter through the payment gateway",
)
async def process_payment(
    data: PaymentProcessRequest,
    identity: CurrentIdentity = Depends(get_current_identity),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    db: AsyncSession = Depends(get_db_session),
) -> PaymentProcessResponse:
    """
    A declined charge is not an HTTP error: the payment is stored as failed
    and the response carries success=false with the decline reason.
    """
    payment = await payment_service.process_payment(db, identity.user_id, data, gateway)
    success = payment.status == PaymentStatus.COMPLETED.value
    if success:
        message = "Payment completed successfully"
    else:
        message = f"Payment failed: {payment.failure_reason}"
    return PaymentProcessResponse(
        success=success,
        message=message,
        payment=PaymentResponse.model_validate(payment),
    )


@router.get(
    "/payments/{payment_id}",
    response_model=PaymentResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get a payment",
)
async def get_payment(
    payment_id: UUID,
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> PaymentResponse:
    payment = await payment_service.get_payment(db, identity.user_id, payment_id)
    return PaymentResponse.model_validate(payment)


@router.put(
    "/payments/{payment_id}",
    response_model=PaymentResponse,
    responses={
        400: {"description": "Unknown status or invalid refund", "model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"description": "Illegal transition or concurrent update", "model": ErrorResponse},
    },
    summary="Change a payment's status",
)
async def update_payment(
    payment_id: UUID,
    data: PaymentUpdate,
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> PaymentResponse:
    payment = await payment_service.update_payment(db, identity.user_id, payment_id, data)
    return PaymentResponse.model_validate(payment)


@router.delete(
    "/payments/{payment_id}",
    response_model=MessageResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"description": "Payment is not deletable", "model": ErrorResponse},
    },
    summary="Delete a pending or failed payment",
)
async def delete_payment(
    payment_id: UUID,
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await payment_service.delete_payment(db, identity.user_id, payment_id)
    return MessageResponse(message="Payment deleted successfully")
