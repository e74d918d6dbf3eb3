"""
ThesisMaster Backend - Payment Service
=======================================

What:  Persistence boundary for payments. Creates, lists, transitions,
       processes and deletes payments, keeping the linked chapter's
       is_paid/payment_id consistent with the payment status.
How:   Every mutation loads the payment and its chapter FOR UPDATE inside
       the request transaction, asks domain.payment_state what changes,
       writes both rows and flushes. Both rows are versioned, so a
       concurrent change makes the flush fail; retry_on_conflict rolls back
       and re-runs the unit.
Who:   routes.payments

Processing Flow (POST /api/payments/process):
    ┌────────────┐   ┌──────────────┐   ┌─────────────┐   ┌──────────────┐
    │ Chapter    │──▶│ Payment      │──▶│  Gateway    │──▶│ completed or │
    │ payable?   │   │ (processing) │   │  charge     │   │ failed       │
    └────────────┘   └──────────────┘   └─────────────┘   └──────────────┘
    A gateway error (503) rolls the whole request back; no payment remains.
"""

import logging
import uuid
from typing import Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from thesismaster.config import settings
from thesismaster.domain.enums import PaymentStatus
from thesismaster.domain.payment_state import (
    ChapterChange,
    ChapterLink,
    PaymentView,
    TransitionOutcome,
    apply_transition,
    ensure_chapter_payable,
    parse_status,
    plan_deletion,
)
from thesismaster.exceptions import (
    BusinessRuleError,
    ConcurrencyConflictError,
    DatabaseError,
    NotFoundError,
    ThesisMasterError,
    ValidationError,
)
from thesismaster.models.chapter import Chapter, utcnow
from thesismaster.models.payment import Payment
from thesismaster.schemas.common import Pagination
from thesismaster.schemas.payment import (
    PaymentCreate,
    PaymentListResponse,
    PaymentProcessRequest,
    PaymentResponse,
    PaymentTotal,
    PaymentUpdate,
)
from thesismaster.services.chapter_service import chapter_service
from thesismaster.services.concurrency import retry_on_conflict
from thesismaster.services.gateway_base import ChargeRequest, PaymentGateway

logger = logging.getLogger(__name__)


# ── Row ↔ value struct translation ────────────────────────────────────────

def payment_view(payment: Payment) -> PaymentView:
    return PaymentView(
        id=payment.id,
        status=PaymentStatus(payment.status),
        amount=payment.amount,
        transaction_id=payment.transaction_id,
        failure_reason=payment.failure_reason,
        refund_amount=payment.refund_amount,
        refund_reason=payment.refund_reason,
        completed_at=payment.completed_at,
    )


def chapter_link(chapter: Optional[Chapter]) -> Optional[ChapterLink]:
    if chapter is None:
        return None
    return ChapterLink(
        id=chapter.id,
        status=chapter.status,
        is_paid=chapter.is_paid,
        payment_id=chapter.payment_id,
    )


def apply_chapter_change(chapter: Optional[Chapter], change: Optional[ChapterChange]) -> None:
    if chapter is None or change is None:
        return
    chapter.is_paid = change.is_paid
    chapter.payment_id = change.payment_id
    if change.status is not None:
        chapter.status = change.status.value
    chapter.updated_at = utcnow()


def apply_outcome(payment: Payment, chapter: Optional[Chapter], outcome: TransitionOutcome) -> None:
    payment.status = outcome.status.value
    payment.transaction_id = outcome.transaction_id
    payment.failure_reason = outcome.failure_reason
    payment.refund_amount = outcome.refund_amount
    payment.refund_reason = outcome.refund_reason
    payment.completed_at = outcome.completed_at
    payment.updated_at = utcnow()
    apply_chapter_change(chapter, outcome.chapter_change)


class PaymentService:
    """
    Business logic layer for payment operations.

    Error Handling Strategy:
        Application errors (NotFoundError, BusinessRuleError, ...) propagate
        unchanged. Other SQLAlchemy errors become DatabaseError. A duplicate
        transaction_id is reported as a BusinessRuleError.
    """

    # ── Lookups ───────────────────────────────────────────────────────────

    async def _load(
        self,
        db: AsyncSession,
        payment_id: UUID,
        owner_id: Optional[UUID] = None,
        for_update: bool = False,
    ) -> Payment:
        # owner_id None is the admin scope: any owner
        stmt = select(Payment).where(Payment.id == payment_id)
        if owner_id is not None:
            stmt = stmt.where(Payment.user_id == owner_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        payment = (await db.execute(stmt)).scalar_one_or_none()
        if payment is None:
            raise NotFoundError(resource="Payment", resource_id=str(payment_id))
        return payment

    async def _load_chapter_for_update(
        self, db: AsyncSession, chapter_id: Optional[UUID]
    ) -> Optional[Chapter]:
        if chapter_id is None:
            return None
        stmt = (
            select(Chapter)
            .where(Chapter.id == chapter_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return (await db.execute(stmt)).scalar_one_or_none()

    async def get_payment(
        self, db: AsyncSession, owner_id: Optional[UUID], payment_id: UUID
    ) -> Payment:
        """
        Raises:
            NotFoundError: Unknown payment, or one owned by someone else.
        """
        try:
            return await self._load(db, payment_id, owner_id)
        except ThesisMasterError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error fetching payment %s: %s", payment_id, str(e))
            raise DatabaseError(message="Could not retrieve the payment. Please try again.")

    async def list_payments(
        self,
        db: AsyncSession,
        owner_id: Optional[UUID],
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
    ) -> PaymentListResponse:
        """
        Payments newest first, with count/amount totals per status.

        owner_id None lists every owner's payments (admin view).
        """
        status_filter = parse_status(status) if status else None
        try:
            conditions = [] if owner_id is None else [Payment.user_id == owner_id]
            if status_filter is not None:
                conditions.append(Payment.status == status_filter.value)

            total = await db.scalar(select(func.count()).select_from(Payment).where(*conditions))
            result = await db.execute(
                select(Payment)
                .where(*conditions)
                .order_by(Payment.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            payments = result.scalars().all()
            totals = await self.totals_by_status(db, owner_id)
        except SQLAlchemyError as e:
            logger.error("Database error listing payments: %s", str(e))
            raise DatabaseError(message="Could not retrieve payments. Please try again.")

        return PaymentListResponse(
            payments=[PaymentResponse.model_validate(p) for p in payments],
            pagination=Pagination.build(page, limit, total or 0),
            totals=totals,
        )

    async def totals_by_status(
        self, db: AsyncSession, owner_id: Optional[UUID]
    ) -> Dict[str, PaymentTotal]:
        stmt = select(
            Payment.status, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0)
        ).group_by(Payment.status)
        if owner_id is not None:
            stmt = stmt.where(Payment.user_id == owner_id)
        result = await db.execute(stmt)
        return {
            status: PaymentTotal(count=count, amount=float(amount))
            for status, count, amount in result.all()
        }

    # ── Create ────────────────────────────────────────────────────────────

    async def create_payment(
        self, db: AsyncSession, owner_id: UUID, data: PaymentCreate
    ) -> Payment:
        """
        Creates a pending payment, optionally for one of the owner's chapters.

        Raises:
            NotFoundError:     Chapter missing or not owned.
            BusinessRuleError: Chapter already paid for.
            ValidationError:   No amount and no chapter to take it from.
        """
        try:
            chapter = None
            if data.chapter_id is not None:
                chapter = await chapter_service.get_owned_chapter(
                    db, owner_id, data.chapter_id, for_update=True
                )
                ensure_chapter_payable(chapter_link(chapter))

            amount = data.amount
            if amount is None:
                if chapter is None:
                    raise ValidationError("amount is required", field="amount")
                amount = chapter.estimated_cost

            now = utcnow()
            payment = Payment(
                user_id=owner_id,
                chapter_id=chapter.id if chapter else None,
                amount=amount,
                currency=(data.currency or settings.currency).upper(),
                status=PaymentStatus.PENDING.value,
                payment_method=data.payment_method,
                description=data.description,
                type=data.type,
                payment_metadata=dict(data.metadata),
                created_at=now,
                updated_at=now,
            )
            db.add(payment)
            await db.flush()
            await db.refresh(payment, attribute_names=["chapter"])
        except ThesisMasterError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error creating payment: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not create the payment. Please try again.")

        logger.info(
            "Payment created: %s (owner=%s, chapter=%s, amount=%.2f %s)",
            payment.id,
            owner_id,
            payment.chapter_id,
            payment.amount,
            payment.currency,
        )
        return payment

    # ── Transition ────────────────────────────────────────────────────────

    async def update_payment(
        self, db: AsyncSession, owner_id: Optional[UUID], payment_id: UUID, data: PaymentUpdate
    ) -> Payment:
        """
        Moves a payment to a new status (or updates its detail fields) and
        applies the chapter side effects in the same transaction. Admin
        actions pass owner_id None.

        Raises:
            NotFoundError, ValidationError, BusinessRuleError,
            ConcurrencyConflictError, DatabaseError
        """

        async def unit() -> Payment:
            payment = await self._load(db, payment_id, owner_id, for_update=True)
            chapter = await self._load_chapter_for_update(db, payment.chapter_id)
            outcome = apply_transition(
                payment_view(payment),
                chapter_link(chapter),
                data.status or payment.status,
                transaction_id=data.transaction_id,
                failure_reason=data.failure_reason,
                refund_amount=data.refund_amount,
                refund_reason=data.refund_reason,
            )
            apply_outcome(payment, chapter, outcome)
            await db.flush()
            if outcome.status_changed:
                logger.info(
                    "Payment %s: %s → %s (chapter=%s, is_paid=%s)",
                    payment.id,
                    outcome.previous_status.value,
                    outcome.status.value,
                    payment.chapter_id,
                    chapter.is_paid if chapter is not None else None,
                )
            return payment

        try:
            payment = await retry_on_conflict(db, unit, "payment transition")
            await db.refresh(payment, attribute_names=["chapter"])
            return payment
        except ThesisMasterError:
            raise
        except IntegrityError:
            await db.rollback()
            raise BusinessRuleError(
                "Transaction ID is already in use",
                rule="duplicate_transaction_id",
                context={"payment_id": str(payment_id)},
            )
        except SQLAlchemyError as e:
            logger.error("Database error updating payment %s: %s", payment_id, str(e))
            raise DatabaseError(message="Could not update the payment. Please try again.")

    # ── Delete ────────────────────────────────────────────────────────────

    async def delete_payment(self, db: AsyncSession, owner_id: UUID, payment_id: UUID) -> None:
        """
        Deletes a pending or failed payment and unlinks its chapter.

        Raises:
            BusinessRuleError: Payment is processing, completed or refunded.
        """

        async def unit() -> None:
            payment = await self._load(db, payment_id, owner_id, for_update=True)
            chapter = await self._load_chapter_for_update(db, payment.chapter_id)
            change = plan_deletion(payment_view(payment), chapter_link(chapter))
            apply_chapter_change(chapter, change)
            await db.delete(payment)
            await db.flush()

        try:
            await retry_on_conflict(db, unit, "payment delete")
        except ThesisMasterError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error deleting payment %s: %s", payment_id, str(e))
            raise DatabaseError(message="Could not delete the payment. Please try again.")

        logger.info("Payment deleted: %s", payment_id)

    # ── Process through gateway ───────────────────────────────────────────

    async def process_payment(
        self,
        db: AsyncSession,
        owner_id: UUID,
        data: PaymentProcessRequest,
        gateway: PaymentGateway,
    ) -> Payment:
        """
        Creates a processing payment for a chapter, charges it through the
        gateway and completes or fails it with the gateway's answer.

        Opening the payment retries on concurrent modification. Once the
        gateway has answered, a lost race is reported as a conflict and the
        request rolls back rather than charging again.

        Raises:
            NotFoundError, BusinessRuleError, PaymentGatewayError,
            ConcurrencyConflictError, DatabaseError
        """

        async def open_payment() -> Tuple[Payment, Chapter]:
            chapter = await chapter_service.get_owned_chapter(
                db, owner_id, data.chapter_id, for_update=True
            )
            ensure_chapter_payable(chapter_link(chapter))

            now = utcnow()
            payment = Payment(
                id=uuid.uuid4(),
                user_id=owner_id,
                chapter_id=chapter.id,
                amount=data.amount if data.amount is not None else chapter.estimated_cost,
                currency=settings.currency,
                status=PaymentStatus.PENDING.value,
                payment_method=data.payment_method,
                description=f"Payment for Chapter {chapter.chapter_number}: {chapter.title}",
                type="chapter_payment",
                payment_metadata={"phone_number": data.phone_number} if data.phone_number else {},
                created_at=now,
                updated_at=now,
            )
            db.add(payment)
            apply_outcome(
                payment,
                chapter,
                apply_transition(payment_view(payment), chapter_link(chapter), PaymentStatus.PROCESSING),
            )
            await db.flush()
            return payment, chapter

        try:
            payment, chapter = await retry_on_conflict(db, open_payment, "payment processing")
            logger.info("Payment %s processing for chapter %s", payment.id, chapter.id)

            result = await gateway.charge(
                ChargeRequest(
                    payment_id=payment.id,
                    amount=payment.amount,
                    currency=payment.currency,
                    payment_method=payment.payment_method,
                    phone_number=data.phone_number,
                )
            )

            if result.success:
                outcome = apply_transition(
                    payment_view(payment),
                    chapter_link(chapter),
                    PaymentStatus.COMPLETED,
                    transaction_id=result.transaction_id,
                )
            else:
                outcome = apply_transition(
                    payment_view(payment),
                    chapter_link(chapter),
                    PaymentStatus.FAILED,
                    failure_reason=result.failure_reason,
                )
            apply_outcome(payment, chapter, outcome)
            try:
                await db.flush()
            except StaleDataError:
                charged_id = payment.id
                await db.rollback()
                logger.warning(
                    "Chapter %s changed while payment %s was charged (transaction=%s)",
                    data.chapter_id,
                    charged_id,
                    result.transaction_id,
                )
                raise ConcurrencyConflictError(
                    context={
                        "chapter_id": str(data.chapter_id),
                        "payment_id": str(charged_id),
                        "transaction_id": result.transaction_id,
                    }
                )
            await db.refresh(payment, attribute_names=["chapter"])
        except ThesisMasterError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error processing payment: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not process the payment. Please try again.")

        logger.info(
            "Payment %s processed: %s (transaction=%s)",
            payment.id,
            payment.status,
            payment.transaction_id,
        )
        return payment


# ── Singleton Instance ────────────────────────────────────────────────────
payment_service = PaymentService()
