"""
ThesisMaster Backend - Admin Service
=====================================

What:  Platform oversight for admins: every payment and chapter regardless
       of owner, manual payment actions, chapter assignment and platform
       aggregates.
How:   Payment actions are translated into PaymentUpdate and run through
       payment_service.update_payment with no owner scope, so they obey the
       same transition table and chapter side effects as owner updates.
       Chapter actions lock the row and retry on version conflicts.
Who:   routes.admin

Payment actions:
    mark_paid  → completed (transaction id generated when absent)
    refund     → refunded  (reason required; only from completed)
    fail       → failed    (reason required)

Chapter actions:
    assign_writer    paid chapters only; draft → in_progress
    change_status    any chapter status; first completion stamps completed_at
    extend_deadline  new deadline must be in the future
"""

import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from thesismaster.config import settings
from thesismaster.domain.earnings import as_utc, writer_earnings
from thesismaster.domain.enums import ChapterStatus, PaymentStatus
from thesismaster.exceptions import (
    BusinessRuleError,
    DatabaseError,
    NotFoundError,
    ThesisMasterError,
    ValidationError,
)
from thesismaster.models.chapter import Chapter, utcnow
from thesismaster.models.payment import Payment
from thesismaster.schemas.admin import (
    AdminChapterAction,
    AdminChapterActionRequest,
    AdminChapterItem,
    AdminChapterListResponse,
    AdminChapterStatistics,
    AdminPaymentAction,
    AdminPaymentActionRequest,
    PlatformStatsResponse,
)
from thesismaster.schemas.common import Pagination
from thesismaster.schemas.payment import PaymentListResponse, PaymentUpdate
from thesismaster.services.chapter_service import parse_chapter_status
from thesismaster.services.concurrency import retry_on_conflict
from thesismaster.services.payment_service import payment_service

logger = logging.getLogger(__name__)

# Chapters still being worked on; past their deadline they count as overdue
OPEN_STATUSES = frozenset(
    {ChapterStatus.DRAFT.value, ChapterStatus.IN_PROGRESS.value, ChapterStatus.REVISION.value}
)

OVERDUE_FILTER = "overdue"


def _is_overdue(status: str, deadline: Optional[datetime], now: datetime) -> bool:
    deadline = as_utc(deadline)
    return status in OPEN_STATUSES and deadline is not None and deadline < now


def _summarize_chapters(
    rows: List[Tuple[str, bool, Optional[datetime], int, float]],
) -> AdminChapterStatistics:
    now = utcnow()
    by_status: Dict[str, int] = {s.value: 0 for s in ChapterStatus}
    paid = overdue = words = 0
    cost = 0.0
    for status, is_paid, deadline, word_count, estimated_cost in rows:
        by_status[status] = by_status.get(status, 0) + 1
        paid += 1 if is_paid else 0
        overdue += 1 if _is_overdue(status, deadline, now) else 0
        words += word_count
        cost += estimated_cost

    total = len(rows)
    return AdminChapterStatistics(
        total=total,
        by_status=by_status,
        paid=paid,
        unpaid=total - paid,
        overdue=overdue,
        total_estimated_cost=cost,
        avg_word_count=round(words / total, 1) if total else 0.0,
        avg_estimated_cost=round(cost / total, 2) if total else 0.0,
    )


def _payment_update(request: AdminPaymentActionRequest) -> PaymentUpdate:
    if request.action == AdminPaymentAction.MARK_PAID:
        return PaymentUpdate(
            status=PaymentStatus.COMPLETED.value, transaction_id=request.transaction_id
        )

    if not request.reason or not request.reason.strip():
        raise ValidationError(
            f"A reason is required to {request.action.value} a payment", field="reason"
        )
    if request.action == AdminPaymentAction.REFUND:
        return PaymentUpdate(
            status=PaymentStatus.REFUNDED.value,
            refund_amount=request.refund_amount,
            refund_reason=request.reason.strip(),
        )
    return PaymentUpdate(status=PaymentStatus.FAILED.value, failure_reason=request.reason.strip())


class AdminService:

    # ── Payments ──────────────────────────────────────────────────────────

    async def list_payments(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
    ) -> PaymentListResponse:
        return await payment_service.list_payments(db, None, page=page, limit=limit, status=status)

    async def apply_payment_action(
        self, db: AsyncSession, admin_id: UUID, payment_id: UUID, request: AdminPaymentActionRequest
    ) -> Payment:
        """
        Raises:
            NotFoundError:     Unknown payment.
            ValidationError:   Missing reason, refund amount out of range.
            BusinessRuleError: Already completed, or an illegal transition.
        """
        update = _payment_update(request)

        if request.action == AdminPaymentAction.MARK_PAID:
            current = await payment_service.get_payment(db, None, payment_id)
            if current.status == PaymentStatus.COMPLETED.value:
                raise BusinessRuleError(
                    "Payment is already completed",
                    rule="payment_already_completed",
                    context={"payment_id": str(payment_id)},
                )

        payment = await payment_service.update_payment(db, None, payment_id, update)
        logger.info(
            "Admin %s applied %s to payment %s (now %s)",
            admin_id,
            request.action.value,
            payment_id,
            payment.status,
        )
        return payment

    # ── Chapters ──────────────────────────────────────────────────────────

    async def list_chapters(
        self,
        db: AsyncSession,
        page: int = 1,
        limit: int = 20,
        status: Optional[str] = None,
        is_paid: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> AdminChapterListResponse:
        """
        Every chapter, most recently updated first.

        status may also be "overdue": open chapters whose deadline has passed.
        """
        now = utcnow()
        conditions = []
        if status == OVERDUE_FILTER:
            conditions += [
                Chapter.status.in_(sorted(OPEN_STATUSES)),
                Chapter.deadline.is_not(None),
                Chapter.deadline < now,
            ]
        elif status is not None:
            conditions.append(Chapter.status == parse_chapter_status(status).value)
        if is_paid is not None:
            conditions.append(Chapter.is_paid.is_(is_paid))
        if search:
            conditions.append(Chapter.title.ilike(f"%{search.strip()}%"))

        try:
            total = await db.scalar(select(func.count()).select_from(Chapter).where(*conditions))
            chapters = (
                await db.execute(
                    select(Chapter)
                    .where(*conditions)
                    .order_by(Chapter.updated_at.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                )
            ).scalars().all()
            statistics = await self._chapter_statistics(db)
        except SQLAlchemyError as e:
            logger.error("Database error listing chapters for admin: %s", str(e))
            raise DatabaseError(message="Could not retrieve chapters. Please try again.")

        items = []
        for chapter in chapters:
            item = AdminChapterItem.model_validate(chapter)
            item.is_overdue = _is_overdue(chapter.status, chapter.deadline, now)
            items.append(item)

        return AdminChapterListResponse(
            chapters=items,
            pagination=Pagination.build(page, limit, total or 0),
            statistics=statistics,
        )

    async def _chapter_statistics(self, db: AsyncSession) -> AdminChapterStatistics:
        rows = (
            await db.execute(
                select(
                    Chapter.status,
                    Chapter.is_paid,
                    Chapter.deadline,
                    Chapter.word_count,
                    Chapter.estimated_cost,
                )
            )
        ).all()
        return _summarize_chapters([tuple(r) for r in rows])

    async def apply_chapter_action(
        self, db: AsyncSession, admin_id: UUID, chapter_id: UUID, request: AdminChapterActionRequest
    ) -> Chapter:
        """
        Raises:
            NotFoundError:     Unknown chapter.
            ValidationError:   Missing or invalid action field.
            BusinessRuleError: Assigning a writer to an unpaid chapter.
        """
        action = request.action
        new_status: Optional[ChapterStatus] = None
        deadline: Optional[datetime] = None
        if action == AdminChapterAction.ASSIGN_WRITER and request.writer_id is None:
            raise ValidationError("writer_id is required to assign a writer", field="writer_id")
        if action == AdminChapterAction.CHANGE_STATUS:
            if request.status is None:
                raise ValidationError("status is required to change status", field="status")
            new_status = parse_chapter_status(request.status)
        if action == AdminChapterAction.EXTEND_DEADLINE:
            deadline = as_utc(request.deadline)
            if deadline is None or deadline <= utcnow():
                raise ValidationError("Deadline must be in the future", field="deadline")

        async def unit() -> Chapter:
            chapter = (
                await db.execute(
                    select(Chapter)
                    .where(Chapter.id == chapter_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
            ).scalar_one_or_none()
            if chapter is None:
                raise NotFoundError(resource="Chapter", resource_id=str(chapter_id))

            now = utcnow()
            if action == AdminChapterAction.ASSIGN_WRITER:
                if not chapter.is_paid:
                    raise BusinessRuleError(
                        "Chapter must be paid for before a writer can be assigned",
                        rule="chapter_not_paid",
                        context={"chapter_id": str(chapter_id)},
                    )
                chapter.writer_id = request.writer_id
                if chapter.status == ChapterStatus.DRAFT.value:
                    chapter.status = ChapterStatus.IN_PROGRESS.value
            elif action == AdminChapterAction.CHANGE_STATUS:
                if new_status == ChapterStatus.COMPLETED and chapter.completed_at is None:
                    chapter.completed_at = now
                chapter.status = new_status.value
            else:
                chapter.deadline = deadline
            chapter.updated_at = now
            await db.flush()
            return chapter

        try:
            chapter = await retry_on_conflict(db, unit, f"admin {action.value}")
        except ThesisMasterError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error on admin %s for %s: %s", action.value, chapter_id, str(e))
            raise DatabaseError(message="Could not update the chapter. Please try again.")

        logger.info("Admin %s applied %s to chapter %s", admin_id, action.value, chapter_id)
        return chapter

    # ── Platform ──────────────────────────────────────────────────────────

    async def platform_stats(self, db: AsyncSession) -> PlatformStatsResponse:
        try:
            students = await db.scalar(select(func.count(func.distinct(Chapter.user_id))))
            writers = await db.scalar(
                select(func.count(func.distinct(Chapter.writer_id))).where(
                    Chapter.writer_id.is_not(None)
                )
            )
            chapters = await self._chapter_statistics(db)
            payments = await payment_service.totals_by_status(db, None)
            refunded = await db.scalar(
                select(func.coalesce(func.sum(Payment.refund_amount), 0)).where(
                    Payment.status == PaymentStatus.REFUNDED.value
                )
            )
            completed_costs = (
                await db.execute(
                    select(Chapter.estimated_cost).where(
                        Chapter.status == ChapterStatus.COMPLETED.value,
                        Chapter.writer_id.is_not(None),
                    )
                )
            ).scalars().all()
        except SQLAlchemyError as e:
            logger.error("Database error building platform stats: %s", str(e))
            raise DatabaseError(message="Could not load platform statistics. Please try again.")

        completed = payments.get(PaymentStatus.COMPLETED.value)
        revenue = completed.amount if completed else 0.0
        owed = sum(writer_earnings(cost, settings.writer_share) for cost in completed_costs)

        return PlatformStatsResponse(
            students=students or 0,
            active_writers=writers or 0,
            chapters=chapters,
            payments_by_status=payments,
            revenue=revenue,
            refunded=float(refunded or 0),
            writer_earnings_owed=owed,
            platform_margin=revenue - owed,
        )


# ── Singleton Instance ────────────────────────────────────────────────────
admin_service = AdminService()
