"""
ThesisMaster Backend - Writer Service
======================================

What:  Writer-side workflow: browse available chapters, claim one, move it
       through in_progress/revision/completed, read earnings, request payouts.
How:   Claiming is a single conditional UPDATE (... WHERE writer_id IS NULL),
       so two writers can never both own a chapter. Earnings are computed by
       domain.earnings from the writer's completed chapters.
Who:   routes.writer

Payouts:
    There is no payout ledger yet. A payout request is validated against the
    writer's pending earnings and acknowledged; nothing is persisted, and
    every completed chapter stays "pending".
"""

import logging
import uuid
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from thesismaster.config import settings
from thesismaster.domain.earnings import (
    EarningsRecord,
    as_utc,
    summarize_earnings,
    writer_earnings,
)
from thesismaster.domain.enums import ChapterStatus
from thesismaster.exceptions import (
    BusinessRuleError,
    DatabaseError,
    NotFoundError,
    ThesisMasterError,
    ValidationError,
)
from thesismaster.models.chapter import Chapter, utcnow
from thesismaster.schemas.chapter import ChapterSummary
from thesismaster.schemas.common import Pagination
from thesismaster.schemas.earnings import (
    ChapterEarningsItem,
    EarningsResponse,
    EarningsStats,
    MonthlyEarningsItem,
    PayoutRequest,
    PayoutResponse,
    PendingPayout,
    WriterChapterListResponse,
)
from thesismaster.services.chapter_service import parse_chapter_status
from thesismaster.services.concurrency import retry_on_conflict

logger = logging.getLogger(__name__)

# Statuses a writer may set; approval belongs to the chapter owner
WRITER_STATUSES = frozenset(
    {ChapterStatus.IN_PROGRESS, ChapterStatus.REVISION, ChapterStatus.COMPLETED}
)

PAYOUT_PROCESSING_TIME = "1-3 business days"


def _record(chapter: Chapter) -> EarningsRecord:
    return EarningsRecord(
        chapter_id=chapter.id,
        title=chapter.title,
        chapter_number=chapter.chapter_number,
        estimated_cost=chapter.estimated_cost,
        word_count=chapter.word_count,
        completed_at=chapter.completed_at,
    )


class WriterService:

    async def list_chapters(
        self,
        db: AsyncSession,
        writer_id: UUID,
        scope: str = "available",
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
    ) -> WriterChapterListResponse:
        """
        scope="available": paid chapters nobody has claimed yet.
        scope="mine":      chapters assigned to this writer.
        """
        if scope == "available":
            conditions = [Chapter.is_paid.is_(True), Chapter.writer_id.is_(None)]
        elif scope == "mine":
            conditions = [Chapter.writer_id == writer_id]
        else:
            raise ValidationError(
                f"Invalid scope '{scope}'. Allowed: available, mine", field="scope"
            )

        status_filter = parse_chapter_status(status)
        if status_filter is not None:
            conditions.append(Chapter.status == status_filter.value)

        try:
            total = await db.scalar(select(func.count()).select_from(Chapter).where(*conditions))
            result = await db.execute(
                select(Chapter)
                .where(*conditions)
                .order_by(Chapter.deadline.is_(None), Chapter.deadline.asc(), Chapter.created_at.asc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            chapters = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Database error listing writer chapters: %s", str(e))
            raise DatabaseError(message="Could not retrieve chapters. Please try again.")

        return WriterChapterListResponse(
            chapters=[ChapterSummary.model_validate(c) for c in chapters],
            pagination=Pagination.build(page, limit, total or 0),
        )

    async def accept_chapter(self, db: AsyncSession, writer_id: UUID, chapter_id: UUID) -> Chapter:
        """
        Claims a paid, unassigned chapter for the writer.

        Accepting a chapter the writer already holds is a no-op.

        Raises:
            NotFoundError:     No such chapter.
            BusinessRuleError: Not paid yet, or claimed by another writer.
        """
        try:
            result = await db.execute(
                update(Chapter)
                .where(
                    Chapter.id == chapter_id,
                    Chapter.writer_id.is_(None),
                    Chapter.is_paid.is_(True),
                )
                .values(
                    writer_id=writer_id,
                    version_id=Chapter.version_id + 1,
                    updated_at=utcnow(),
                )
                .execution_options(synchronize_session=False)
            )
            chapter = (
                await db.execute(
                    select(Chapter)
                    .where(Chapter.id == chapter_id)
                    .execution_options(populate_existing=True)
                )
            ).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error("Database error accepting chapter %s: %s", chapter_id, str(e))
            raise DatabaseError(message="Could not accept the chapter. Please try again.")

        if chapter is None:
            raise NotFoundError(resource="Chapter", resource_id=str(chapter_id))

        if result.rowcount == 0 and chapter.writer_id != writer_id:
            if not chapter.is_paid:
                raise BusinessRuleError(
                    "Chapter must be paid for before a writer can accept it",
                    rule="chapter_not_paid",
                    context={"chapter_id": str(chapter_id)},
                )
            raise BusinessRuleError(
                "Chapter has already been accepted by another writer",
                rule="chapter_already_assigned",
                context={"chapter_id": str(chapter_id)},
            )

        logger.info("Chapter %s accepted by writer %s", chapter_id, writer_id)
        return chapter

    async def update_status(
        self, db: AsyncSession, writer_id: UUID, chapter_id: UUID, status: ChapterStatus
    ) -> Chapter:
        """
        Sets the status of a chapter assigned to the writer. The first move to
        completed stamps completed_at, which is what earnings are dated by.
        """
        if status not in WRITER_STATUSES:
            allowed = ", ".join(sorted(s.value for s in WRITER_STATUSES))
            raise ValidationError(
                f"Writers cannot set status '{status.value}'. Allowed: {allowed}",
                field="status",
            )

        async def unit() -> Chapter:
            chapter = (
                await db.execute(
                    select(Chapter)
                    .where(Chapter.id == chapter_id, Chapter.writer_id == writer_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
            ).scalar_one_or_none()
            if chapter is None:
                raise NotFoundError(resource="Chapter", resource_id=str(chapter_id))

            now = utcnow()
            if status == ChapterStatus.COMPLETED and chapter.completed_at is None:
                chapter.completed_at = now
            chapter.status = status.value
            chapter.updated_at = now
            await db.flush()
            return chapter

        try:
            chapter = await retry_on_conflict(db, unit, "writer status update")
        except ThesisMasterError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error updating chapter %s status: %s", chapter_id, str(e))
            raise DatabaseError(message="Could not update the chapter. Please try again.")

        logger.info("Writer %s set chapter %s to %s", writer_id, chapter_id, status.value)
        return chapter

    async def _completed_chapters(
        self, db: AsyncSession, writer_id: UUID, chapter_ids: Optional[List[UUID]] = None
    ) -> List[Chapter]:
        stmt = select(Chapter).where(
            Chapter.writer_id == writer_id,
            Chapter.status == ChapterStatus.COMPLETED.value,
        )
        if chapter_ids:
            stmt = stmt.where(Chapter.id.in_(chapter_ids))
        stmt = stmt.order_by(Chapter.completed_at.desc())
        try:
            return list((await db.execute(stmt)).scalars().all())
        except SQLAlchemyError as e:
            logger.error("Database error loading completed chapters: %s", str(e))
            raise DatabaseError(message="Could not retrieve earnings. Please try again.")

    async def get_earnings(
        self,
        db: AsyncSession,
        writer_id: UUID,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        page: int = 1,
        limit: int = 10,
    ) -> EarningsResponse:
        """Earnings summary, monthly series, pending payout and a page of chapters."""
        # query bounds may arrive with or without an offset; naive means UTC
        start, end = as_utc(start), as_utc(end)
        if start is not None and end is not None and start > end:
            raise ValidationError("start must not be after end", field="start")

        chapters = await self._completed_chapters(db, writer_id)
        summary = summarize_earnings(
            [_record(c) for c in chapters], start=start, end=end, share=settings.writer_share
        )

        offset = (page - 1) * limit
        return EarningsResponse(
            stats=EarningsStats(
                total_earnings=summary.total_earnings,
                total_chapters=summary.total_chapters,
                avg_earnings_per_chapter=summary.avg_earnings_per_chapter,
                total_words=summary.total_words,
                avg_words_per_chapter=summary.avg_words_per_chapter,
            ),
            monthly=[MonthlyEarningsItem.model_validate(m) for m in summary.monthly],
            pending_payout=PendingPayout(
                amount=summary.pending_payout_amount,
                chapters=summary.pending_payout_chapters,
            ),
            chapters=[
                ChapterEarningsItem.model_validate(c)
                for c in summary.chapters[offset:offset + limit]
            ],
            pagination=Pagination.build(page, limit, len(summary.chapters)),
        )

    async def request_payout(
        self, db: AsyncSession, writer_id: UUID, data: PayoutRequest
    ) -> PayoutResponse:
        """
        Validates a payout request against the writer's pending earnings.

        Raises:
            ValidationError:   Non-positive amount or missing phone number.
            BusinessRuleError: Amount exceeds the available earnings.
        """
        if data.amount <= 0:
            raise ValidationError("Payout amount must be greater than zero", field="amount")
        if not (data.account_details.phone_number or "").strip():
            raise ValidationError(
                "Account phone number is required", field="account_details.phone_number"
            )

        chapters = await self._completed_chapters(db, writer_id, data.chapter_ids)
        available = sum(writer_earnings(c.estimated_cost, settings.writer_share) for c in chapters)

        if data.amount > available:
            raise BusinessRuleError(
                "Requested amount exceeds available earnings",
                rule="insufficient_earnings",
                context={"requested": data.amount, "available": available},
            )

        payout_id = uuid.uuid4()
        logger.info(
            "Payout requested: %s (writer=%s, amount=%.2f of %d available, method=%s)",
            payout_id,
            writer_id,
            data.amount,
            available,
            data.payment_method,
        )
        return PayoutResponse(
            payout_id=payout_id,
            amount=data.amount,
            payment_method=data.payment_method,
            status="pending",
            estimated_processing_time=PAYOUT_PROCESSING_TIME,
            message="Payout request submitted successfully",
        )


# ── Singleton Instance ────────────────────────────────────────────────────
writer_service = WriterService()
