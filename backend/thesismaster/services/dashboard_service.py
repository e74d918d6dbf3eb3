"""
ThesisMaster Backend - Student Dashboard Aggregates
====================================================

What:  Read-only statistics for GET /api/dashboard/stats: chapter counts and
       progress per status, payment totals, writing streak, recent chapters.
How:   One column-only chapter query aggregated in Python, plus the payment
       per-status totals shared with the payments list.
"""

import logging
from collections import defaultdict
from datetime import timedelta
from typing import Dict
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from thesismaster.domain.earnings import as_utc
from thesismaster.domain.enums import ChapterStatus, PaymentStatus
from thesismaster.exceptions import DatabaseError
from thesismaster.models.chapter import Chapter, utcnow
from thesismaster.schemas.chapter import ChapterSummary
from thesismaster.schemas.dashboard import DashboardStatsResponse, StatusBreakdown
from thesismaster.services.payment_service import payment_service

logger = logging.getLogger(__name__)

RECENT_CHAPTERS = 5
STREAK_WINDOW_DAYS = 30
WORDS_PER_HOUR = 250

FINISHED_STATUSES = {ChapterStatus.COMPLETED.value, ChapterStatus.APPROVED.value}


def _progress(words: int, target: int) -> float:
    return round(words / target * 100, 1) if target else 0.0


class DashboardService:

    async def get_stats(self, db: AsyncSession, owner_id: UUID) -> DashboardStatsResponse:
        try:
            rows = (
                await db.execute(
                    select(
                        Chapter.status,
                        Chapter.word_count,
                        Chapter.target_word_count,
                        Chapter.updated_at,
                    ).where(Chapter.user_id == owner_id)
                )
            ).all()
            recent = (
                await db.execute(
                    select(Chapter)
                    .where(Chapter.user_id == owner_id)
                    .order_by(Chapter.updated_at.desc())
                    .limit(RECENT_CHAPTERS)
                )
            ).scalars().all()
            payments = await payment_service.totals_by_status(db, owner_id)
        except SQLAlchemyError as e:
            logger.error("Database error building dashboard for %s: %s", owner_id, str(e))
            raise DatabaseError(message="Could not load dashboard statistics. Please try again.")

        # status -> [count, words, summed progress]
        per_status: Dict[str, list] = defaultdict(lambda: [0, 0, 0.0])
        total_words = 0
        total_target = 0
        active_days = set()
        window_start = utcnow() - timedelta(days=STREAK_WINDOW_DAYS)

        for status, words, target, updated_at in rows:
            bucket = per_status[status]
            bucket[0] += 1
            bucket[1] += words
            bucket[2] += _progress(words, target)
            total_words += words
            total_target += target
            updated_at = as_utc(updated_at)
            if updated_at is not None and updated_at >= window_start:
                active_days.add(updated_at.date())

        completed_total = payments.get(PaymentStatus.COMPLETED.value)

        return DashboardStatsResponse(
            total_chapters=len(rows),
            completed_chapters=sum(1 for r in rows if r[0] in FINISHED_STATUSES),
            total_words=total_words,
            total_target_words=total_target,
            overall_progress=_progress(total_words, total_target),
            writing_streak=len(active_days),
            hours_spent=round(total_words / WORDS_PER_HOUR, 1),
            chapters_by_status={
                status: StatusBreakdown(
                    count=count, words=words, avg_progress=round(progress / count, 1)
                )
                for status, (count, words, progress) in per_status.items()
            },
            payments_by_status=payments,
            total_paid=completed_total.amount if completed_total else 0.0,
            recent_chapters=[ChapterSummary.model_validate(c) for c in recent],
        )


# ── Singleton Instance ────────────────────────────────────────────────────
dashboard_service = DashboardService()
