"""
ThesisMaster Backend - Writer Earnings Aggregator
==================================================

What:  Summarizes a writer's completed chapters into totals, averages, a
       monthly series and the pending payout.
How:   Each completed chapter earns round_half_up(estimated_cost × share).
       The optional [start, end] range filters on completed_at and applies
       to the totals and the monthly series. The pending payout covers every
       record not yet paid out, regardless of the range.
Who:   services.writer_service
"""

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import UUID

DEFAULT_WRITER_SHARE = 0.70


@dataclass(frozen=True)
class EarningsRecord:
    """One completed chapter as seen by the aggregator."""

    chapter_id: UUID
    title: str
    chapter_number: int
    estimated_cost: float
    word_count: int
    completed_at: Optional[datetime]
    is_paid_out: bool = False


@dataclass(frozen=True)
class ChapterEarnings:
    chapter_id: UUID
    title: str
    chapter_number: int
    estimated_cost: float
    word_count: int
    completed_at: Optional[datetime]
    writer_earnings: int
    is_paid_out: bool
    payout_status: str


@dataclass(frozen=True)
class MonthlyEarnings:
    month: str
    earnings: int
    chapters: int
    words: int
    avg_per_chapter: float


@dataclass
class EarningsSummary:
    total_earnings: int = 0
    total_chapters: int = 0
    total_words: int = 0
    avg_earnings_per_chapter: float = 0.0
    avg_words_per_chapter: float = 0.0
    monthly: List[MonthlyEarnings] = field(default_factory=list)
    pending_payout_amount: int = 0
    pending_payout_chapters: int = 0
    chapters: List[ChapterEarnings] = field(default_factory=list)


def writer_earnings(estimated_cost: float, share: float = DEFAULT_WRITER_SHARE) -> int:
    """Writer's cut of a chapter price, rounded half-up to a whole unit."""
    amount = Decimal(str(estimated_cost or 0)) * Decimal(str(share))
    return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; they are stored as UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _in_range(
    completed_at: Optional[datetime], start: Optional[datetime], end: Optional[datetime]
) -> bool:
    if start is None and end is None:
        return True
    completed_at, start, end = as_utc(completed_at), as_utc(start), as_utc(end)
    if completed_at is None:
        return False
    if start is not None and completed_at < start:
        return False
    if end is not None and completed_at > end:
        return False
    return True


def _average(total: float, count: int) -> float:
    return round(total / count, 2) if count else 0.0


def summarize_earnings(
    records: Iterable[EarningsRecord],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    share: float = DEFAULT_WRITER_SHARE,
) -> EarningsSummary:
    """
    Aggregates completed-chapter records for one writer.

    An empty input yields an all-zero summary with empty lists.
    """
    records = list(records)
    summary = EarningsSummary()

    # (year, month) -> [earnings, chapters, words]
    buckets: Dict[Tuple[int, int], List[int]] = defaultdict(lambda: [0, 0, 0])

    for record in records:
        earned = writer_earnings(record.estimated_cost, share)

        if not record.is_paid_out:
            summary.pending_payout_amount += earned
            summary.pending_payout_chapters += 1

        if not _in_range(record.completed_at, start, end):
            continue

        summary.total_earnings += earned
        summary.total_chapters += 1
        summary.total_words += record.word_count or 0
        summary.chapters.append(
            ChapterEarnings(
                chapter_id=record.chapter_id,
                title=record.title,
                chapter_number=record.chapter_number,
                estimated_cost=record.estimated_cost,
                word_count=record.word_count,
                completed_at=record.completed_at,
                writer_earnings=earned,
                is_paid_out=record.is_paid_out,
                payout_status="paid" if record.is_paid_out else "pending",
            )
        )

        if record.completed_at is not None:
            bucket = buckets[(record.completed_at.year, record.completed_at.month)]
            bucket[0] += earned
            bucket[1] += 1
            bucket[2] += record.word_count or 0

    summary.avg_earnings_per_chapter = _average(summary.total_earnings, summary.total_chapters)
    summary.avg_words_per_chapter = _average(summary.total_words, summary.total_chapters)

    summary.monthly = [
        MonthlyEarnings(
            month=f"{year:04d}-{month:02d}",
            earnings=earned,
            chapters=count,
            words=words,
            avg_per_chapter=_average(earned, count),
        )
        for (year, month), (earned, count, words) in sorted(buckets.items())
    ]

    return summary
