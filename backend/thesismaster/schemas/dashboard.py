"""Response schema for GET /api/dashboard/stats."""

from typing import Dict, List

from pydantic import BaseModel, Field

from thesismaster.schemas.chapter import ChapterSummary
from thesismaster.schemas.payment import PaymentTotal


class StatusBreakdown(BaseModel):
    count: int
    words: int
    avg_progress: float = Field(description="Mean word_count / target_word_count, in percent")


class DashboardStatsResponse(BaseModel):
    total_chapters: int
    completed_chapters: int
    total_words: int
    total_target_words: int
    overall_progress: float = Field(description="Percent of the summed target word count written")
    writing_streak: int = Field(description="Distinct days with chapter updates in the last 30 days")
    hours_spent: float = Field(description="Estimated at 250 words per hour")
    chapters_by_status: Dict[str, StatusBreakdown]
    payments_by_status: Dict[str, PaymentTotal]
    total_paid: float
    recent_chapters: List[ChapterSummary]
