"""
ThesisMaster Backend - Writer Schemas
======================================

What:  Pydantic models for /api/writer: status updates, earnings and
       payout requests.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from thesismaster.domain.enums import ChapterStatus
from thesismaster.schemas.chapter import ChapterSummary
from thesismaster.schemas.common import Pagination


class WriterStatusUpdate(BaseModel):
    status: ChapterStatus


class WriterChapterListResponse(BaseModel):
    chapters: List[ChapterSummary]
    pagination: Pagination


class ChapterEarningsItem(BaseModel):
    chapter_id: uuid.UUID
    title: str
    chapter_number: int
    estimated_cost: float
    word_count: int
    completed_at: Optional[datetime] = None
    writer_earnings: int
    is_paid_out: bool
    payout_status: str

    model_config = {"from_attributes": True}


class MonthlyEarningsItem(BaseModel):
    month: str = Field(description="YYYY-MM")
    earnings: int
    chapters: int
    words: int
    avg_per_chapter: float

    model_config = {"from_attributes": True}


class EarningsStats(BaseModel):
    total_earnings: int
    total_chapters: int
    avg_earnings_per_chapter: float
    total_words: int
    avg_words_per_chapter: float


class PendingPayout(BaseModel):
    amount: int
    chapters: int


class EarningsResponse(BaseModel):
    stats: EarningsStats
    monthly: List[MonthlyEarningsItem]
    pending_payout: PendingPayout
    chapters: List[ChapterEarningsItem]
    pagination: Pagination


class AccountDetails(BaseModel):
    phone_number: Optional[str] = Field(default=None, max_length=20)
    account_name: Optional[str] = Field(default=None, max_length=200)


class PayoutRequest(BaseModel):
    amount: float
    payment_method: str = Field(default="mpesa", max_length=50)
    account_details: AccountDetails = Field(default_factory=AccountDetails)
    chapter_ids: Optional[List[uuid.UUID]] = None


class PayoutResponse(BaseModel):
    payout_id: uuid.UUID
    amount: float
    payment_method: str
    status: str
    estimated_processing_time: str
    message: str
