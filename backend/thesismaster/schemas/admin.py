"""
ThesisMaster Backend - Admin Request/Response Schemas
======================================================

What:  Pydantic models for /api/admin.
How:   Payment and chapter actions are one request model each, keyed by
       `action`; the fields an action needs are checked by the admin service
       so a missing one comes back as a 400 naming the field.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from thesismaster.schemas.chapter import ChapterSummary
from thesismaster.schemas.common import Pagination
from thesismaster.schemas.payment import PaymentResponse, PaymentTotal


class AdminPaymentAction(str, Enum):
    MARK_PAID = "mark_paid"
    REFUND = "refund"
    FAIL = "fail"


class AdminChapterAction(str, Enum):
    ASSIGN_WRITER = "assign_writer"
    CHANGE_STATUS = "change_status"
    EXTEND_DEADLINE = "extend_deadline"


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class AdminPaymentActionRequest(BaseModel):
    """
    mark_paid: completes the payment; transaction_id is generated if omitted.
    refund:    requires reason; refund_amount defaults to the full amount.
    fail:      requires reason.
    """
    action: AdminPaymentAction
    transaction_id: Optional[str] = Field(default=None, max_length=64)
    reason: Optional[str] = Field(default=None, max_length=500)
    refund_amount: Optional[float] = None


class AdminChapterActionRequest(BaseModel):
    action: AdminChapterAction
    writer_id: Optional[uuid.UUID] = None
    status: Optional[str] = None
    deadline: Optional[datetime] = None


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class AdminChapterItem(ChapterSummary):
    user_id: uuid.UUID
    payment_id: Optional[uuid.UUID] = None
    is_overdue: bool = False


class AdminChapterStatistics(BaseModel):
    total: int
    by_status: Dict[str, int]
    paid: int
    unpaid: int
    overdue: int
    total_estimated_cost: float
    avg_word_count: float
    avg_estimated_cost: float


class AdminChapterListResponse(BaseModel):
    chapters: List[AdminChapterItem]
    pagination: Pagination
    statistics: AdminChapterStatistics


class PlatformStatsResponse(BaseModel):
    students: int = Field(description="Distinct chapter owners")
    active_writers: int = Field(description="Distinct writers holding at least one chapter")
    chapters: AdminChapterStatistics
    payments_by_status: Dict[str, PaymentTotal]
    revenue: float = Field(description="Sum of completed payment amounts")
    refunded: float = Field(description="Sum of refunded amounts")
    writer_earnings_owed: float = Field(
        description="Writer share of completed chapters not yet paid out"
    )
    platform_margin: float = Field(description="Revenue minus writer earnings owed")


class AdminPaymentActionResponse(BaseModel):
    message: str
    payment: PaymentResponse
