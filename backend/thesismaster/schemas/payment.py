"""
ThesisMaster Backend - Payment Request/Response Schemas
========================================================

What:  Pydantic models for /api/payments.
How:   PaymentUpdate.status is a plain string so that unknown statuses reach
       the state machine and come back as a 400 with the allowed values,
       instead of a schema-level 422.
"""

import uuid
from datetime import datetime
from typing import Dict, List, Optional

from pydantic import AliasChoices, BaseModel, Field

from thesismaster.schemas.common import Pagination


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class PaymentCreate(BaseModel):
    """
    Creates a pending payment.

    amount defaults to the chapter's estimated cost when chapter_id is given;
    without a chapter it is required.
    """
    chapter_id: Optional[uuid.UUID] = None
    amount: Optional[float] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    payment_method: str = Field(min_length=1, max_length=50)
    description: str = Field(min_length=1, max_length=500)
    type: str = Field(default="chapter_payment", max_length=50)
    metadata: Dict = Field(default_factory=dict)


class PaymentProcessRequest(BaseModel):
    chapter_id: uuid.UUID
    phone_number: Optional[str] = Field(default=None, max_length=20)
    payment_method: str = Field(default="mpesa", max_length=50)
    amount: Optional[float] = Field(default=None, ge=0)


class PaymentUpdate(BaseModel):
    status: Optional[str] = None
    transaction_id: Optional[str] = Field(default=None, max_length=64)
    failure_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_reason: Optional[str] = None


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class PaymentChapterInfo(BaseModel):
    id: uuid.UUID
    title: str
    chapter_number: int
    is_paid: bool

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    id: uuid.UUID
    chapter_id: Optional[uuid.UUID] = None
    amount: float
    currency: str
    status: str
    payment_method: str
    description: str
    type: str
    metadata: Dict = Field(
        default_factory=dict,
        validation_alias=AliasChoices("payment_metadata", "metadata"),
    )
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    chapter: Optional[PaymentChapterInfo] = None

    model_config = {"from_attributes": True}


class PaymentTotal(BaseModel):
    count: int
    amount: float


class PaymentListResponse(BaseModel):
    payments: List[PaymentResponse]
    pagination: Pagination
    totals: Dict[str, PaymentTotal] = Field(description="Count and amount per status")


class PaymentProcessResponse(BaseModel):
    success: bool
    message: str
    payment: PaymentResponse
