"""
ThesisMaster Backend - Chapter Request/Response Schemas
========================================================

What:  Pydantic models for the chapter, attachment, feedback and pricing
       endpoints.
How:   Request models validate shape and field limits (FastAPI answers 422
       on failure); business checks such as negative word counts or
       duplicate chapter numbers happen in the service layer (400/409).
"""

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from thesismaster.domain.enums import AcademicLevel, ChapterStatus, Urgency, WorkType
from thesismaster.schemas.common import Pagination


def _strip_title(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not v:
        raise ValueError("Title must not be blank")
    return v


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class ChapterCreate(BaseModel):
    title: str = Field(max_length=200, description="Chapter title (trimmed)")
    chapter_number: int = Field(ge=1, description="Position in the thesis; unique per owner")
    content: str = Field(default="")
    summary: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    deadline: Optional[datetime] = None
    target_word_count: int = Field(default=2000, description="Planned length in words")
    level: AcademicLevel = AcademicLevel.MASTERS
    work_type: WorkType = WorkType.COURSEWORK
    urgency: Urgency = Urgency.NORMAL

    strip_title = field_validator("title")(_strip_title)


class ChapterUpdate(BaseModel):
    """
    Partial update. Only the fields present in the request body are applied.

    `changes` describes a content edit and is stored on the revision that
    snapshots the previous content. It defaults to "Content updated".
    """
    title: Optional[str] = Field(default=None, max_length=200)
    content: Optional[str] = None
    summary: Optional[str] = Field(default=None, max_length=500)
    notes: Optional[str] = None
    tags: Optional[List[str]] = None
    deadline: Optional[datetime] = None
    status: Optional[ChapterStatus] = None
    target_word_count: Optional[int] = None
    level: Optional[AcademicLevel] = None
    work_type: Optional[WorkType] = None
    urgency: Optional[Urgency] = None
    changes: Optional[str] = Field(default=None, max_length=500)

    strip_title = field_validator("title")(_strip_title)


class FeedbackCreate(BaseModel):
    reviewer: str = Field(min_length=1, max_length=200)
    comment: str = Field(min_length=1)
    rating: Optional[int] = Field(default=None, ge=1, le=5)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class FileInfoResponse(BaseModel):
    original_name: str
    file_name: str = Field(description="Stored name; used in download/delete URLs")
    file_size: int
    file_type: str
    uploaded_at: datetime

    model_config = {"from_attributes": True}


class FeedbackResponse(BaseModel):
    id: uuid.UUID
    reviewer: str
    comment: str
    rating: Optional[int] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class RevisionResponse(BaseModel):
    version: int
    content: str
    changes: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ChapterSummary(BaseModel):
    """Compact chapter representation for list views (no content or history)."""
    id: uuid.UUID
    title: str
    chapter_number: int
    status: str
    summary: Optional[str] = None
    word_count: int
    target_word_count: int
    level: str
    work_type: str
    urgency: str
    estimated_pages: int
    estimated_cost: float
    is_paid: bool
    writer_id: Optional[uuid.UUID] = None
    deadline: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ChapterResponse(ChapterSummary):
    """Full chapter detail including content, pricing and child lists."""
    content: str
    notes: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    pricing: dict = Field(default_factory=dict)
    payment_id: Optional[uuid.UUID] = None
    files: List[FileInfoResponse] = Field(default_factory=list)
    feedback: List[FeedbackResponse] = Field(default_factory=list)
    revisions: List[RevisionResponse] = Field(default_factory=list)


class ChapterListResponse(BaseModel):
    chapters: List[ChapterSummary]
    pagination: Pagination


class PricingQuoteResponse(BaseModel):
    target_word_count: int
    level: str
    work_type: str
    urgency: str
    estimated_pages: int
    estimated_cost: int
    pricing: dict = Field(description="Full price breakdown as stored on chapters")
