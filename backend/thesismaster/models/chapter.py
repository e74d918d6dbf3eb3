"""
ThesisMaster Backend - Chapter SQLAlchemy Models
=================================================

What:  ORM models for the `chapters` table and its ordered child tables
       (`chapter_files`, `chapter_feedback`, `chapter_revisions`).
How:   Inherits from the shared DeclarativeBase; Alembic migration 001
       mirrors these definitions.
Who:   chapter_service, payment_service, writer_service, dashboard_service.

Table Design:
    - chapter_number is unique per owner (uq_chapters_user_number)
    - pricing holds the JSON price quote; estimated_pages/estimated_cost
      copy its page count and total for querying and aggregation
    - payment_id is a plain UUID column (no FK) pointing at the completed
      payment; payments.chapter_id carries the real foreign key
    - version_id drives SQLAlchemy's optimistic concurrency check: every
      UPDATE includes "WHERE version_id = :old" and increments it
"""

import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from thesismaster.database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Chapter(Base):
    """
    A thesis chapter owned by a student and optionally assigned to a writer.

    Lifecycle:
        1. Created by the owner (status = 'draft', priced from its inputs)
        2. Paid through a Payment (is_paid = True, draft → in_progress)
        3. Accepted by a writer (writer_id set once, never overwritten)
        4. Completed by the writer (completed_at stamped on first completion)
        5. Deleted by the owner: attachments removed, payments keep NULL chapter_id
    """

    __tablename__ = "chapters"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # ── Ownership ─────────────────────────────────────────────────────────
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    writer_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True, index=True)

    # ── Content ───────────────────────────────────────────────────────────
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    summary: Mapped[str | None] = mapped_column(String(500), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    deadline: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # draft | in_progress | completed | revision | approved
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    chapter_number: Mapped[int] = mapped_column(Integer, nullable=False)
    word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    target_word_count: Mapped[int] = mapped_column(Integer, nullable=False, default=2000)

    # ── Pricing ───────────────────────────────────────────────────────────
    level: Mapped[str] = mapped_column(String(20), nullable=False, default="masters")
    work_type: Mapped[str] = mapped_column(String(20), nullable=False, default="coursework")
    urgency: Mapped[str] = mapped_column(String(20), nullable=False, default="normal")
    estimated_pages: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    estimated_cost: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    pricing: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    # ── Payment Link ──────────────────────────────────────────────────────
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    payment_id: Mapped[uuid.UUID | None] = mapped_column(Uuid, nullable=True)

    # ── Timestamps ────────────────────────────────────────────────────────
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # ── Children ──────────────────────────────────────────────────────────
    files: Mapped[List["ChapterFile"]] = relationship(
        back_populates="chapter",
        cascade="all, delete-orphan",
        order_by="ChapterFile.uploaded_at",
        lazy="selectin",
    )
    feedback: Mapped[List["ChapterFeedback"]] = relationship(
        back_populates="chapter",
        cascade="all, delete-orphan",
        order_by="ChapterFeedback.created_at",
        lazy="selectin",
    )
    revisions: Mapped[List["ChapterRevision"]] = relationship(
        back_populates="chapter",
        cascade="all, delete-orphan",
        order_by="ChapterRevision.version",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint("user_id", "chapter_number", name="uq_chapters_user_number"),
        Index("idx_chapters_status_completed_at", "status", "completed_at"),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Chapter(id={self.id}, number={self.chapter_number}, "
            f"status='{self.status}', is_paid={self.is_paid})>"
        )


class ChapterFile(Base):
    """An uploaded attachment. file_path is relative to STORAGE_ROOT."""

    __tablename__ = "chapter_files"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    chapter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False, index=True
    )
    original_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    file_path: Mapped[str] = mapped_column(String(512), nullable=False)
    file_size: Mapped[int] = mapped_column(Integer, nullable=False)
    file_type: Mapped[str] = mapped_column(String(100), nullable=False)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    chapter: Mapped[Chapter] = relationship(back_populates="files")


class ChapterFeedback(Base):
    __tablename__ = "chapter_feedback"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    chapter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reviewer: Mapped[str] = mapped_column(String(200), nullable=False)
    comment: Mapped[str] = mapped_column(Text, nullable=False)
    rating: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    chapter: Mapped[Chapter] = relationship(back_populates="feedback")


class ChapterRevision(Base):
    """Snapshot of the content a chapter had before an edit replaced it."""

    __tablename__ = "chapter_revisions"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    chapter_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("chapters.id", ondelete="CASCADE"), nullable=False, index=True
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    changes: Mapped[str] = mapped_column(String(500), nullable=False, default="Content updated")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    chapter: Mapped[Chapter] = relationship(back_populates="revisions")

    __table_args__ = (
        UniqueConstraint("chapter_id", "version", name="uq_chapter_revisions_version"),
    )
