"""
ThesisMaster Backend - Payment SQLAlchemy Model
================================================

What:  ORM model for the `payments` table.
Who:   payment_service (CRUD + transitions), dashboard_service (sums).

Invariants enforced here:
    - transaction_id is unique once set
    - chapter_id becomes NULL when the chapter is deleted
    - version_id is the optimistic concurrency counter
Status rules live in domain.payment_state, not here.
"""

import uuid
from datetime import datetime

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from thesismaster.database import Base
from thesismaster.models.chapter import Chapter, utcnow


class Payment(Base):
    """
    A payment a student makes for one chapter.

    Lifecycle:
        pending → processing → completed → refunded
                ↘ failed     ↗ failed
        Only pending and failed payments may be deleted.
    """

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    chapter_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("chapters.id", ondelete="SET NULL"), nullable=True, index=True
    )

    amount: Mapped[float] = mapped_column(Float, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="KSH")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    payment_method: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default="chapter_payment")

    # "metadata" is reserved on declarative classes, so the attribute is renamed
    payment_metadata: Mapped[dict] = mapped_column("metadata", JSON, nullable=False, default=dict)

    transaction_id: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[float | None] = mapped_column(Float, nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow
    )

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    chapter: Mapped[Chapter | None] = relationship(lazy="selectin")

    __table_args__ = (
        Index("idx_payments_user_created_at", "user_id", "created_at"),
    )
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, status='{self.status}', "
            f"amount={self.amount} {self.currency})>"
        )
