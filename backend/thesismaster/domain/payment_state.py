"""
ThesisMaster Backend - Payment State Machine
=============================================

What:  Decides how a Payment and its linked Chapter change together when the
       payment moves between statuses, or is deleted.
How:   Pure functions over small frozen value structs. The caller (the
       payment service) copies ORM rows into PaymentView/ChapterLink, calls
       apply_transition(), then writes the returned TransitionOutcome back.
Who:   services.payment_service

Allowed transitions:
    pending    → processing, completed, failed
    processing → completed, failed
    completed  → refunded, failed
    failed     → (terminal; retrying means a new payment)
    refunded   → failed (a reversed refund)

Chapter side effects:
    → completed            chapter paid, linked to this payment, draft → in_progress
    → failed / refunded    chapter unpaid and unlinked
    delete (pending/failed) chapter unpaid and unlinked

A chapter is only unlinked when it points at this payment or at nothing, so
a stale payment never unpays a chapter another payment completed.
"""

import secrets
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional, Union
from uuid import UUID

from thesismaster.domain.enums import ChapterStatus, PaymentStatus
from thesismaster.exceptions import BusinessRuleError, ValidationError

ALLOWED_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset(
        {PaymentStatus.PROCESSING, PaymentStatus.COMPLETED, PaymentStatus.FAILED}
    ),
    PaymentStatus.PROCESSING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset({PaymentStatus.FAILED}),
}

DELETABLE_STATUSES: FrozenSet[PaymentStatus] = frozenset(
    {PaymentStatus.PENDING, PaymentStatus.FAILED}
)


# ── Value Structs ─────────────────────────────────────────────────────────
@dataclass(frozen=True)
class PaymentView:
    """The payment fields the state machine reads."""

    id: UUID
    status: PaymentStatus
    amount: float
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None
    refund_amount: Optional[float] = None
    refund_reason: Optional[str] = None
    completed_at: Optional[datetime] = None


@dataclass(frozen=True)
class ChapterLink:
    """The chapter fields the state machine reads."""

    id: UUID
    status: ChapterStatus
    is_paid: bool
    payment_id: Optional[UUID] = None


@dataclass(frozen=True)
class ChapterChange:
    """New values for the chapter's payment link; status None means unchanged."""

    is_paid: bool
    payment_id: Optional[UUID]
    status: Optional[ChapterStatus] = None


@dataclass(frozen=True)
class TransitionOutcome:
    """Everything the payment service has to write back after a transition."""

    previous_status: PaymentStatus
    status: PaymentStatus
    transaction_id: Optional[str]
    failure_reason: Optional[str]
    refund_amount: Optional[float]
    refund_reason: Optional[str]
    completed_at: Optional[datetime]
    chapter_change: Optional[ChapterChange] = None

    @property
    def status_changed(self) -> bool:
        return self.previous_status != self.status


# ── Helpers ───────────────────────────────────────────────────────────────
def parse_status(value: Union[str, PaymentStatus]) -> PaymentStatus:
    """Converts a raw status string, raising ValidationError for unknown values."""
    if isinstance(value, PaymentStatus):
        return value
    try:
        return PaymentStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in PaymentStatus)
        raise ValidationError(
            f"Invalid payment status '{value}'. Allowed: {allowed}",
            field="status",
        )


def generate_transaction_id(now_ms: Optional[int] = None) -> str:
    """TXN_<epoch-ms>_<10 uppercase hex chars>."""
    if now_ms is None:
        now_ms = int(time.time() * 1000)
    return f"TXN_{now_ms}_{secrets.token_hex(5).upper()}"


def _release(payment: PaymentView, chapter: Optional[ChapterLink]) -> Optional[ChapterChange]:
    if chapter is None:
        return None
    if chapter.payment_id is not None and chapter.payment_id != payment.id:
        return None
    return ChapterChange(is_paid=False, payment_id=None)


def ensure_chapter_payable(chapter: ChapterLink) -> None:
    """Raises BusinessRuleError when the chapter already has a completed payment."""
    if chapter.is_paid:
        raise BusinessRuleError(
            "Chapter is already paid for",
            rule="chapter_already_paid",
            context={"chapter_id": str(chapter.id)},
        )


def can_delete(status: Union[str, PaymentStatus]) -> bool:
    return parse_status(status) in DELETABLE_STATUSES


def plan_deletion(
    payment: PaymentView, chapter: Optional[ChapterLink]
) -> Optional[ChapterChange]:
    """
    Checks that the payment may be deleted and returns the chapter change
    the deletion implies.

    Raises:
        BusinessRuleError: For processing, completed or refunded payments.
    """
    if not can_delete(payment.status):
        raise BusinessRuleError(
            f"Cannot delete {payment.status.value} payments. "
            "Only pending or failed payments can be deleted.",
            rule="payment_not_deletable",
            context={"payment_id": str(payment.id), "status": payment.status.value},
        )
    return _release(payment, chapter)


# ── Transition ────────────────────────────────────────────────────────────
def apply_transition(
    payment: PaymentView,
    chapter: Optional[ChapterLink],
    new_status: Union[str, PaymentStatus],
    transaction_id: Optional[str] = None,
    failure_reason: Optional[str] = None,
    refund_amount: Optional[float] = None,
    refund_reason: Optional[str] = None,
    now: Optional[datetime] = None,
) -> TransitionOutcome:
    """
    Computes the result of moving `payment` to `new_status`.

    Setting the status a payment already has changes no status and has no
    chapter side effect; the supplied detail fields are still taken.

    Raises:
        ValidationError:   Unknown status, or refund amount outside [0, amount].
        BusinessRuleError: The transition is not in ALLOWED_TRANSITIONS.
    """
    target = parse_status(new_status)
    current = payment.status
    now = now or datetime.now(timezone.utc)

    if refund_amount is not None and not 0 <= refund_amount <= payment.amount:
        raise ValidationError(
            f"Refund amount must be between 0 and {payment.amount}",
            field="refund_amount",
        )

    outcome = dict(
        previous_status=current,
        status=current,
        transaction_id=transaction_id or payment.transaction_id,
        failure_reason=failure_reason if failure_reason is not None else payment.failure_reason,
        refund_amount=refund_amount if refund_amount is not None else payment.refund_amount,
        refund_reason=refund_reason if refund_reason is not None else payment.refund_reason,
        completed_at=payment.completed_at,
        chapter_change=None,
    )

    if target == current:
        return TransitionOutcome(**outcome)

    if target not in ALLOWED_TRANSITIONS[current]:
        raise BusinessRuleError(
            f"Cannot change payment status from '{current.value}' to '{target.value}'",
            rule="illegal_transition",
            context={"payment_id": str(payment.id)},
        )

    outcome["status"] = target

    if target == PaymentStatus.COMPLETED:
        if chapter is not None and chapter.is_paid and chapter.payment_id not in (None, payment.id):
            ensure_chapter_payable(chapter)
        outcome["transaction_id"] = outcome["transaction_id"] or generate_transaction_id(
            int(now.timestamp() * 1000)
        )
        outcome["completed_at"] = now
        if chapter is not None:
            outcome["chapter_change"] = ChapterChange(
                is_paid=True,
                payment_id=payment.id,
                status=ChapterStatus.IN_PROGRESS
                if chapter.status == ChapterStatus.DRAFT
                else None,
            )

    elif target == PaymentStatus.FAILED:
        outcome["chapter_change"] = _release(payment, chapter)

    elif target == PaymentStatus.REFUNDED:
        if outcome["refund_amount"] is None:
            outcome["refund_amount"] = payment.amount
        outcome["chapter_change"] = _release(payment, chapter)

    return TransitionOutcome(**outcome)
