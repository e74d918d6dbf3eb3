"""
ThesisMaster Backend - Payment Service Tests
=============================================

What:  PaymentService against a real (SQLite) database, with deterministic
       gateways injected into process_payment.

What we test:
    ✅ Create: amount defaults to the chapter cost; paid chapters rejected
    ✅ Transitions write the chapter side effects in the same unit
    ✅ Delete rules and chapter unlinking
    ✅ process_payment: approved, declined, gateway failure, concurrent changes
    ✅ Ownership: another user's payment is not found
    ✅ Optimistic-lock retry helper
"""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.orm.exc import StaleDataError

from thesismaster.exceptions import (
    BusinessRuleError,
    ConcurrencyConflictError,
    NotFoundError,
    PaymentGatewayError,
    ValidationError,
)
from thesismaster.schemas.payment import PaymentCreate, PaymentProcessRequest, PaymentUpdate
from thesismaster.services.concurrency import retry_on_conflict
from thesismaster.services.payment_service import payment_service


def payment_data(chapter_id=None, **kwargs) -> PaymentCreate:
    fields = {"chapter_id": chapter_id, "payment_method": "mpesa", "description": "Chapter payment"}
    fields.update(kwargs)
    return PaymentCreate(**fields)


async def transition(db, owner_id, payment_id, **kwargs):
    return await payment_service.update_payment(db, owner_id, payment_id, PaymentUpdate(**kwargs))


class TestCreatePayment:

    @pytest.mark.asyncio
    async def test_amount_defaults_to_chapter_cost(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        payment = await payment_service.create_payment(db_session, student_id, payment_data(chapter.id))
        assert payment.status == "pending"
        assert payment.amount == chapter.estimated_cost == 3200
        assert payment.currency == "KSH"
        assert payment.chapter.id == chapter.id
        assert chapter.is_paid is False

    @pytest.mark.asyncio
    async def test_explicit_amount_without_chapter(self, db_session, student_id):
        payment = await payment_service.create_payment(
            db_session, student_id, payment_data(amount=150.0, currency="usd", type="consultation")
        )
        assert payment.chapter_id is None
        assert payment.amount == 150.0
        assert payment.currency == "USD"

    @pytest.mark.asyncio
    async def test_amount_required_without_chapter(self, db_session, student_id):
        with pytest.raises(ValidationError, match="amount"):
            await payment_service.create_payment(db_session, student_id, payment_data())

    @pytest.mark.asyncio
    async def test_paid_chapter_rejected(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        first = await payment_service.create_payment(db_session, student_id, payment_data(chapter.id))
        await transition(db_session, student_id, first.id, status="completed")

        with pytest.raises(BusinessRuleError, match="already paid"):
            await payment_service.create_payment(db_session, student_id, payment_data(chapter.id))

    @pytest.mark.asyncio
    async def test_foreign_chapter_not_found(self, db_session, student_id, other_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        with pytest.raises(NotFoundError):
            await payment_service.create_payment(db_session, other_id, payment_data(chapter.id))


class TestTransitions:

    @pytest.mark.asyncio
    async def test_complete_marks_chapter_paid(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        payment = await payment_service.create_payment(db_session, student_id, payment_data(chapter.id))

        updated = await transition(db_session, student_id, payment.id, status="completed")

        assert updated.status == "completed"
        assert updated.transaction_id.startswith("TXN_")
        assert updated.completed_at is not None
        assert chapter.is_paid is True
        assert chapter.payment_id == payment.id
        assert chapter.status == "in_progress"

    @pytest.mark.asyncio
    async def test_refund_releases_chapter(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        payment = await payment_service.create_payment(db_session, student_id, payment_data(chapter.id))
        await transition(db_session, student_id, payment.id, status="completed")

        refunded = await transition(
            db_session, student_id, payment.id, status="refunded", refund_reason="Cancelled"
        )

        assert refunded.refund_amount == 3200
        assert refunded.refund_reason == "Cancelled"
        assert chapter.is_paid is False
        assert chapter.payment_id is None

    @pytest.mark.asyncio
    async def test_failed_after_completion_releases_chapter(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        payment = await payment_service.create_payment(db_session, student_id, payment_data(chapter.id))
        await transition(db_session, student_id, payment.id, status="completed")

        await transition(db_session, student_id, payment.id, status="failed", failure_reason="Reversed")

        assert chapter.is_paid is False
        assert chapter.payment_id is None

    @pytest.mark.asyncio
    async def test_illegal_transition(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        payment = await payment_service.create_payment(db_session, student_id, payment_data(chapter.id))
        await transition(db_session, student_id, payment.id, status="failed")

        with pytest.raises(BusinessRuleError, match="from 'failed' to 'completed'"):
            await transition(db_session, student_id, payment.id, status="completed")

    @pytest.mark.asyncio
    async def test_unknown_status(self, db_session, student_id):
        payment = await payment_service.create_payment(db_session, student_id, payment_data(amount=10.0))
        with pytest.raises(ValidationError, match="Invalid payment status"):
            await transition(db_session, student_id, payment.id, status="settled")

    @pytest.mark.asyncio
    async def test_second_payment_cannot_complete_paid_chapter(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        first = await payment_service.create_payment(db_session, student_id, payment_data(chapter.id))
        second = await payment_service.create_payment(db_session, student_id, payment_data(chapter.id))
        await transition(db_session, student_id, first.id, status="completed")

        with pytest.raises(BusinessRuleError, match="already paid"):
            await transition(db_session, student_id, second.id, status="completed")
        assert chapter.payment_id == first.id

    @pytest.mark.asyncio
    async def test_other_users_payment_not_found(self, db_session, student_id, other_id):
        payment = await payment_service.create_payment(db_session, student_id, payment_data(amount=10.0))
        with pytest.raises(NotFoundError):
            await payment_service.get_payment(db_session, other_id, payment.id)
        with pytest.raises(NotFoundError):
            await transition(db_session, other_id, payment.id, status="completed")


class TestDeletePayment:

    @pytest.mark.asyncio
    async def test_delete_pending(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        payment = await payment_service.create_payment(db_session, student_id, payment_data(chapter.id))

        await payment_service.delete_payment(db_session, student_id, payment.id)

        with pytest.raises(NotFoundError):
            await payment_service.get_payment(db_session, student_id, payment.id)
        assert chapter.is_paid is False

    @pytest.mark.asyncio
    async def test_delete_completed_rejected(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        payment = await payment_service.create_payment(db_session, student_id, payment_data(chapter.id))
        await transition(db_session, student_id, payment.id, status="completed")

        with pytest.raises(BusinessRuleError, match="Cannot delete completed payments"):
            await payment_service.delete_payment(db_session, student_id, payment.id)
        assert chapter.is_paid is True

    @pytest.mark.asyncio
    async def test_delete_processing_rejected(self, db_session, student_id):
        payment = await payment_service.create_payment(db_session, student_id, payment_data(amount=10.0))
        await transition(db_session, student_id, payment.id, status="processing")
        with pytest.raises(BusinessRuleError, match="Cannot delete processing payments"):
            await payment_service.delete_payment(db_session, student_id, payment.id)


class TestListPayments:

    @pytest.mark.asyncio
    async def test_totals_by_status(self, db_session, student_id, other_id):
        a = await payment_service.create_payment(db_session, student_id, payment_data(amount=100.0))
        await payment_service.create_payment(db_session, student_id, payment_data(amount=50.0))
        await payment_service.create_payment(db_session, other_id, payment_data(amount=999.0))
        await transition(db_session, student_id, a.id, status="completed")

        result = await payment_service.list_payments(db_session, student_id)

        assert result.pagination.total == 2
        assert result.totals["completed"].count == 1
        assert result.totals["completed"].amount == 100.0
        assert result.totals["pending"].amount == 50.0

        pending = await payment_service.list_payments(db_session, student_id, status="pending")
        assert [p.amount for p in pending.payments] == [50.0]


class TestProcessPayment:

    @pytest.mark.asyncio
    async def test_approved_charge_completes(self, db_session, student_id, make_chapter, approving_gateway):
        chapter = await make_chapter(db_session, student_id)
        payment = await payment_service.process_payment(
            db_session,
            student_id,
            PaymentProcessRequest(chapter_id=chapter.id, phone_number="254700000000"),
            approving_gateway,
        )

        assert payment.status == "completed"
        assert payment.transaction_id == "TXN_1700000000000_ABCDEF0123"
        assert payment.amount == 3200
        assert payment.payment_metadata == {"phone_number": "254700000000"}
        assert chapter.is_paid is True
        assert chapter.payment_id == payment.id
        assert chapter.status == "in_progress"

        charge = approving_gateway.requests[0]
        assert charge.payment_id == payment.id
        assert charge.amount == 3200
        assert charge.phone_number == "254700000000"

    @pytest.mark.asyncio
    async def test_declined_charge_fails(self, db_session, student_id, make_chapter, declining_gateway):
        chapter = await make_chapter(db_session, student_id)
        payment = await payment_service.process_payment(
            db_session, student_id, PaymentProcessRequest(chapter_id=chapter.id), declining_gateway
        )

        assert payment.status == "failed"
        assert payment.failure_reason == "Insufficient funds or payment declined"
        assert payment.transaction_id is None
        assert chapter.is_paid is False
        assert chapter.payment_id is None

    @pytest.mark.asyncio
    async def test_paid_chapter_not_charged(self, db_session, student_id, make_chapter, approving_gateway):
        chapter = await make_chapter(db_session, student_id)
        request = PaymentProcessRequest(chapter_id=chapter.id)
        await payment_service.process_payment(db_session, student_id, request, approving_gateway)

        with pytest.raises(BusinessRuleError, match="already paid"):
            await payment_service.process_payment(db_session, student_id, request, approving_gateway)
        assert len(approving_gateway.requests) == 1

    @pytest.mark.asyncio
    async def test_stale_chapter_before_charge_is_retried(
        self, db_session, student_id, make_chapter, approving_gateway
    ):
        chapter = await make_chapter(db_session, student_id)
        await db_session.commit()
        real_flush = db_session.flush
        flush = AsyncMock(side_effect=[StaleDataError("stale"), None, None])

        async def flaky_flush(*args, **kwargs):
            await flush()
            return await real_flush(*args, **kwargs)

        with patch.object(db_session, "flush", flaky_flush):
            payment = await payment_service.process_payment(
                db_session, student_id, PaymentProcessRequest(chapter_id=chapter.id), approving_gateway
            )

        assert payment.status == "completed"
        assert len(approving_gateway.requests) == 1
        assert flush.await_count == 3

    @pytest.mark.asyncio
    async def test_stale_chapter_after_charge_is_conflict(
        self, db_session, student_id, make_chapter, approving_gateway
    ):
        chapter = await make_chapter(db_session, student_id)
        await db_session.commit()
        real_flush = db_session.flush
        flush = AsyncMock(side_effect=[None, StaleDataError("stale")])

        async def flaky_flush(*args, **kwargs):
            await flush()
            return await real_flush(*args, **kwargs)

        with patch.object(db_session, "flush", flaky_flush):
            with pytest.raises(ConcurrencyConflictError) as exc_info:
                await payment_service.process_payment(
                    db_session, student_id, PaymentProcessRequest(chapter_id=chapter.id), approving_gateway
                )

        assert exc_info.value.context["transaction_id"] == "TXN_1700000000000_ABCDEF0123"
        assert len(approving_gateway.requests) == 1
        listing = await payment_service.list_payments(db_session, student_id)
        assert listing.pagination.total == 0

    @pytest.mark.asyncio
    async def test_gateway_error_propagates(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        gateway = MagicMock()
        gateway.charge = AsyncMock(side_effect=PaymentGatewayError(message="Processor down"))

        with pytest.raises(PaymentGatewayError):
            await payment_service.process_payment(
                db_session, student_id, PaymentProcessRequest(chapter_id=chapter.id), gateway
            )


class TestRetryOnConflict:

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self):
        db = AsyncMock()
        unit = AsyncMock(side_effect=[StaleDataError("stale"), "done"])

        assert await retry_on_conflict(db, unit, "test") == "done"
        assert unit.await_count == 2
        db.rollback.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exhausted_raises_conflict(self):
        db = AsyncMock()
        unit = AsyncMock(side_effect=StaleDataError("stale"))

        with pytest.raises(ConcurrencyConflictError):
            await retry_on_conflict(db, unit, "test")
        assert unit.await_count == 3
        assert db.rollback.await_count == 3

    @pytest.mark.asyncio
    async def test_application_errors_are_not_retried(self):
        db = AsyncMock()
        unit = AsyncMock(side_effect=NotFoundError(resource="Payment", resource_id=str(uuid4())))

        with pytest.raises(NotFoundError):
            await retry_on_conflict(db, unit, "test")
        assert unit.await_count == 1
        db.rollback.assert_not_awaited()
