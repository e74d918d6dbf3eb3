"""
ThesisMaster Backend - Chapter Service Tests
=============================================

What:  ChapterService against a real (SQLite) database.

What we test:
    ✅ Create prices the chapter and rejects duplicate numbers per owner
    ✅ Ownership: other users get NotFoundError
    ✅ Content edits append revisions and recompute word_count
    ✅ Repricing, and the lock on paid chapters
    ✅ Delete keeps payments with a NULL chapter_id
    ✅ Feedback and attachments for owner and assigned writer
"""

from unittest.mock import patch
from uuid import uuid4

import pytest

from thesismaster.domain.enums import UserRole
from thesismaster.exceptions import BusinessRuleError, NotFoundError, ValidationError
from thesismaster.identity import CurrentIdentity
from thesismaster.schemas.chapter import ChapterUpdate, FeedbackCreate
from thesismaster.schemas.payment import PaymentCreate
from thesismaster.services.chapter_service import ChapterService, chapter_service, quote
from thesismaster.services.file_service import FileService
from thesismaster.services.payment_service import payment_service


class TestCreateAndRead:

    @pytest.mark.asyncio
    async def test_create_prices_chapter(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(
            db_session,
            student_id,
            title="  Methodology  ",
            content="one two three",
            level="phd",
            work_type="statistics",
            urgency="urgent",
        )
        assert chapter.title == "Methodology"
        assert chapter.status == "draft"
        assert chapter.word_count == 3
        assert chapter.estimated_pages == 8
        assert chapter.estimated_cost == 8736
        assert chapter.pricing["totalPrice"] == 8736
        assert chapter.is_paid is False
        assert chapter.payment_id is None

    @pytest.mark.asyncio
    async def test_duplicate_number_rejected(self, db_session, student_id, make_chapter):
        await make_chapter(db_session, student_id, chapter_number=1)
        with pytest.raises(BusinessRuleError, match="Chapter number already exists"):
            await make_chapter(db_session, student_id, chapter_number=1, title="Again")

    @pytest.mark.asyncio
    async def test_same_number_for_different_owners(self, db_session, student_id, other_id, make_chapter):
        await make_chapter(db_session, student_id, chapter_number=1)
        chapter = await make_chapter(db_session, other_id, chapter_number=1)
        assert chapter.user_id == other_id

    @pytest.mark.asyncio
    async def test_negative_target_rejected(self, db_session, student_id, make_chapter):
        with pytest.raises(ValidationError):
            await make_chapter(db_session, student_id, target_word_count=-5)

    @pytest.mark.asyncio
    async def test_other_user_gets_not_found(self, db_session, student_id, other_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        with pytest.raises(NotFoundError):
            await chapter_service.get_chapter(db_session, other_id, chapter.id)

    @pytest.mark.asyncio
    async def test_list_orders_filters_and_paginates(self, db_session, student_id, other_id, make_chapter):
        await make_chapter(db_session, student_id, chapter_number=3, title="Three")
        await make_chapter(db_session, student_id, chapter_number=1, title="One")
        await make_chapter(db_session, student_id, chapter_number=2, title="Two")
        await make_chapter(db_session, other_id, chapter_number=1, title="Not mine")

        result = await chapter_service.list_chapters(db_session, student_id, page=1, limit=2)
        assert [c.chapter_number for c in result.chapters] == [1, 2]
        assert result.pagination.total == 3
        assert result.pagination.pages == 2

        drafts = await chapter_service.list_chapters(db_session, student_id, status="draft")
        assert drafts.pagination.total == 3
        completed = await chapter_service.list_chapters(db_session, student_id, status="completed")
        assert completed.chapters == []

    @pytest.mark.asyncio
    async def test_list_unknown_status_rejected(self, db_session, student_id):
        with pytest.raises(ValidationError, match="status"):
            await chapter_service.list_chapters(db_session, student_id, status="archived")

    def test_quote_uses_configured_rate(self):
        assert quote(2000, "phd", "statistics", "urgent").total_price == 8736


class TestUpdate:

    @pytest.mark.asyncio
    async def test_content_edit_appends_revision(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id, content="first draft text")
        updated = await chapter_service.update_chapter(
            db_session,
            student_id,
            chapter.id,
            ChapterUpdate(content="a much longer second draft text", changes="Expanded"),
        )
        assert updated.word_count == 6
        assert len(updated.revisions) == 1
        assert updated.revisions[0].version == 1
        assert updated.revisions[0].content == "first draft text"
        assert updated.revisions[0].changes == "Expanded"

    @pytest.mark.asyncio
    async def test_unchanged_content_adds_no_revision(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id, content="same")
        updated = await chapter_service.update_chapter(
            db_session, student_id, chapter.id, ChapterUpdate(content="same", title="Renamed")
        )
        assert updated.revisions == []
        assert updated.title == "Renamed"

    @pytest.mark.asyncio
    async def test_pricing_inputs_reprice(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id, target_word_count=2000)
        updated = await chapter_service.update_chapter(
            db_session, student_id, chapter.id, ChapterUpdate(level="phd", urgency="urgent")
        )
        # 8 pages × 400 × 1.3 × 1.5
        assert updated.estimated_cost == 6240
        assert updated.pricing["levelMultiplier"] == 1.3

    @pytest.mark.asyncio
    async def test_paid_chapter_pricing_locked(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        chapter.is_paid = True
        await db_session.flush()

        with pytest.raises(BusinessRuleError, match="paid chapter") as exc_info:
            await chapter_service.update_chapter(
                db_session, student_id, chapter.id, ChapterUpdate(target_word_count=4000)
            )
        assert exc_info.value.rule == "paid_chapter_pricing_locked"

    @pytest.mark.asyncio
    async def test_paid_chapter_accepts_same_pricing_inputs(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id, target_word_count=2000)
        chapter.is_paid = True
        await db_session.flush()

        updated = await chapter_service.update_chapter(
            db_session,
            student_id,
            chapter.id,
            ChapterUpdate(target_word_count=2000, notes="Check references"),
        )
        assert updated.notes == "Check references"

    @pytest.mark.asyncio
    async def test_completion_stamps_completed_at(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        updated = await chapter_service.update_chapter(
            db_session, student_id, chapter.id, ChapterUpdate(status="completed")
        )
        assert updated.status == "completed"
        assert updated.completed_at is not None

    @pytest.mark.asyncio
    async def test_update_by_other_user_not_found(self, db_session, student_id, other_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        with pytest.raises(NotFoundError):
            await chapter_service.update_chapter(
                db_session, other_id, chapter.id, ChapterUpdate(title="Hijack")
            )


class TestDelete:

    @pytest.mark.asyncio
    async def test_delete_keeps_payment_without_chapter(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        payment = await payment_service.create_payment(
            db_session,
            student_id,
            PaymentCreate(chapter_id=chapter.id, payment_method="mpesa", description="Chapter 1"),
        )

        await chapter_service.delete_chapter(db_session, student_id, chapter.id)

        await db_session.refresh(payment)
        assert payment.chapter_id is None
        with pytest.raises(NotFoundError):
            await chapter_service.get_chapter(db_session, student_id, chapter.id)

    @pytest.mark.asyncio
    async def test_delete_missing_chapter(self, db_session, student_id):
        with pytest.raises(NotFoundError):
            await chapter_service.delete_chapter(db_session, student_id, uuid4())


class TestFeedbackAndFiles:

    @pytest.fixture
    def service(self, tmp_path):
        return ChapterService(files=FileService(storage_root=str(tmp_path / "storage")))

    @pytest.mark.asyncio
    async def test_owner_adds_feedback(self, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        entry = await chapter_service.add_feedback(
            db_session,
            CurrentIdentity(user_id=student_id),
            chapter.id,
            FeedbackCreate(reviewer="Dr. Otieno", comment="Tighten the literature review", rating=4),
        )
        assert entry.rating == 4
        assert len(chapter.feedback) == 1

    @pytest.mark.asyncio
    async def test_assigned_writer_adds_feedback(self, db_session, student_id, writer_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        chapter.writer_id = writer_id
        await db_session.flush()

        entry = await chapter_service.add_feedback(
            db_session,
            CurrentIdentity(user_id=writer_id, role=UserRole.WRITER),
            chapter.id,
            FeedbackCreate(reviewer="Writer", comment="Draft uploaded"),
        )
        assert entry.comment == "Draft uploaded"

    @pytest.mark.asyncio
    async def test_unrelated_user_cannot_add_feedback(self, db_session, student_id, other_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        with pytest.raises(NotFoundError):
            await chapter_service.add_feedback(
                db_session,
                CurrentIdentity(user_id=other_id),
                chapter.id,
                FeedbackCreate(reviewer="Stranger", comment="Hello"),
            )

    @pytest.mark.asyncio
    async def test_upload_moves_draft_to_in_progress(self, service, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        identity = CurrentIdentity(user_id=student_id)

        with patch.object(service.files, "_detect_mime", return_value="application/pdf"):
            record = await service.upload_file(
                db_session, identity, chapter.id, "Chapter One.pdf", b"%PDF-1.4 body"
            )

        assert chapter.status == "in_progress"
        assert record.original_name == "Chapter One.pdf"
        assert record.file_name.endswith("_Chapter_One.pdf")
        assert record.file_path == f"chapters/{chapter.id}/{record.file_name}"
        assert record.file_type == "application/pdf"
        assert record.file_size == len(b"%PDF-1.4 body")

        files = await service.list_files(db_session, identity, chapter.id)
        assert [f.file_name for f in files] == [record.file_name]

        found, path = await service.get_file(db_session, identity, chapter.id, record.file_name)
        assert found is record
        with open(path, "rb") as f:
            assert f.read() == b"%PDF-1.4 body"

    @pytest.mark.asyncio
    async def test_upload_rejects_mismatched_content(self, service, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        with patch.object(service.files, "_detect_mime", return_value="application/x-dosexec"):
            with pytest.raises(ValidationError, match="does not match"):
                await service.upload_file(
                    db_session, CurrentIdentity(user_id=student_id), chapter.id, "thesis.pdf", b"MZ"
                )
        assert chapter.status == "draft"

    @pytest.mark.asyncio
    async def test_delete_file_removes_record_and_disk_file(self, service, db_session, student_id, make_chapter):
        chapter = await make_chapter(db_session, student_id)
        identity = CurrentIdentity(user_id=student_id)
        with patch.object(service.files, "_detect_mime", return_value="text/plain"):
            record = await service.upload_file(db_session, identity, chapter.id, "notes.txt", b"hi")
        path = service.files.resolve(record.file_path)
        assert path.exists()

        await service.delete_file(db_session, identity, chapter.id, record.file_name)

        assert not path.exists()
        assert chapter.files == []
        with pytest.raises(NotFoundError):
            await service.get_file(db_session, identity, chapter.id, record.file_name)
