"""
ThesisMaster Backend - Chapter Service
=======================================

What:  Persistence boundary for chapters: create, list, read, update, delete,
       feedback and attachments.
How:   Loads ORM rows, runs the pure pricing/word-count rules, writes the
       result back and flushes. The request transaction (get_db_session)
       commits or rolls back the whole unit.
Who:   routes.chapters, routes.pricing; payment_service reuses the
       ownership lookup.

Update Flow (PUT /api/chapters/{id}):
    ┌────────────┐   ┌──────────────┐   ┌──────────────┐   ┌──────────┐
    │ Load FOR   │──▶│ Content edit │──▶│ Pricing      │──▶│  Flush   │
    │ UPDATE     │   │ → revision   │   │ inputs → re- │   │ (version │
    │ (owner)    │   │ → word count │   │ price/reject │   │  check)  │
    └────────────┘   └──────────────┘   └──────────────┘   └──────────┘
    A version conflict on flush rolls back and re-runs the whole unit.
"""

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from thesismaster.config import settings
from thesismaster.domain.enums import ChapterStatus
from thesismaster.domain.pricing import PricingSnapshot, calculate_pricing, count_words
from thesismaster.exceptions import (
    BusinessRuleError,
    ConcurrencyConflictError,
    DatabaseError,
    NotFoundError,
    ThesisMasterError,
    ValidationError,
)
from thesismaster.identity import CurrentIdentity
from thesismaster.models.chapter import (
    Chapter,
    ChapterFeedback,
    ChapterFile,
    ChapterRevision,
    utcnow,
)
from thesismaster.models.payment import Payment
from thesismaster.schemas.chapter import (
    ChapterCreate,
    ChapterListResponse,
    ChapterSummary,
    ChapterUpdate,
    FeedbackCreate,
)
from thesismaster.schemas.common import Pagination
from thesismaster.services.concurrency import retry_on_conflict
from thesismaster.services.file_service import FileService, file_service

logger = logging.getLogger(__name__)

PRICING_FIELDS = ("target_word_count", "level", "work_type", "urgency")

# Columns that accept an explicit null in an update body
NULLABLE_FIELDS = {"summary", "notes", "deadline"}


def quote(
    target_word_count: int,
    level: Optional[str] = None,
    work_type: Optional[str] = None,
    urgency: Optional[str] = None,
) -> PricingSnapshot:
    """Prices a chapter with the configured rate, page size and currency."""
    return calculate_pricing(
        target_word_count,
        level,
        work_type,
        urgency,
        price_per_page=settings.price_per_page,
        words_per_page=settings.words_per_page,
        currency=settings.currency,
    )


def parse_chapter_status(value: Optional[str]) -> Optional[ChapterStatus]:
    if value is None:
        return None
    try:
        return ChapterStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in ChapterStatus)
        raise ValidationError(
            f"Invalid chapter status '{value}'. Allowed: {allowed}", field="status"
        )


def _apply_pricing(chapter: Chapter, snapshot: PricingSnapshot) -> None:
    chapter.pricing = snapshot.to_dict()
    chapter.estimated_pages = snapshot.pages
    chapter.estimated_cost = snapshot.total_price


def _value(v):
    return getattr(v, "value", v)


class ChapterService:
    """
    Business logic layer for chapter operations.

    Access rules:
        - owner:       everything
        - writer:      the chapters assigned to them, for attachments and feedback
        - anyone else: NotFoundError, so existence is never revealed
    """

    def __init__(self, files: Optional[FileService] = None):
        self.files = files or file_service

    # ── Lookups ───────────────────────────────────────────────────────────

    async def get_owned_chapter(
        self,
        db: AsyncSession,
        owner_id: UUID,
        chapter_id: UUID,
        for_update: bool = False,
    ) -> Chapter:
        """
        Fetches a chapter owned by `owner_id`.

        Raises:
            NotFoundError: Missing, or owned by someone else.
        """
        stmt = select(Chapter).where(Chapter.id == chapter_id, Chapter.user_id == owner_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        chapter = (await db.execute(stmt)).scalar_one_or_none()
        if chapter is None:
            raise NotFoundError(resource="Chapter", resource_id=str(chapter_id))
        return chapter

    async def get_accessible_chapter(
        self,
        db: AsyncSession,
        identity: CurrentIdentity,
        chapter_id: UUID,
        for_update: bool = False,
    ) -> Chapter:
        """Fetches a chapter the caller owns or is assigned to as writer."""
        stmt = select(Chapter).where(
            Chapter.id == chapter_id,
            (Chapter.user_id == identity.user_id) | (Chapter.writer_id == identity.user_id),
        )
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        chapter = (await db.execute(stmt)).scalar_one_or_none()
        if chapter is None:
            raise NotFoundError(resource="Chapter", resource_id=str(chapter_id))
        return chapter

    async def get_chapter(self, db: AsyncSession, owner_id: UUID, chapter_id: UUID) -> Chapter:
        try:
            return await self.get_owned_chapter(db, owner_id, chapter_id)
        except ThesisMasterError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error fetching chapter %s: %s", chapter_id, str(e))
            raise DatabaseError(
                message="Could not retrieve the chapter. Please try again.",
                context={"chapter_id": str(chapter_id)},
            )

    # ── Create / List ─────────────────────────────────────────────────────

    async def create_chapter(
        self, db: AsyncSession, owner_id: UUID, data: ChapterCreate
    ) -> Chapter:
        """
        Creates a draft chapter priced from its inputs.

        Raises:
            ValidationError:   Negative target word count.
            BusinessRuleError: The owner already has this chapter number.
        """
        snapshot = quote(data.target_word_count, data.level, data.work_type, data.urgency)

        try:
            existing = await db.scalar(
                select(func.count())
                .select_from(Chapter)
                .where(Chapter.user_id == owner_id, Chapter.chapter_number == data.chapter_number)
            )
            if existing:
                raise BusinessRuleError(
                    "Chapter number already exists",
                    rule="duplicate_chapter_number",
                    context={"chapter_number": data.chapter_number},
                )

            now = utcnow()
            chapter = Chapter(
                user_id=owner_id,
                title=data.title,
                content=data.content,
                summary=data.summary,
                notes=data.notes,
                tags=list(data.tags),
                deadline=data.deadline,
                status=ChapterStatus.DRAFT.value,
                chapter_number=data.chapter_number,
                word_count=count_words(data.content),
                target_word_count=data.target_word_count,
                level=_value(data.level),
                work_type=_value(data.work_type),
                urgency=_value(data.urgency),
                is_paid=False,
                created_at=now,
                updated_at=now,
                files=[],
                feedback=[],
                revisions=[],
            )
            _apply_pricing(chapter, snapshot)
            db.add(chapter)
            await db.flush()
        except ThesisMasterError:
            raise
        except IntegrityError:
            # Lost a race with a concurrent create of the same number
            await db.rollback()
            raise BusinessRuleError(
                "Chapter number already exists",
                rule="duplicate_chapter_number",
                context={"chapter_number": data.chapter_number},
            )
        except SQLAlchemyError as e:
            logger.error("Database error creating chapter: %s", str(e), exc_info=True)
            raise DatabaseError(message="Could not create the chapter. Please try again.")

        logger.info(
            "Chapter created: %s (owner=%s, number=%d, estimated_cost=%s %s)",
            chapter.id,
            owner_id,
            chapter.chapter_number,
            chapter.estimated_cost,
            snapshot.currency,
        )
        return chapter

    async def list_chapters(
        self,
        db: AsyncSession,
        owner_id: UUID,
        page: int = 1,
        limit: int = 10,
        status: Optional[str] = None,
    ) -> ChapterListResponse:
        """Owner's chapters ordered by chapter number."""
        status_filter = parse_chapter_status(status)
        try:
            conditions = [Chapter.user_id == owner_id]
            if status_filter is not None:
                conditions.append(Chapter.status == status_filter.value)

            total = await db.scalar(select(func.count()).select_from(Chapter).where(*conditions))
            result = await db.execute(
                select(Chapter)
                .where(*conditions)
                .order_by(Chapter.chapter_number.asc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            chapters = result.scalars().all()
        except SQLAlchemyError as e:
            logger.error("Database error listing chapters: %s", str(e))
            raise DatabaseError(message="Could not retrieve chapters. Please try again.")

        return ChapterListResponse(
            chapters=[ChapterSummary.model_validate(c) for c in chapters],
            pagination=Pagination.build(page, limit, total or 0),
        )

    # ── Update / Delete ───────────────────────────────────────────────────

    async def update_chapter(
        self, db: AsyncSession, owner_id: UUID, chapter_id: UUID, data: ChapterUpdate
    ) -> Chapter:
        """
        Applies a partial update.

        - A changed content appends a revision holding the previous content
          and recomputes word_count.
        - A changed pricing input reprices the chapter; on a paid chapter it
          is rejected.
        - Moving to completed stamps completed_at the first time.

        Raises:
            NotFoundError, ValidationError, BusinessRuleError,
            ConcurrencyConflictError, DatabaseError
        """
        fields = data.model_dump(exclude_unset=True)
        changes = fields.pop("changes", None)
        fields = {
            k: _value(v) for k, v in fields.items() if v is not None or k in NULLABLE_FIELDS
        }

        async def unit() -> Chapter:
            chapter = await self.get_owned_chapter(db, owner_id, chapter_id, for_update=True)
            now = utcnow()

            pricing_inputs = {k: getattr(chapter, k) for k in PRICING_FIELDS}
            requested = {k: fields[k] for k in PRICING_FIELDS if k in fields}
            repricing = any(pricing_inputs[k] != v for k, v in requested.items())
            if repricing:
                if chapter.is_paid:
                    raise BusinessRuleError(
                        "Pricing inputs cannot be changed on a paid chapter",
                        rule="paid_chapter_pricing_locked",
                        context={"chapter_id": str(chapter_id), "fields": sorted(requested)},
                    )
                pricing_inputs.update(requested)
                _apply_pricing(chapter, quote(**pricing_inputs))

            if "content" in fields and fields["content"] != chapter.content:
                chapter.revisions.append(
                    ChapterRevision(
                        version=len(chapter.revisions) + 1,
                        content=chapter.content,
                        changes=changes or "Content updated",
                        created_at=now,
                    )
                )
                chapter.content = fields["content"]
            chapter.word_count = count_words(chapter.content)

            if fields.get("status") == ChapterStatus.COMPLETED.value and chapter.completed_at is None:
                chapter.completed_at = now

            for key, value in fields.items():
                if key == "content":
                    continue
                setattr(chapter, key, value)

            chapter.updated_at = now
            await db.flush()
            return chapter

        try:
            chapter = await retry_on_conflict(db, unit, "chapter update")
        except ThesisMasterError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error updating chapter %s: %s", chapter_id, str(e))
            raise DatabaseError(message="Could not update the chapter. Please try again.")

        logger.info("Chapter updated: %s (fields=%s)", chapter_id, sorted(fields))
        return chapter

    async def delete_chapter(self, db: AsyncSession, owner_id: UUID, chapter_id: UUID) -> None:
        """
        Deletes the chapter, its child rows and its attachment files.
        Payments that referenced it keep a NULL chapter_id.
        """
        try:
            chapter = await self.get_owned_chapter(db, owner_id, chapter_id, for_update=True)
            stored_paths = [f.file_path for f in chapter.files]

            await db.execute(
                update(Payment)
                .where(Payment.chapter_id == chapter_id)
                .values(chapter_id=None, version_id=Payment.version_id + 1)
                .execution_options(synchronize_session=False)
            )
            await db.delete(chapter)
            await db.flush()
        except ThesisMasterError:
            raise
        except StaleDataError:
            raise ConcurrencyConflictError(context={"chapter_id": str(chapter_id)})
        except SQLAlchemyError as e:
            logger.error("Database error deleting chapter %s: %s", chapter_id, str(e))
            raise DatabaseError(message="Could not delete the chapter. Please try again.")

        for path in stored_paths:
            await self.files.cleanup_file(path)
        await self.files.cleanup_chapter_dir(chapter_id)
        logger.info("Chapter deleted: %s (%d attachments removed)", chapter_id, len(stored_paths))

    # ── Feedback ──────────────────────────────────────────────────────────

    async def add_feedback(
        self,
        db: AsyncSession,
        identity: CurrentIdentity,
        chapter_id: UUID,
        data: FeedbackCreate,
    ) -> ChapterFeedback:
        try:
            chapter = await self.get_accessible_chapter(db, identity, chapter_id)
            entry = ChapterFeedback(
                reviewer=data.reviewer,
                comment=data.comment,
                rating=data.rating,
                created_at=utcnow(),
            )
            chapter.feedback.append(entry)
            await db.flush()
        except ThesisMasterError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error adding feedback to %s: %s", chapter_id, str(e))
            raise DatabaseError(message="Could not save the feedback. Please try again.")
        return entry

    # ── Attachments ───────────────────────────────────────────────────────

    async def upload_file(
        self,
        db: AsyncSession,
        identity: CurrentIdentity,
        chapter_id: UUID,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> ChapterFile:
        """
        Validates and stores an attachment, then records it on the chapter.
        The first upload moves a draft chapter to in_progress.

        On a database failure after the write, the stored file is removed.
        """
        chapter = await self.get_accessible_chapter(db, identity, chapter_id, for_update=True)

        relative_path, stored_name, mime_type = await self.files.validate_and_store(
            chapter_id=chapter.id,
            filename=filename,
            content=content,
            content_length=content_length,
        )

        try:
            now = utcnow()
            record = ChapterFile(
                original_name=filename,
                file_name=stored_name,
                file_path=relative_path,
                file_size=len(content),
                file_type=mime_type,
                uploaded_at=now,
            )
            chapter.files.append(record)
            if chapter.status == ChapterStatus.DRAFT.value:
                chapter.status = ChapterStatus.IN_PROGRESS.value
            chapter.updated_at = now
            await db.flush()
        except StaleDataError:
            await self.files.cleanup_file(relative_path)
            raise ConcurrencyConflictError(context={"chapter_id": str(chapter_id)})
        except SQLAlchemyError as e:
            await self.files.cleanup_file(relative_path)
            logger.error("Database error recording upload for %s: %s", chapter_id, str(e))
            raise DatabaseError(message="Could not save the attachment. Please try again.")

        logger.info(
            "Attachment uploaded: chapter=%s file=%s (%d bytes, %s)",
            chapter_id,
            stored_name,
            record.file_size,
            mime_type,
        )
        return record

    async def list_files(
        self, db: AsyncSession, identity: CurrentIdentity, chapter_id: UUID
    ) -> List[ChapterFile]:
        chapter = await self.get_accessible_chapter(db, identity, chapter_id)
        return list(chapter.files)

    async def get_file(
        self, db: AsyncSession, identity: CurrentIdentity, chapter_id: UUID, file_name: str
    ) -> Tuple[ChapterFile, str]:
        """
        Returns the attachment record and its absolute path on disk.

        Raises:
            NotFoundError: Unknown file name, or the file is missing on disk.
        """
        chapter = await self.get_accessible_chapter(db, identity, chapter_id)
        record = next((f for f in chapter.files if f.file_name == file_name), None)
        if record is None:
            raise NotFoundError(resource="File", resource_id=file_name)
        path = self.files.resolve(record.file_path)
        if not path.is_file():
            logger.warning("Attachment row without file on disk: %s", record.file_path)
            raise NotFoundError(resource="File", resource_id=file_name)
        return record, str(path)

    async def delete_file(
        self, db: AsyncSession, identity: CurrentIdentity, chapter_id: UUID, file_name: str
    ) -> None:
        try:
            chapter = await self.get_accessible_chapter(db, identity, chapter_id, for_update=True)
            record = next((f for f in chapter.files if f.file_name == file_name), None)
            if record is None:
                raise NotFoundError(resource="File", resource_id=file_name)
            relative_path = record.file_path
            chapter.files.remove(record)
            chapter.updated_at = utcnow()
            await db.flush()
        except ThesisMasterError:
            raise
        except StaleDataError:
            raise ConcurrencyConflictError(context={"chapter_id": str(chapter_id)})
        except SQLAlchemyError as e:
            logger.error("Database error deleting file %s: %s", file_name, str(e))
            raise DatabaseError(message="Could not delete the attachment. Please try again.")

        await self.files.delete_file(relative_path)
        logger.info("Attachment deleted: chapter=%s file=%s", chapter_id, file_name)


# ── Singleton Instance ────────────────────────────────────────────────────
chapter_service = ChapterService()
