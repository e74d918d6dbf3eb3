"""
ThesisMaster Backend - Chapter Route Handlers
==============================================

What:  Chapter CRUD for the owning student, plus feedback and attachments
       for the owner or the assigned writer.
How:   Reads identity from the gateway headers, delegates to ChapterService,
       converts ORM rows to response models.

Endpoints:
    GET    /api/chapters
    POST   /api/chapters
    GET    /api/chapters/{id}
    PUT    /api/chapters/{id}
    DELETE /api/chapters/{id}
    POST   /api/chapters/{id}/feedback
    POST   /api/chapters/{id}/files
    GET    /api/chapters/{id}/files
    GET    /api/chapters/{id}/files/{file_name}
    DELETE /api/chapters/{id}/files/{file_name}
"""

import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, Response, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from thesismaster.database import get_db_session
from thesismaster.identity import CurrentIdentity, get_current_identity
from thesismaster.schemas.chapter import (
    ChapterCreate,
    ChapterListResponse,
    ChapterResponse,
    ChapterUpdate,
    FeedbackCreate,
    FeedbackResponse,
    FileInfoResponse,
)
from thesismaster.schemas.common import ErrorResponse, MessageResponse
from thesismaster.services.chapter_service import chapter_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Chapters"])


@router.get(
    "/chapters",
    response_model=ChapterListResponse,
    summary="List the caller's chapters",
)
async def list_chapters(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status: Optional[str] = Query(default=None, description="Filter by chapter status"),
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> ChapterListResponse:
    result = await chapter_service.list_chapters(
        db, identity.user_id, page=page, limit=limit, status=status
    )
    response.headers["X-Total-Count"] = str(result.pagination.total)
    return result


@router.post(
    "/chapters",
    response_model=ChapterResponse,
    status_code=201,
    responses={409: {"description": "Duplicate chapter number", "model": ErrorResponse}},
    summary="Create a priced draft chapter",
)
async def create_chapter(
    data: ChapterCreate,
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> ChapterResponse:
    chapter = await chapter_service.create_chapter(db, identity.user_id, data)
    return ChapterResponse.model_validate(chapter)


@router.get(
    "/chapters/{chapter_id}",
    response_model=ChapterResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Get a chapter with files, feedback and revisions",
)
async def get_chapter(
    chapter_id: UUID,
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> ChapterResponse:
    chapter = await chapter_service.get_chapter(db, identity.user_id, chapter_id)
    return ChapterResponse.model_validate(chapter)


@router.put(
    "/chapters/{chapter_id}",
    response_model=ChapterResponse,
    responses={
        404: {"model": ErrorResponse},
        409: {"description": "Pricing locked or concurrent edit", "model": ErrorResponse},
    },
    summary="Update a chapter",
)
async def update_chapter(
    chapter_id: UUID,
    data: ChapterUpdate,
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> ChapterResponse:
    chapter = await chapter_service.update_chapter(db, identity.user_id, chapter_id, data)
    return ChapterResponse.model_validate(chapter)


@router.delete(
    "/chapters/{chapter_id}",
    response_model=MessageResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Delete a chapter and its attachments",
)
async def delete_chapter(
    chapter_id: UUID,
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await chapter_service.delete_chapter(db, identity.user_id, chapter_id)
    return MessageResponse(message="Chapter deleted successfully")


# ── Feedback ──────────────────────────────────────────────────────────────

@router.post(
    "/chapters/{chapter_id}/feedback",
    response_model=FeedbackResponse,
    status_code=201,
    responses={404: {"model": ErrorResponse}},
    summary="Add reviewer feedback to a chapter",
)
async def add_feedback(
    chapter_id: UUID,
    data: FeedbackCreate,
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> FeedbackResponse:
    entry = await chapter_service.add_feedback(db, identity, chapter_id, data)
    return FeedbackResponse.model_validate(entry)


# ── Attachments ───────────────────────────────────────────────────────────

@router.post(
    "/chapters/{chapter_id}/files",
    response_model=FileInfoResponse,
    status_code=201,
    responses={
        400: {"description": "Invalid file type or size", "model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Upload an attachment (PDF, DOC, DOCX or TXT, max 10MB)",
)
async def upload_file(
    chapter_id: UUID,
    file: UploadFile = File(..., description="Document to attach"),
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> FileInfoResponse:
    content = await file.read()
    logger.info(
        "Received attachment for chapter %s: filename=%s, size=%d bytes",
        chapter_id,
        file.filename or "unknown",
        len(content),
    )
    try:
        record = await chapter_service.upload_file(
            db,
            identity,
            chapter_id,
            filename=file.filename or "upload.txt",
            content=content,
            content_length=file.size,
        )
    finally:
        await file.close()
    return FileInfoResponse.model_validate(record)


@router.get(
    "/chapters/{chapter_id}/files",
    response_model=List[FileInfoResponse],
    responses={404: {"model": ErrorResponse}},
    summary="List a chapter's attachments",
)
async def list_files(
    chapter_id: UUID,
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> List[FileInfoResponse]:
    files = await chapter_service.list_files(db, identity, chapter_id)
    return [FileInfoResponse.model_validate(f) for f in files]


@router.get(
    "/chapters/{chapter_id}/files/{file_name}",
    responses={200: {"description": "Attachment content"}, 404: {"model": ErrorResponse}},
    summary="Download an attachment",
)
async def download_file(
    chapter_id: UUID,
    file_name: str,
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> FileResponse:
    record, path = await chapter_service.get_file(db, identity, chapter_id, file_name)
    return FileResponse(
        path=path,
        media_type=record.file_type,
        filename=record.original_name,
        headers={"Cache-Control": "private, max-age=3600"},
    )


@router.delete(
    "/chapters/{chapter_id}/files/{file_name}",
    response_model=MessageResponse,
    responses={404: {"model": ErrorResponse}},
    summary="Delete an attachment",
)
async def delete_file(
    chapter_id: UUID,
    file_name: str,
    identity: CurrentIdentity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    await chapter_service.delete_file(db, identity, chapter_id, file_name)
    return MessageResponse(message="File deleted successfully")
