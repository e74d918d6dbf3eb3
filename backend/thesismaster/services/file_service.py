"""
ThesisMaster Backend - Attachment Storage Service
==================================================

What:  Validates, stores, resolves and removes chapter attachments.
How:   Checks extension, size and real MIME type (libmagic), then writes the
       bytes with aiofiles under chapters/<chapter_id>/<uuid>_<clean name>.
Who:   chapter_service (upload, download, delete, chapter removal).

Security Model:
    1. Extension check:  .pdf, .doc, .docx, .txt only
    2. MIME type check:  header bytes must match a type allowed for that extension
    3. Size check:       MAX_FILE_SIZE (10MB by default)
    4. Stored name:      UUID prefix plus a sanitized original name
    5. Path resolution:  every read/delete is confined to STORAGE_ROOT
"""

import logging
import os
import re
import uuid
from pathlib import Path
from typing import Dict, FrozenSet, Optional, Tuple

import aiofiles
import magic

from thesismaster.config import settings
from thesismaster.exceptions import FileStorageError, ValidationError

logger = logging.getLogger(__name__)

# ── Allowed File Types ────────────────────────────────────────────────────
# Older libmagic builds report .docx as a plain zip and .doc as CDFV2
ALLOWED_TYPES: Dict[str, FrozenSet[str]] = {
    ".pdf": frozenset({"application/pdf"}),
    ".doc": frozenset({"application/msword", "application/x-ole-storage", "application/CDFV2"}),
    ".docx": frozenset(
        {
            "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
            "application/zip",
        }
    ),
    ".txt": frozenset({"text/plain"}),
}

ALLOWED_EXTENSIONS = frozenset(ALLOWED_TYPES)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def sanitize_filename(filename: str) -> str:
    """Keeps letters, digits, dot, dash and underscore; everything else becomes '_'."""
    name = Path(filename or "").name
    cleaned = _UNSAFE_CHARS.sub("_", name).strip("._")
    return cleaned[:150] or "file"


class FileService:
    """
    Manages the attachment lifecycle on the local file system.

    Directory Structure:
        storage/
        └── chapters/
            └── 3f2a.../
                ├── 9b1c..._Chapter_One.pdf
                └── 77e0..._notes.txt
    """

    def __init__(self, storage_root: Optional[str] = None):
        self.storage_root = Path(storage_root or settings.storage_root).resolve()
        self.storage_root.mkdir(parents=True, exist_ok=True)
        logger.info("FileService initialized with storage_root=%s", self.storage_root)

    def validate_extension(self, filename: str) -> str:
        """Returns the lowercase extension, or raises ValidationError."""
        ext = Path(filename or "").suffix.lower()
        if ext not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                message=(
                    f"File type '{ext or filename}' is not supported. "
                    f"Allowed types: {', '.join(sorted(ALLOWED_EXTENSIONS))}"
                ),
                field="file",
                context={"extension": ext, "allowed": sorted(ALLOWED_EXTENSIONS)},
            )
        return ext

    def validate_size(self, content_length: Optional[int], actual_size: int) -> None:
        """
        Checks the Content-Length header first, then the bytes actually read.

        Raises:
            ValidationError with a human-readable size limit message
        """
        max_mb = settings.max_file_size / (1024 * 1024)

        if content_length and content_length > settings.max_file_size:
            raise ValidationError(
                message=f"File size exceeds maximum of {max_mb:.0f}MB.",
                field="file",
                context={"max_size_mb": max_mb, "reported_size": content_length},
            )

        if actual_size > settings.max_file_size:
            raise ValidationError(
                message=(
                    f"File size ({actual_size / (1024 * 1024):.1f}MB) "
                    f"exceeds maximum of {max_mb:.0f}MB."
                ),
                field="file",
                context={"max_size_mb": max_mb, "actual_size": actual_size},
            )

        if actual_size == 0:
            raise ValidationError(message="Uploaded file is empty.", field="file")

    def _detect_mime(self, file_content: bytes) -> str:
        return magic.from_buffer(file_content[:4096], mime=True)

    def validate_mime_type(self, file_content: bytes, extension: str) -> str:
        """
        Reads the header bytes and checks the detected type against the set
        allowed for `extension`.

        Returns:
            Detected MIME type string (e.g., "application/pdf")

        Raises:
            ValidationError:  Content does not match the extension.
            FileStorageError: libmagic itself failed.
        """
        try:
            mime_type = self._detect_mime(file_content)
        except Exception as e:
            logger.error("MIME type detection failed: %s", str(e))
            raise FileStorageError(
                message="Could not verify file type. Please try again.",
                context={"error": str(e)},
            )

        allowed = ALLOWED_TYPES.get(extension, frozenset())
        if mime_type not in allowed:
            raise ValidationError(
                message=(
                    f"File content type '{mime_type}' does not match a '{extension}' document."
                ),
                field="file",
                context={"detected_mime": mime_type, "allowed": sorted(allowed)},
            )
        return mime_type

    def _generate_storage_path(self, chapter_id: uuid.UUID, filename: str) -> Tuple[Path, str, str]:
        """Returns (absolute_path, relative_path, stored_file_name)."""
        stored_name = f"{uuid.uuid4().hex}_{sanitize_filename(filename)}"
        relative_path = f"chapters/{chapter_id}/{stored_name}"
        return self.storage_root / relative_path, relative_path, stored_name

    def resolve(self, relative_path: str) -> Path:
        """
        Maps a stored relative path to an absolute path inside storage_root.

        Raises:
            FileStorageError: The path escapes storage_root.
        """
        absolute = (self.storage_root / relative_path).resolve()
        if not absolute.is_relative_to(self.storage_root):
            logger.warning("Path traversal attempt blocked: %s", relative_path)
            raise FileStorageError(
                message="Invalid file path", context={"relative_path": relative_path}
            )
        return absolute

    async def store_file(
        self, chapter_id: uuid.UUID, filename: str, content: bytes
    ) -> Tuple[str, str]:
        """
        Writes validated bytes to disk.

        Returns:
            Tuple of (relative_path, stored_file_name).

        Raises:
            FileStorageError if directory creation or file write fails.
        """
        absolute_path, relative_path, stored_name = self._generate_storage_path(
            chapter_id, filename
        )
        try:
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(absolute_path, "wb") as f:
                await f.write(content)
        except OSError as e:
            logger.error("Failed to store file at %s: %s", absolute_path, str(e))
            raise FileStorageError(
                message="Failed to save uploaded file. Please try again.",
                context={"path": str(absolute_path), "os_error": str(e)},
            )

        logger.info("File stored: %s (%d bytes)", relative_path, len(content))
        return relative_path, stored_name

    async def delete_file(self, relative_path: str) -> None:
        """
        Removes a stored file. A file that is already gone is not an error.

        Raises:
            FileStorageError: The OS refused the delete.
        """
        path = self.resolve(relative_path)
        try:
            if path.exists():
                os.remove(path)
                logger.info("Deleted file: %s", relative_path)
            else:
                logger.debug("Delete: file already gone: %s", relative_path)
        except OSError as e:
            logger.error("Failed to delete file %s: %s", relative_path, str(e))
            raise FileStorageError(
                message="Failed to delete file.",
                context={"path": relative_path, "os_error": str(e)},
            )

    async def cleanup_file(self, relative_path: str) -> None:
        """Best-effort removal of a file written by a request that then failed."""
        try:
            await self.delete_file(relative_path)
        except FileStorageError as e:
            logger.warning("Failed to clean up file %s: %s", relative_path, e.message)

    async def cleanup_chapter_dir(self, chapter_id: uuid.UUID) -> None:
        """Removes the (now empty) attachment directory of a deleted chapter."""
        directory = self.storage_root / "chapters" / str(chapter_id)
        try:
            if directory.exists() and not any(directory.iterdir()):
                directory.rmdir()
        except OSError as e:
            logger.warning("Failed to remove directory %s: %s", directory, str(e))

    async def validate_and_store(
        self,
        chapter_id: uuid.UUID,
        filename: str,
        content: bytes,
        content_length: Optional[int] = None,
    ) -> Tuple[str, str, str]:
        """
        Complete validation and storage pipeline, cheapest checks first.

        Returns:
            Tuple of (relative_path, stored_file_name, mime_type).
        """
        ext = self.validate_extension(filename)
        self.validate_size(content_length, len(content))
        mime_type = self.validate_mime_type(content, ext)
        relative_path, stored_name = await self.store_file(chapter_id, filename, content)
        return relative_path, stored_name, mime_type


# ── Singleton Instance ────────────────────────────────────────────────────
file_service = FileService()
