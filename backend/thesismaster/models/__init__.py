"""ORM models. Importing this package registers every table on Base.metadata."""

from thesismaster.models.chapter import Chapter, ChapterFeedback, ChapterFile, ChapterRevision
from thesismaster.models.payment import Payment

__all__ = ["Chapter", "ChapterFeedback", "ChapterFile", "ChapterRevision", "Payment"]
