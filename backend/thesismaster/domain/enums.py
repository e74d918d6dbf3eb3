"""Enumerations shared by the domain core, ORM models and API schemas."""

from enum import Enum


class ChapterStatus(str, Enum):
    DRAFT = "draft"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REVISION = "revision"
    APPROVED = "approved"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class AcademicLevel(str, Enum):
    MASTERS = "masters"
    PHD = "phd"


class WorkType(str, Enum):
    COURSEWORK = "coursework"
    REVISION = "revision"
    STATISTICS = "statistics"


class Urgency(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"
    VERY_URGENT = "very_urgent"


class UserRole(str, Enum):
    STUDENT = "student"
    WRITER = "writer"
    ADMIN = "admin"
