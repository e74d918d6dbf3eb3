"""
ThesisMaster Backend - Shared Pydantic Schemas
===============================================

What:  Response shapes used by more than one router: errors, health and
       page/limit pagination metadata.
"""

from typing import Optional

from pydantic import BaseModel, Field


class Pagination(BaseModel):
    """Page/limit pagination block returned by the list endpoints."""

    page: int = Field(description="Current page (1-based)")
    limit: int = Field(description="Items per page")
    total: int = Field(description="Total items matching the filters")
    pages: int = Field(description="Total number of pages")

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        return cls(page=page, limit=limit, total=total, pages=(total + limit - 1) // limit)


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "business_rule_violation",
            "message": "Chapter is already paid for",
            "details": {"rule": "chapter_already_paid"},
            "request_id": "1f0c2a9b"
        }
    """
    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    payment_gateway: str = Field(description="Gateway circuit state: closed, half_open, open")
    uptime_seconds: float = Field(description="Seconds since service started")


class MessageResponse(BaseModel):
    message: str
