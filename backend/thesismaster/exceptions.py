"""
ThesisMaster Backend - Custom Exception Hierarchy
==================================================

What:  Defines application-specific exceptions for the error scenarios of
       chapters, payments, writer earnings and attachments.
How:   Each exception class carries a message and optional context dict.
       Global exception handlers (registered in main.py) catch these and
       return structured JSON error responses with the matching HTTP status.
Who:   Raised by the domain core, services, identity dependencies and
       middleware; caught by global handlers.

Exception Hierarchy:
    ThesisMasterError (base)
    ├── ValidationError            → 400 Bad Request (client can fix)
    ├── AuthenticationError        → 401 Unauthorized (no caller identity)
    ├── PermissionDeniedError      → 403 Forbidden (wrong role)
    ├── NotFoundError              → 404 Not Found (missing or not owned)
    ├── BusinessRuleError          → 409 Conflict (rule forbids the action)
    ├── ConcurrencyConflictError   → 409 Conflict (optimistic lock retries exhausted)
    ├── RateLimitExceededError     → 429 Too Many Requests
    ├── PaymentGatewayError        → 503 Service Unavailable
    │   └── CircuitBreakerOpenError
    ├── FileStorageError           → 500 Internal Server Error
    └── DatabaseError              → 500 Internal Server Error
"""

from typing import Any, Dict, Optional


class ThesisMasterError(Exception):
    """
    Base exception for all ThesisMaster application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged, returned only where the
                  handler opts in)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(ThesisMasterError):
    """
    Raised when client input fails a business validation.

    When:    Negative word count, unknown status, bad attachment type or size,
             out-of-range refund, missing payout phone number.
    HTTP:    400 Bad Request

    Pydantic schema failures keep FastAPI's own 422; this class covers the
    checks the schemas cannot express.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(ThesisMasterError):
    """Raised when the request carries no usable caller identity (401)."""

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PermissionDeniedError(ThesisMasterError):
    """Raised when the caller's role may not use the endpoint (403)."""

    def __init__(
        self,
        message: str = "You do not have permission to perform this action",
        required_role: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if required_role:
            ctx["required_role"] = required_role
        super().__init__(message=message, context=ctx)


class NotFoundError(ThesisMasterError):
    """
    Raised when a requested resource does not exist.

    When:    GET /api/chapters/{id} with an unknown UUID, or a record owned
             by someone else. Both cases produce the same message so that
             existence is never leaked to non-owners.
    HTTP:    404 Not Found
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class BusinessRuleError(ThesisMasterError):
    """
    Raised when the request is well-formed but a business rule forbids it.

    When:    Paying an already-paid chapter, deleting a completed payment,
             an illegal payment transition, a duplicate chapter number,
             a payout larger than the available earnings.
    HTTP:    409 Conflict
    """

    def __init__(
        self,
        message: str = "The requested operation is not allowed",
        rule: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if rule:
            ctx["rule"] = rule
        super().__init__(message=message, context=ctx)
        self.rule = rule


class ConcurrencyConflictError(ThesisMasterError):
    """
    Raised when a chapter/payment update keeps losing to concurrent writers.

    When:    Every tenacity attempt hit a StaleDataError on flush.
    HTTP:    409 Conflict
    """

    def __init__(
        self,
        message: str = "The record was modified by another request. Please retry.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class PaymentGatewayError(ThesisMasterError):
    """
    Raised when the payment processor fails after all retries.

    When:    After tenacity retries are exhausted (default: 3 attempts with backoff).
    HTTP:    503 Service Unavailable

    Response includes retry_after when the circuit breaker can estimate it.
    """

    def __init__(
        self,
        message: str = "Payment processor is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(PaymentGatewayError):
    """
    Raised when the gateway circuit breaker is in OPEN state.

    How circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After 5 failures → OPEN (reject all calls for 60 seconds)
        → After 60 seconds → HALF-OPEN (allow one test call)
        → If test succeeds → CLOSED (resume normal operation)
        → If test fails → OPEN again (reset 60-second timer)
    """

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Payment processor is temporarily unavailable due to repeated failures. "
            f"Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, retry_after=recovery_time, context=ctx)
        self.recovery_time = recovery_time


class FileStorageError(ThesisMasterError):
    """
    Raised when file system operations fail.

    When:    Disk full, permission denied, directory not writable, I/O error.
    HTTP:    500 Internal Server Error

    The client receives a generic message; paths stay in the server log.
    """

    def __init__(
        self,
        message: str = "File storage operation failed",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(ThesisMasterError):
    """
    Raised when database operations fail unexpectedly.

    When:    Connection lost mid-query, deadlock, unexpected constraint failure.
    HTTP:    500 Internal Server Error

    Security Note:
        The message returned to the client is always generic. SQL text and
        constraint names are logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class RateLimitExceededError(ThesisMasterError):
    """
    Raised when a caller exceeds the sliding-window request limit.

    When:    After rate_limit_requests (default: 100) in rate_limit_window (default: 1 hour).
    HTTP:    429 Too Many Requests
    """

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
