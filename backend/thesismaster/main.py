"""
ThesisMaster Backend - FastAPI Application Factory
===================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() registers middleware, exception handlers and routers;
       uvicorn serves the module-level `app` (uvicorn thesismaster.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌──────────────┐ ┌──────────┐ ┌─────────────────┐       │
    │  │  Req ID      │→│ Logging  │→│  Rate Limit     │       │
    │  └──────────────┘ └──────────┘ └─────────────────┘       │
    │                                                          │
    │  Routes:                                                 │
    │  /health  /api/pricing  /api/chapters  /api/payments     │
    │  /api/dashboard  /api/writer  /api/admin                 │
    │                                                          │
    │  Exception Handlers:                                     │
    │  Validation→400 │ Auth→401/403 │ NotFound→404            │
    │  BusinessRule/Conflict→409 │ RateLimit→429               │
    │  Gateway→503 │ Storage/DB→500                            │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging, configuration check, storage directory
    Shutdown: dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from thesismaster import __version__
from thesismaster.config import settings
from thesismaster.database import dispose_engine
from thesismaster.exceptions import (
    AuthenticationError,
    BusinessRuleError,
    CircuitBreakerOpenError,
    ConcurrencyConflictError,
    DatabaseError,
    FileStorageError,
    NotFoundError,
    PaymentGatewayError,
    PermissionDeniedError,
    RateLimitExceededError,
    ThesisMasterError,
    ValidationError,
)
from thesismaster.middleware.logging import RequestLoggingMiddleware
from thesismaster.middleware.rate_limit import RateLimitMiddleware, SlidingWindowRateLimiter
from thesismaster.middleware.request_id import RequestIDMiddleware, request_id_var
from thesismaster.routes import admin, chapters, dashboard, health, payments, pricing, writer

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging() -> None:
    """
    Configure the root logger once, at startup.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s
    Access lines (thesismaster.access) carry the request id in the message.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party libraries are chatty at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("ThesisMaster Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: health checks report the problem
        logger.error("Configuration error: %s", str(e))
        logger.error("Fix the configuration and restart the server.")

    storage = Path(settings.storage_root)
    storage.mkdir(parents=True, exist_ok=True)
    logger.info("Storage directory: %s", storage.resolve())
    logger.info(
        "Pricing: %d %s per page of %d words, writer share %.0f%%",
        settings.price_per_page,
        settings.currency,
        settings.words_per_page,
        settings.writer_share * 100,
    )
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("ThesisMaster Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def _error_response(
    status_code: int,
    error: str,
    message: str,
    details: Optional[dict] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    content = {"error": error, "message": message, "request_id": request_id_var.get("")}
    if details:
        content["details"] = details
    return JSONResponse(status_code=status_code, content=content, headers=headers)


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map the ThesisMasterError hierarchy to HTTP responses.

    Handler hierarchy:
        ValidationError          → 400
        AuthenticationError      → 401
        PermissionDeniedError    → 403
        NotFoundError            → 404
        BusinessRuleError        → 409
        ConcurrencyConflictError → 409
        RateLimitExceededError   → 429 (+ Retry-After)
        CircuitBreakerOpenError  → 503 (+ Retry-After)
        PaymentGatewayError      → 503 (+ Retry-After when known)
        FileStorageError         → 500
        DatabaseError            → 500 (generic message)
        ThesisMasterError        → 500
        Exception                → 500 (traceback logged, never returned)
    """

    @app.exception_handler(ValidationError)
    async def handle_validation_error(request: Request, exc: ValidationError):
        logger.warning("[%s] Validation error: %s", request_id_var.get(""), exc.message)
        return _error_response(400, "validation_error", exc.message, exc.context)

    @app.exception_handler(AuthenticationError)
    async def handle_authentication_error(request: Request, exc: AuthenticationError):
        return _error_response(401, "unauthorized", exc.message)

    @app.exception_handler(PermissionDeniedError)
    async def handle_permission_denied(request: Request, exc: PermissionDeniedError):
        return _error_response(403, "forbidden", exc.message, exc.context)

    @app.exception_handler(NotFoundError)
    async def handle_not_found(request: Request, exc: NotFoundError):
        return _error_response(404, "not_found", exc.message)

    @app.exception_handler(BusinessRuleError)
    async def handle_business_rule(request: Request, exc: BusinessRuleError):
        logger.info("[%s] Business rule rejected request: %s", request_id_var.get(""), exc.message)
        return _error_response(409, "business_rule_violation", exc.message, exc.context)

    @app.exception_handler(ConcurrencyConflictError)
    async def handle_concurrency_conflict(request: Request, exc: ConcurrencyConflictError):
        logger.warning("[%s] Concurrency conflict: %s", request_id_var.get(""), exc.message)
        return _error_response(409, "concurrency_conflict", exc.message)

    @app.exception_handler(RateLimitExceededError)
    async def handle_rate_limit(request: Request, exc: RateLimitExceededError):
        return _error_response(
            429,
            "rate_limit_exceeded",
            exc.message,
            {"retry_after": exc.retry_after},
            headers={"Retry-After": str(exc.retry_after)},
        )

    @app.exception_handler(CircuitBreakerOpenError)
    async def handle_circuit_breaker(request: Request, exc: CircuitBreakerOpenError):
        logger.warning("[%s] Circuit breaker open: %s", request_id_var.get(""), exc.message)
        return _error_response(
            503,
            "service_unavailable",
            exc.message,
            {"recovery_time": exc.recovery_time},
            headers={"Retry-After": str(exc.recovery_time)},
        )

    @app.exception_handler(PaymentGatewayError)
    async def handle_gateway_error(request: Request, exc: PaymentGatewayError):
        logger.error("[%s] Payment gateway error: %s", request_id_var.get(""), exc.message)
        headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
        return _error_response(503, "payment_gateway_error", exc.message, headers=headers)

    @app.exception_handler(FileStorageError)
    async def handle_file_storage_error(request: Request, exc: FileStorageError):
        logger.error(
            "[%s] File storage error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(DatabaseError)
    async def handle_database_error(request: Request, exc: DatabaseError):
        logger.error(
            "[%s] Database error: %s | Context: %s",
            request_id_var.get(""),
            exc.message,
            exc.context,
        )
        return _error_response(
            500, "server_error", "An internal error occurred. Please try again later."
        )

    @app.exception_handler(ThesisMasterError)
    async def handle_application_error(request: Request, exc: ThesisMasterError):
        logger.error("[%s] Application error: %s", request_id_var.get(""), exc.message)
        return _error_response(500, "server_error", exc.message)

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "[%s] Unexpected error: %s",
            request_id_var.get(""),
            str(exc),
            exc_info=True,
        )
        return _error_response(
            500,
            "internal_server_error",
            "An unexpected error occurred. Please try again or contact support.",
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(rate_limiter: Optional[SlidingWindowRateLimiter] = None) -> FastAPI:
    """
    Assemble the application.

    Args:
        rate_limiter: Limiter shared by all requests; built from settings
                      when omitted.
    """
    app = FastAPI(
        title="ThesisMaster API",
        description=(
            "Thesis chapter management: pricing, payments with chapter side "
            "effects, and writer assignments and earnings."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware runs in reverse order of addition:
    # RequestID → Logging → RateLimit → GZip → CORS
    # so rejected requests are still logged and carry a request id
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        RateLimitMiddleware,
        limiter=rate_limiter
        or SlidingWindowRateLimiter(
            max_requests=settings.rate_limit_requests,
            window_seconds=settings.rate_limit_window,
            max_clients=settings.rate_limit_max_clients,
        ),
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)

    register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(pricing.router)
    app.include_router(chapters.router)
    app.include_router(payments.router)
    app.include_router(dashboard.router)
    app.include_router(writer.router)
    app.include_router(admin.router)

    return app


app = create_app()
