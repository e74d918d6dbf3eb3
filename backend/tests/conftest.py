"""
ThesisMaster Backend - Test Configuration (conftest.py)
========================================================

What:  Shared pytest fixtures for the test suite.
How:   Every test gets its own SQLite database file (aiosqlite) with the
       full schema created from Base.metadata, so services run against a
       real database without PostgreSQL.

Fixture Hierarchy:
    Function-scoped:
    ├── engine / db_session: fresh SQLite schema per test
    ├── student_id / writer_id / other_id / admin_id: caller identities
    ├── make_chapter: creates a chapter through ChapterService
    ├── approving_gateway / declining_gateway: deterministic PaymentGateways
    └── client: HTTPX AsyncClient against a fresh app, DB and gateway overridden
"""

import os
import tempfile

# Settings are read at import time; configure them before any thesismaster import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///./thesismaster_import.db"
os.environ["STORAGE_ROOT"] = tempfile.mkdtemp(prefix="thesismaster_test_")
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["GATEWAY_DELAY_SECONDS"] = "0"
os.environ["GATEWAY_RETRY_MIN_WAIT"] = "0"
os.environ["GATEWAY_RETRY_JITTER"] = "0"
os.environ["TX_RETRY_MIN_WAIT"] = "0"
os.environ["TX_RETRY_MAX_WAIT"] = "0"

from typing import Dict, List, Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from thesismaster.database import Base, get_db_session
from thesismaster.schemas.chapter import ChapterCreate
from thesismaster.services.chapter_service import chapter_service
from thesismaster.services.gateway_base import ChargeRequest, GatewayResult, PaymentGateway
from thesismaster.services.payment_gateway import get_payment_gateway

import thesismaster.models  # noqa: F401


class StubGateway(PaymentGateway):
    """Answers every charge with the same GatewayResult and records the requests."""

    def __init__(self, result: GatewayResult):
        self.result = result
        self.requests: List[ChargeRequest] = []

    async def charge(self, request: ChargeRequest) -> GatewayResult:
        self.requests.append(request)
        return self.result

    async def health_check(self) -> bool:
        return True


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════

@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """
    A session on the per-test database.

    Services only flush; tests that need a committed state call commit().
    """
    async with session_factory() as session:
        yield session
        await session.rollback()


# ══════════════════════════════════════════════════════════════════════════
# Identities and Data
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def student_id() -> UUID:
    return uuid4()


@pytest.fixture
def writer_id() -> UUID:
    return uuid4()


@pytest.fixture
def other_id() -> UUID:
    return uuid4()


@pytest.fixture
def admin_id() -> UUID:
    return uuid4()


@pytest.fixture
def make_chapter():
    """
    Creates a chapter through the service.

    Usage:
        chapter = await make_chapter(db_session, student_id, chapter_number=2)
    """

    async def _make(db, owner_id: UUID, **overrides):
        data = {
            "title": "Introduction",
            "chapter_number": 1,
            "content": "",
            "target_word_count": 2000,
        }
        data.update(overrides)
        return await chapter_service.create_chapter(db, owner_id, ChapterCreate(**data))

    return _make


# ══════════════════════════════════════════════════════════════════════════
# Payment Gateways
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def approving_gateway() -> StubGateway:
    return StubGateway(GatewayResult(success=True, transaction_id="TXN_1700000000000_ABCDEF0123"))


@pytest.fixture
def declining_gateway() -> StubGateway:
    return StubGateway(
        GatewayResult(success=False, failure_reason="Insufficient funds or payment declined")
    )


# ══════════════════════════════════════════════════════════════════════════
# API Client
# ══════════════════════════════════════════════════════════════════════════

def auth_headers(user_id: UUID, role: Optional[str] = None) -> Dict[str, str]:
    headers = {"X-User-Id": str(user_id)}
    if role:
        headers["X-User-Role"] = role
    return headers


@pytest.fixture
def gateway_override(approving_gateway) -> Dict[str, PaymentGateway]:
    """Mutable holder so a test can swap the gateway the client uses."""
    return {"gateway": approving_gateway}


@pytest_asyncio.fixture
async def client(session_factory, gateway_override):
    """
    HTTPX AsyncClient bound to a fresh app instance.

    Requests share the per-test database through the same commit/rollback
    contract as get_db_session.
    """
    from thesismaster.main import create_app
    from thesismaster.middleware.rate_limit import SlidingWindowRateLimiter

    app = create_app(rate_limiter=SlidingWindowRateLimiter(max_requests=1000, window_seconds=60))

    async def override_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_payment_gateway] = lambda: gateway_override["gateway"]

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
