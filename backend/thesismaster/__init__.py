"""
ThesisMaster Backend - Application Package
==========================================

What: Thesis-writing service: chapter management, pricing, simulated payments
      and writer earnings.
Who:  Imported by uvicorn (thesismaster.main:app), Alembic and pytest.

Architecture Note:
    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │         Services (Persistence)      │  ← load rows, apply outcomes, flush
    ├─────────────────────────────────────┤
    │      Domain (Pure Business Rules)   │  ← pricing, payment states, earnings
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Sessions)          │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    The domain package imports nothing from services, models or the database.
    Services translate ORM rows into domain value objects and write the
    resulting changes back inside the request transaction.
"""

__version__ = "1.0.0"
