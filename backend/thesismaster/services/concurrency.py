"""
ThesisMaster Backend - Optimistic Concurrency Retry
====================================================

What:  Runs a unit of work that mutates versioned rows (chapters, payments)
       and retries it when a concurrent request changed those rows first.
How:   Chapter and Payment carry a SQLAlchemy version_id_col, so a lost race
       surfaces as StaleDataError on flush. The session is rolled back and
       the whole unit re-runs under tenacity (bounded attempts, randomized
       exponential backoff). The unit must reload its rows each time.
Who:   payment_service, chapter_service, writer_service.
"""

import logging
from typing import Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from thesismaster.config import settings
from thesismaster.exceptions import ConcurrencyConflictError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def retry_on_conflict(
    db: AsyncSession,
    unit: Callable[[], Awaitable[T]],
    description: str = "update",
) -> T:
    """
    Executes `unit` and retries it on StaleDataError.

    Raises:
        ConcurrencyConflictError: Every attempt lost the race.
    """
    try:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StaleDataError),
            stop=stop_after_attempt(settings.tx_retry_max_attempts),
            wait=wait_random_exponential(
                multiplier=settings.tx_retry_min_wait,
                max=settings.tx_retry_max_wait,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                try:
                    return await unit()
                except StaleDataError:
                    await db.rollback()
                    raise
    except StaleDataError as e:
        logger.warning("Concurrent modification during %s; retries exhausted: %s", description, e)
        raise ConcurrencyConflictError(
            context={"operation": description, "attempts": settings.tx_retry_max_attempts}
        )
