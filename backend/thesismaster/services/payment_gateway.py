"""
ThesisMaster Backend - Simulated Payment Gateway
=================================================

What:  Default PaymentGateway used by POST /api/payments/process. It stands
       in for a mobile-money processor: it waits a configurable delay, then
       approves the charge with probability GATEWAY_SUCCESS_RATE (0.9).
How:   Calls pass through a circuit breaker, and the processor call itself is
       wrapped in a tenacity retry with exponential backoff + jitter for
       transient (connection/timeout) failures. Declines are not retried.
Who:   Instantiated once at import; payment_service and /health use it via
       get_payment_gateway(), which tests override.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter for transient failures
    2. Circuit breaker to stop hammering a processor that keeps failing
    3. Structured logging of every charge with payment id and latency
"""

import asyncio
import logging
import random
import time
import uuid
from typing import Callable, Optional

from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from thesismaster.config import settings
from thesismaster.domain.payment_state import generate_transaction_id
from thesismaster.exceptions import CircuitBreakerOpenError, PaymentGatewayError
from thesismaster.services.gateway_base import ChargeRequest, GatewayResult, PaymentGateway

logger = logging.getLogger(__name__)

DECLINE_REASON = "Insufficient funds or payment declined"


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Implements the circuit breaker pattern to prevent cascade failures.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow ONE request through
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Not thread-safe; uvicorn async workers share one event loop per process.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None
        self._clock = clock

    def can_execute(self) -> bool:
        """
        Returns True if a call may proceed.

        Raises:
            CircuitBreakerOpenError if circuit is OPEN and recovery timeout hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = self._clock() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info("Circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
                self.state = self.HALF_OPEN
                return True
            remaining = max(1, int(self.recovery_timeout - elapsed))
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (processor recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures", self.failure_count
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Simulated Gateway
# ══════════════════════════════════════════════════════════════════════════

class SimulatedPaymentGateway(PaymentGateway):
    """
    Approves a configurable share of charges after a configurable delay.

    Error Handling Chain:
        _submit raises ConnectionError/TimeoutError → tenacity retries
        → All retries fail → record circuit breaker failure → PaymentGatewayError
        → Threshold reached → later calls rejected instantly (CircuitBreakerOpenError)
    """

    def __init__(
        self,
        success_rate: Optional[float] = None,
        delay_seconds: Optional[float] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        rng: Optional[random.Random] = None,
    ):
        self.success_rate = settings.gateway_success_rate if success_rate is None else success_rate
        self.delay_seconds = (
            settings.gateway_delay_seconds if delay_seconds is None else delay_seconds
        )
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )
        self._rng = rng or random.Random()

        logger.info(
            "SimulatedPaymentGateway initialized with success_rate=%.2f, delay=%.1fs, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            self.success_rate,
            self.delay_seconds,
            self.circuit_breaker.failure_threshold,
            self.circuit_breaker.recovery_timeout,
        )

    @property
    def circuit_state(self) -> str:
        return self.circuit_breaker.state

    async def charge(self, request: ChargeRequest) -> GatewayResult:
        """
        Runs a charge through the circuit breaker and the retrying submit.

        Raises:
            CircuitBreakerOpenError: Circuit is open (too many recent failures)
            PaymentGatewayError: Processor failed after all retry attempts
        """
        trace_id = str(uuid.uuid4())[:8]
        self.circuit_breaker.can_execute()

        logger.info(
            "[%s] Charging payment %s: %.2f %s via %s",
            trace_id,
            request.payment_id,
            request.amount,
            request.currency,
            request.payment_method,
        )

        try:
            result = await self._submit_with_retry(request, trace_id)
            self.circuit_breaker.record_success()
            return result
        except CircuitBreakerOpenError:
            raise
        except (RetryError, ConnectionError, TimeoutError) as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] All gateway retries exhausted: %s", trace_id, str(e))
            raise PaymentGatewayError(
                message="Payment processor failed after multiple attempts. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"trace_id": trace_id, "attempts": settings.gateway_retry_max_attempts},
            )
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Unexpected gateway error: %s", trace_id, str(e), exc_info=True)
            raise PaymentGatewayError(
                message="An unexpected error occurred while processing the payment.",
                context={"trace_id": trace_id, "error_type": type(e).__name__},
            )

    @retry(
        retry=retry_if_exception_type((ConnectionError, TimeoutError)),
        stop=stop_after_attempt(settings.gateway_retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.gateway_retry_min_wait,
            max=settings.gateway_retry_max_wait,
            jitter=settings.gateway_retry_jitter,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _submit_with_retry(self, request: ChargeRequest, trace_id: str) -> GatewayResult:
        start_time = time.time()
        result = await self._submit(request)
        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            "[%s] Gateway answered in %.0fms: %s",
            trace_id,
            duration_ms,
            "approved" if result.success else "declined",
        )
        return result

    async def _submit(self, request: ChargeRequest) -> GatewayResult:
        """One round trip to the (simulated) processor."""
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        if self._rng.random() < self.success_rate:
            return GatewayResult(success=True, transaction_id=generate_transaction_id())
        return GatewayResult(success=False, failure_reason=DECLINE_REASON)

    async def health_check(self) -> bool:
        return self.circuit_breaker.state != CircuitBreaker.OPEN


# ── Singleton Instance ────────────────────────────────────────────────────
payment_gateway = SimulatedPaymentGateway()


def get_payment_gateway() -> PaymentGateway:
    """FastAPI dependency; tests replace it through app.dependency_overrides."""
    return payment_gateway
