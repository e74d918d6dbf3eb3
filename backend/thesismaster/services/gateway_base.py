"""
ThesisMaster Backend - Abstract Payment Gateway Interface
==========================================================

What:  Contract between the payment service and an external payment
       processor (M-Pesa, card acquirer, ...).
How:   Concrete gateways implement charge() and health_check(). A declined
       charge is a normal result (GatewayResult.success = False); only an
       unreachable or broken processor raises.
Who:   payment_service.process_payment(); the /health route.

Implementations:
    - SimulatedPaymentGateway: waits, then succeeds with a fixed probability
    - Tests inject their own deterministic subclasses
"""

import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ChargeRequest:
    payment_id: uuid.UUID
    amount: float
    currency: str
    payment_method: str
    phone_number: Optional[str] = None


@dataclass(frozen=True)
class GatewayResult:
    success: bool
    transaction_id: Optional[str] = None
    failure_reason: Optional[str] = None


class PaymentGateway(ABC):
    """
    Abstract interface for charging a payment.

    Contract:
        - charge() returns a GatewayResult for both approvals and declines
        - Implementations handle their own retry logic and error translation
        - Processor failures surface as PaymentGatewayError (or its
          CircuitBreakerOpenError subclass)
    """

    @abstractmethod
    async def charge(self, request: ChargeRequest) -> GatewayResult:
        """
        Submits a charge to the processor.

        Raises:
            PaymentGatewayError:     The processor failed after all retries.
            CircuitBreakerOpenError: Too many recent failures; call rejected.
        """
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """True when the processor is reachable. Must not create charges."""
        ...

    @property
    def circuit_state(self) -> str:
        """Circuit breaker state reported by /health; 'closed' when none is used."""
        return "closed"
