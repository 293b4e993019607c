"""
Payment gateway abstraction.

Paid tiers start as ``pending`` subscriptions and hand off to a gateway to
collect the money. Confirmation arrives out of band and ends in
:meth:`SubscriptionService.activate_subscription`.
"""
from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

import httpx

from lms_subscriptions.core.config import settings
from lms_subscriptions.core.exceptions import PaymentInitiationError

logger = logging.getLogger(__name__)


@dataclass
class PaymentResult:
    transaction_id: str
    provider: str
    status: str = "pending"
    checkout_url: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class PaymentGateway(ABC):
    """Abstract interface for payment initiation."""

    @abstractmethod
    async def create_payment(
        self,
        *,
        user_id: UUID,
        amount: Decimal,
        currency: str,
        provider: str,
        metadata: Dict[str, Any],
    ) -> PaymentResult:
        """
        Start a payment for ``amount`` in ``currency``.

        Args:
            user_id: Paying user
            amount: Amount to charge
            currency: ISO 4217 code
            provider: Requested provider (``manual``, ``stripe``, ``paystack``)
            metadata: Correlation data echoed back on confirmation

        Returns:
            PaymentResult describing the pending transaction

        Raises:
            PaymentInitiationError: when the payment could not be started
        """


class ManualPaymentGateway(PaymentGateway):
    """Offline payments: issue a reference and wait for an admin to activate."""

    async def create_payment(
        self,
        *,
        user_id: UUID,
        amount: Decimal,
        currency: str,
        provider: str,
        metadata: Dict[str, Any],
    ) -> PaymentResult:
        transaction_id = uuid.uuid4().hex
        logger.info(
            "Manual payment reference issued",
            extra={
                "user_id": str(user_id),
                "transaction_id": transaction_id,
                "amount": str(amount),
                "currency": currency,
            },
        )
        return PaymentResult(
            transaction_id=transaction_id,
            provider=provider,
            raw={"metadata": metadata},
        )


class HttpPaymentGateway(PaymentGateway):
    """Delegates to the platform payment service over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def create_payment(
        self,
        *,
        user_id: UUID,
        amount: Decimal,
        currency: str,
        provider: str,
        metadata: Dict[str, Any],
    ) -> PaymentResult:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        payload = {
            "user_id": str(user_id),
            "amount": str(amount),
            "currency": currency,
            "provider": provider,
            "metadata": metadata,
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
            ) as client:
                response = await client.post("/payments", json=payload, headers=headers)
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPError as exc:
            raise PaymentInitiationError(
                "Failed to initiate payment",
                details=type(exc).__name__,
            ) from exc

        transaction_id = body.get("transaction_id") or body.get("transactionId")
        if not transaction_id:
            raise PaymentInitiationError(
                "Failed to initiate payment", details="missing transaction id"
            )
        return PaymentResult(
            transaction_id=str(transaction_id),
            provider=body.get("provider", provider),
            status=body.get("status", "pending"),
            checkout_url=body.get("checkout_url") or body.get("authorization_url"),
            raw=body,
        )


def get_payment_gateway() -> PaymentGateway:
    if settings.payments.service_url:
        return HttpPaymentGateway(
            settings.payments.service_url,
            api_key=settings.payments.api_key,
            timeout=settings.payments.timeout_seconds,
        )
    return ManualPaymentGateway()
