"""Shared FastAPI dependencies."""
from __future__ import annotations

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from lms_subscriptions.db.session import get_db
from lms_subscriptions.services.entitlement_service import EntitlementService
from lms_subscriptions.services.payments import PaymentGateway, get_payment_gateway
from lms_subscriptions.services.subscription_service import SubscriptionService
from lms_subscriptions.services.tier_service import TierService


async def get_db_session(session: AsyncSession = Depends(get_db)) -> AsyncSession:
    return session


def get_payments() -> PaymentGateway:
    return get_payment_gateway()


def get_tier_service(db: AsyncSession = Depends(get_db_session)) -> TierService:
    return TierService(db)


def get_subscription_service(
    db: AsyncSession = Depends(get_db_session),
    payments: PaymentGateway = Depends(get_payments),
) -> SubscriptionService:
    return SubscriptionService(db, payments=payments)


def get_entitlement_service(db: AsyncSession = Depends(get_db_session)) -> EntitlementService:
    return EntitlementService(db)
