"""Subscription lifecycle.

State machine::

    pending --activate--> active --cancel--> cancelled
                           |  ^
                   sweep   |  | renew
                           v  |
                          expired

Every transition that creates, ends or replaces an active subscription keeps
the user's active-subscription pointer in step through
:class:`~lms_subscriptions.services.entitlement_cache.EntitlementCache`, inside
the same transaction as the status change.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from lms_subscriptions.core.config import settings
from lms_subscriptions.core.dates import add_months, as_utc, utcnow
from lms_subscriptions.core.exceptions import (
    ConflictError,
    NotFoundError,
    PaymentInitiationError,
    ValidationFailedError,
)
from lms_subscriptions.db.models import (
    PaymentProvider,
    SubscriptionStatus,
    UserSubscription,
)
from lms_subscriptions.repositories.subscription_repo import SubscriptionRepo
from lms_subscriptions.repositories.tier_repo import TierRepo
from lms_subscriptions.repositories.user_repo import UserRepo
from lms_subscriptions.schemas.common import Pagination
from lms_subscriptions.schemas.subscription import SubscriptionUpdate
from lms_subscriptions.services.entitlement_cache import (
    EntitlementCache,
    UserEntitlementCache,
)
from lms_subscriptions.services.payments import (
    PaymentGateway,
    PaymentResult,
    get_payment_gateway,
)
from lms_subscriptions.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

ACTIVE = SubscriptionStatus.ACTIVE.value
DUPLICATE_ACTIVE = "User already has an active subscription to this tier"
NOT_RENEWABLE = "Only active or expired subscriptions can be renewed"
RENEWABLE = frozenset({ACTIVE, SubscriptionStatus.EXPIRED.value})
SUBSCRIPTION_NOT_FOUND = "Subscription not found"
TIER_NOT_FOUND = "Subscription tier not found"
USER_NOT_FOUND = "User not found"


class SubscriptionService:
    """Creates and moves user subscriptions through their lifecycle."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        cache: Optional[EntitlementCache] = None,
        payments: Optional[PaymentGateway] = None,
    ) -> None:
        self.session = session
        self.subscriptions = SubscriptionRepo(session)
        self.tiers = TierRepo(session)
        self.users = UserRepo(session)
        self.cache = cache or UserEntitlementCache(session)
        self.payments = payments or get_payment_gateway()

    async def _details(self, subscription_id: UUID) -> UserSubscription:
        subscription = await self.subscriptions.get_with_details(subscription_id)
        if subscription is None:
            raise NotFoundError(SUBSCRIPTION_NOT_FOUND)
        return subscription

    async def subscribe_user(
        self,
        user_id: UUID,
        tier_id: UUID,
        *,
        payment_provider: str = PaymentProvider.MANUAL.value,
        subscription_id: Optional[str] = None,
        status: Optional[SubscriptionStatus] = None,
        amount_paid: Optional[Decimal] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> UserSubscription:
        """Create a subscription for ``user_id`` on ``tier_id``.

        Without an explicit ``status`` a free tier starts ``active`` and a paid
        tier starts ``pending``. An active start stamps ``started_at``,
        ``expires_at`` and ``amount_paid`` and points the user at the new row.
        """

        async with unit_of_work(
            self.session,
            "subscribe_user",
            conflict_message=DUPLICATE_ACTIVE,
            user_id=str(user_id),
            tier_id=str(tier_id),
        ):
            tier = await self.tiers.get(tier_id)
            if tier is None:
                raise NotFoundError(TIER_NOT_FOUND)
            if await self.users.get(user_id) is None:
                raise NotFoundError(USER_NOT_FOUND)
            # The partial unique index on (user_id, tier_id) backs this check up.
            if await self.subscriptions.find_active(user_id, tier_id) is not None:
                raise ConflictError(DUPLICATE_ACTIVE)

            if status is None:
                status = SubscriptionStatus.ACTIVE if tier.is_free else SubscriptionStatus.PENDING
            status = SubscriptionStatus(status)

            started_at = expires_at = None
            if status is SubscriptionStatus.ACTIVE:
                started_at = utcnow()
                expires_at = add_months(started_at, tier.billing_cycle_months)
                if amount_paid is None:
                    amount_paid = tier.price

            subscription = await self.subscriptions.create(
                user_id=user_id,
                tier_id=tier_id,
                status=status.value,
                started_at=started_at,
                expires_at=expires_at,
                payment_provider=payment_provider,
                subscription_id=subscription_id,
                amount_paid=amount_paid,
                currency=tier.currency,
                metadata_=dict(metadata or {}),
            )
            if status is SubscriptionStatus.ACTIVE:
                await self.cache.set_active(user_id, subscription.id)

        logger.info(
            "Subscription created",
            extra={
                "subscription_id": str(subscription.id),
                "user_id": str(user_id),
                "tier_id": str(tier_id),
                "status": status.value,
            },
        )
        return await self._details(subscription.id)

    async def start_subscription(
        self,
        user_id: UUID,
        tier_id: UUID,
        *,
        payment_provider: str = PaymentProvider.MANUAL.value,
        subscription_id: Optional[str] = None,
    ) -> Tuple[UserSubscription, Optional[PaymentResult]]:
        """Subscribe flow used by the API.

        Free tiers are activated immediately. Paid tiers are stored as
        ``pending`` and a payment is started; if the gateway fails the
        subscription stays pending and :class:`PaymentInitiationError` is
        raised so the caller can retry the payment.
        """

        tier = await self.tiers.get(tier_id)
        if tier is None:
            raise NotFoundError(TIER_NOT_FOUND)

        if tier.is_free:
            subscription = await self.subscribe_user(
                user_id,
                tier_id,
                payment_provider=PaymentProvider.NONE.value,
                status=SubscriptionStatus.ACTIVE,
            )
            return subscription, None

        subscription = await self.subscribe_user(
            user_id,
            tier_id,
            payment_provider=payment_provider,
            subscription_id=subscription_id,
            status=SubscriptionStatus.PENDING,
        )
        try:
            payment = await self.payments.create_payment(
                user_id=user_id,
                amount=tier.price,
                currency=tier.currency,
                provider=payment_provider,
                metadata={
                    "type": "subscription_payment",
                    "subscription_id": str(subscription.id),
                    "tier_id": str(tier_id),
                },
            )
        except PaymentInitiationError as exc:
            exc.subscription_id = subscription.id
            logger.warning(
                "Payment initiation failed",
                extra={"subscription_id": str(subscription.id), "user_id": str(user_id)},
            )
            raise
        except Exception as exc:
            logger.exception(
                "Payment gateway error",
                extra={"subscription_id": str(subscription.id), "user_id": str(user_id)},
            )
            raise PaymentInitiationError(
                "Failed to initiate payment", subscription_id=subscription.id
            ) from exc

        logger.info(
            "Subscription payment initiated",
            extra={
                "subscription_id": str(subscription.id),
                "transaction_id": payment.transaction_id,
            },
        )
        return subscription, payment

    async def _activate(
        self,
        subscription: UserSubscription,
        *,
        amount_paid: Optional[Decimal] = None,
        payment_provider: Optional[str] = None,
        external_subscription_id: Optional[str] = None,
    ) -> None:
        started_at = utcnow()
        subscription.status = ACTIVE
        subscription.started_at = started_at
        subscription.expires_at = add_months(started_at, subscription.tier.billing_cycle_months)
        if amount_paid is not None:
            subscription.amount_paid = amount_paid
        if payment_provider:
            subscription.payment_provider = payment_provider
        if external_subscription_id:
            subscription.subscription_id = external_subscription_id
        await self.subscriptions.save(subscription)
        await self.cache.set_active(subscription.user_id, subscription.id)

    async def _cancel(self, subscription: UserSubscription, reason: Optional[str]) -> None:
        now = utcnow()
        subscription.status = SubscriptionStatus.CANCELLED.value
        subscription.cancelled_at = now
        # Merge, existing keys survive.
        subscription.metadata_ = {
            **(subscription.metadata_ or {}),
            "cancellation_reason": reason,
            "cancelled_at": now.isoformat(),
        }
        await self.subscriptions.save(subscription)
        await self.cache.clear_if_points_to(subscription.id)

    async def _renew(self, subscription: UserSubscription, extend_months: Optional[int]) -> int:
        if subscription.status not in RENEWABLE:
            raise ConflictError(NOT_RENEWABLE, details={"status": subscription.status})
        months = extend_months or subscription.tier.billing_cycle_months
        base = as_utc(subscription.expires_at) or utcnow()
        subscription.expires_at = add_months(base, months)
        subscription.status = ACTIVE
        await self.subscriptions.save(subscription)
        return months

    async def _expire(self, subscription: UserSubscription) -> None:
        subscription.status = SubscriptionStatus.EXPIRED.value
        await self.subscriptions.save(subscription)
        await self.cache.clear_if_points_to(subscription.id)

    async def _reset_to_pending(self, subscription: UserSubscription) -> None:
        subscription.status = SubscriptionStatus.PENDING.value
        subscription.started_at = None
        subscription.expires_at = None
        await self.subscriptions.save(subscription)
        await self.cache.clear_if_points_to(subscription.id)

    async def activate_subscription(
        self,
        subscription_id: UUID,
        *,
        amount_paid: Optional[Decimal] = None,
        payment_provider: Optional[str] = None,
        external_subscription_id: Optional[str] = None,
    ) -> UserSubscription:
        """Start the billing period; a no-op for an already active subscription."""

        async with unit_of_work(
            self.session,
            "activate_subscription",
            conflict_message=DUPLICATE_ACTIVE,
            subscription_id=str(subscription_id),
        ):
            subscription = await self.subscriptions.get_with_tier(subscription_id)
            if subscription is None:
                raise NotFoundError(SUBSCRIPTION_NOT_FOUND)
            if subscription.is_active:
                return await self._details(subscription_id)
            await self._activate(
                subscription,
                amount_paid=amount_paid,
                payment_provider=payment_provider,
                external_subscription_id=external_subscription_id,
            )

        logger.info(
            "Subscription activated",
            extra={"subscription_id": str(subscription_id), "user_id": str(subscription.user_id)},
        )
        return await self._details(subscription_id)

    async def cancel_subscription(
        self, subscription_id: UUID, reason: Optional[str] = None
    ) -> UserSubscription:
        async with unit_of_work(
            self.session, "cancel_subscription", subscription_id=str(subscription_id)
        ):
            subscription = await self.subscriptions.get(subscription_id)
            if subscription is None:
                raise NotFoundError(SUBSCRIPTION_NOT_FOUND)
            await self._cancel(subscription, reason)

        logger.info(
            "Subscription cancelled",
            extra={"subscription_id": str(subscription_id), "reason": reason},
        )
        return await self._details(subscription_id)

    async def renew_subscription(
        self, subscription_id: UUID, extend_months: Optional[int] = None
    ) -> UserSubscription:
        """Push ``expires_at`` forward and force the status back to active.

        Only active or expired subscriptions renew; pending ones must be
        activated and cancelled ones stay ended. The extension starts from the
        current expiry (or now when there is none). ``started_at`` and the
        user's pointer are left alone.
        """

        async with unit_of_work(
            self.session,
            "renew_subscription",
            conflict_message=DUPLICATE_ACTIVE,
            subscription_id=str(subscription_id),
        ):
            subscription = await self.subscriptions.get_with_tier(subscription_id)
            if subscription is None:
                raise NotFoundError(SUBSCRIPTION_NOT_FOUND)
            months = await self._renew(subscription, extend_months)

        logger.info(
            "Subscription renewed",
            extra={"subscription_id": str(subscription_id), "months": months},
        )
        return await self._details(subscription_id)

    async def expire_subscription(self, subscription_id: UUID) -> UserSubscription:
        async with unit_of_work(
            self.session, "expire_subscription", subscription_id=str(subscription_id)
        ):
            subscription = await self.subscriptions.get(subscription_id)
            if subscription is None:
                raise NotFoundError(SUBSCRIPTION_NOT_FOUND)
            await self._expire(subscription)

        logger.info("Subscription expired", extra={"subscription_id": str(subscription_id)})
        return await self._details(subscription_id)

    async def check_subscription_expired(self, user_id: UUID) -> int:
        """Sweep the user's active subscriptions whose expiry has passed.

        Returns the number of subscriptions moved to ``expired``.
        """

        async with unit_of_work(self.session, "check_subscription_expired", user_id=str(user_id)):
            expired_ids = await self.subscriptions.expired_active_ids(user_id, utcnow())
            if expired_ids:
                await self.subscriptions.mark_expired(expired_ids)
                for subscription_id in expired_ids:
                    await self.cache.clear_if_points_to(subscription_id)

        if expired_ids:
            logger.info(
                "Expired subscriptions swept",
                extra={"user_id": str(user_id), "count": len(expired_ids)},
            )
        return len(expired_ids)

    async def update_subscription(
        self, subscription_id: UUID, updates: SubscriptionUpdate
    ) -> UserSubscription:
        """Admin update.

        Payment fields and the status change are applied in one transaction,
        so a rejected transition leaves the row untouched. A status change goes
        through the matching lifecycle step to keep the user's pointer correct.
        Extending a subscription that cannot renew activates it first.
        """

        fields = updates.model_dump(
            exclude_unset=True,
            include={"payment_provider", "subscription_id", "amount_paid", "currency"},
        )
        target = updates.status
        if target is SubscriptionStatus.CANCELLED and not updates.confirmed:
            raise ValidationFailedError(
                "Confirmation required for cancellation",
                details={"requires_confirmation": True, "action": "Cancel subscription"},
            )

        async with unit_of_work(
            self.session,
            "update_subscription",
            conflict_message=DUPLICATE_ACTIVE,
            subscription_id=str(subscription_id),
        ):
            subscription = await self.subscriptions.get_with_tier(subscription_id)
            if subscription is None:
                raise NotFoundError(SUBSCRIPTION_NOT_FOUND)
            for key, value in fields.items():
                if value is None and key in {"payment_provider", "currency"}:
                    continue
                setattr(subscription, key, value.upper() if key == "currency" else value)

            if target is SubscriptionStatus.CANCELLED:
                await self._cancel(subscription, None)
            elif target is SubscriptionStatus.ACTIVE:
                renewable = bool(updates.extend_months) and subscription.status in RENEWABLE
                if not subscription.is_active and not renewable:
                    await self._activate(subscription)
                if updates.extend_months:
                    await self._renew(subscription, updates.extend_months)
            elif target is SubscriptionStatus.EXPIRED:
                await self._expire(subscription)
            elif target is SubscriptionStatus.PENDING:
                await self._reset_to_pending(subscription)
            else:
                await self.subscriptions.save(subscription)

        logger.info(
            "Subscription updated",
            extra={
                "subscription_id": str(subscription_id),
                "fields": sorted(fields),
                "status": target.value if target else None,
            },
        )
        return await self._details(subscription_id)

    async def get_user_active_subscription(self, user_id: UUID) -> Optional[UserSubscription]:
        return await self.subscriptions.latest_active_for_user(user_id)

    async def get_by_id(self, subscription_id: UUID) -> Optional[UserSubscription]:
        return await self.subscriptions.get_with_details(subscription_id)

    async def _page(
        self,
        *,
        page: int,
        limit: int,
        sort_by: str,
        sort_order: str,
        **filters: Any,
    ) -> Tuple[List[UserSubscription], Pagination]:
        limit = min(max(limit, 1), settings.subscriptions.max_page_size)
        page = max(page, 1)
        total = await self.subscriptions.count(**filters)
        items = await self.subscriptions.list_page(
            page=page, limit=limit, sort_by=sort_by, sort_order=sort_order, **filters
        )
        return list(items), Pagination.build(page, limit, total)

    async def get_by_user(
        self,
        user_id: UUID,
        *,
        page: int = 1,
        limit: Optional[int] = None,
        status: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[UserSubscription], Pagination]:
        return await self._page(
            page=page,
            limit=limit or settings.subscriptions.default_page_size_user,
            sort_by=sort_by,
            sort_order=sort_order,
            user_id=user_id,
            status=status,
        )

    async def get_by_tier(
        self,
        tier_id: UUID,
        *,
        page: int = 1,
        limit: Optional[int] = None,
        status: Optional[str] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[UserSubscription], Pagination]:
        return await self._page(
            page=page,
            limit=limit or settings.subscriptions.default_page_size_admin,
            sort_by=sort_by,
            sort_order=sort_order,
            tier_id=tier_id,
            status=status,
        )

    async def get_all(
        self,
        *,
        page: int = 1,
        limit: Optional[int] = None,
        status: Optional[str] = None,
        user_id: Optional[UUID] = None,
        tier_id: Optional[UUID] = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> Tuple[List[UserSubscription], Pagination]:
        return await self._page(
            page=page,
            limit=limit or settings.subscriptions.default_page_size_admin,
            sort_by=sort_by,
            sort_order=sort_order,
            status=status,
            user_id=user_id,
            tier_id=tier_id,
        )

    async def stats(self) -> Dict[str, Any]:
        tiers = await self.tiers.active_counts_by_tier()
        totals = await self.subscriptions.status_totals()
        return {
            "tiers": tiers,
            "overall": {
                "active_subscriptions": int(totals["active"]),
                "expired_subscriptions": int(totals["expired"]),
                "cancelled_subscriptions": int(totals["cancelled"]),
                "pending_subscriptions": int(totals["pending"]),
                "total_subscriptions": int(totals["total"]),
                "total_revenue": float(totals["revenue"] or 0),
            },
        }
