"""Repository utilities for user subscriptions."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional, Sequence
from uuid import UUID

from sqlalchemy import asc, case, desc, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from lms_subscriptions.core.dates import utcnow
from lms_subscriptions.db.models import SubscriptionStatus, SubscriptionTier, UserSubscription

SUBSCRIPTION_SORT_COLUMNS = {
    "created_at": UserSubscription.created_at,
    "updated_at": UserSubscription.updated_at,
    "started_at": UserSubscription.started_at,
    "expires_at": UserSubscription.expires_at,
    "amount_paid": UserSubscription.amount_paid,
}

ACTIVE = SubscriptionStatus.ACTIVE.value


class SubscriptionRepo:
    """Data-access helpers for :class:`UserSubscription`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _with_details(self):
        return (
            select(UserSubscription)
            .options(
                selectinload(UserSubscription.tier),
                selectinload(UserSubscription.user),
            )
            .execution_options(populate_existing=True)
        )

    async def get(self, subscription_id: UUID) -> UserSubscription | None:
        result = await self.session.execute(
            select(UserSubscription).where(UserSubscription.id == subscription_id)
        )
        return result.scalar_one_or_none()

    async def get_with_tier(self, subscription_id: UUID) -> UserSubscription | None:
        result = await self.session.execute(
            select(UserSubscription)
            .options(selectinload(UserSubscription.tier))
            .where(UserSubscription.id == subscription_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_with_details(self, subscription_id: UUID) -> UserSubscription | None:
        result = await self.session.execute(
            self._with_details().where(UserSubscription.id == subscription_id)
        )
        return result.scalar_one_or_none()

    async def find_active(self, user_id: UUID, tier_id: UUID) -> UserSubscription | None:
        result = await self.session.execute(
            select(UserSubscription).where(
                UserSubscription.user_id == user_id,
                UserSubscription.tier_id == tier_id,
                UserSubscription.status == ACTIVE,
            )
        )
        return result.scalars().first()

    async def create(self, **fields: Any) -> UserSubscription:
        subscription = UserSubscription(**fields)
        self.session.add(subscription)
        await self.session.flush()
        return subscription

    async def save(self, subscription: UserSubscription) -> UserSubscription:
        self.session.add(subscription)
        await self.session.flush()
        return subscription

    async def latest_active_for_user(self, user_id: UUID) -> UserSubscription | None:
        """Active subscription expiring last; a never-expiring one sorts first."""

        result = await self.session.execute(
            self._with_details()
            .where(
                UserSubscription.user_id == user_id,
                UserSubscription.status == ACTIVE,
            )
            .order_by(UserSubscription.expires_at.desc().nulls_first())
            .limit(1)
        )
        return result.scalars().first()

    async def expired_active_ids(self, user_id: UUID, now: datetime) -> list[UUID]:
        result = await self.session.execute(
            select(UserSubscription.id).where(
                UserSubscription.user_id == user_id,
                UserSubscription.status == ACTIVE,
                UserSubscription.expires_at.is_not(None),
                UserSubscription.expires_at < now,
            )
        )
        return list(result.scalars().all())

    async def mark_expired(self, subscription_ids: Sequence[UUID]) -> int:
        if not subscription_ids:
            return 0
        result = await self.session.execute(
            update(UserSubscription)
            .where(UserSubscription.id.in_(subscription_ids))
            .values(status=SubscriptionStatus.EXPIRED.value, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    @staticmethod
    def _filters(
        *,
        status: Optional[str] = None,
        user_id: Optional[UUID] = None,
        tier_id: Optional[UUID] = None,
    ) -> list:
        clauses = []
        if status:
            clauses.append(UserSubscription.status == status)
        if user_id:
            clauses.append(UserSubscription.user_id == user_id)
        if tier_id:
            clauses.append(UserSubscription.tier_id == tier_id)
        return clauses

    async def count(self, **filters: Any) -> int:
        # Counted on the bare table so joins cannot multiply rows.
        result = await self.session.execute(
            select(func.count(UserSubscription.id)).where(*self._filters(**filters))
        )
        return int(result.scalar_one() or 0)

    async def list_page(
        self,
        *,
        page: int,
        limit: int,
        sort_by: str = "created_at",
        sort_order: str = "desc",
        **filters: Any,
    ) -> Sequence[UserSubscription]:
        column = SUBSCRIPTION_SORT_COLUMNS.get(sort_by, UserSubscription.created_at)
        direction = asc if sort_order.lower() == "asc" else desc
        result = await self.session.execute(
            self._with_details()
            .where(*self._filters(**filters))
            .order_by(direction(column), UserSubscription.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def status_totals(self) -> Dict[str, Any]:
        def _count(status: SubscriptionStatus):
            return func.count(case((UserSubscription.status == status.value, 1)))

        result = await self.session.execute(
            select(
                _count(SubscriptionStatus.ACTIVE).label("active"),
                _count(SubscriptionStatus.EXPIRED).label("expired"),
                _count(SubscriptionStatus.CANCELLED).label("cancelled"),
                _count(SubscriptionStatus.PENDING).label("pending"),
                func.count(UserSubscription.id).label("total"),
                func.coalesce(func.sum(UserSubscription.amount_paid), 0).label("revenue"),
            )
        )
        return dict(result.one()._mapping)

    async def active_rank(self, subscription_id: UUID, now: datetime) -> Optional[int]:
        """Entitlement rank of a subscription that is active and not past its expiry."""

        result = await self.session.execute(
            select(SubscriptionTier.entitlement_rank)
            .join(UserSubscription, UserSubscription.tier_id == SubscriptionTier.id)
            .where(
                UserSubscription.id == subscription_id,
                UserSubscription.status == ACTIVE,
                (UserSubscription.expires_at.is_(None)) | (UserSubscription.expires_at > now),
            )
        )
        return result.scalar_one_or_none()
