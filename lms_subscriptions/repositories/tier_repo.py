"""Repository utilities for subscription tiers."""
from __future__ import annotations

from typing import Any, Dict, Mapping, Optional, Sequence
from uuid import UUID

from sqlalchemy import asc, delete, desc, func, not_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lms_subscriptions.core.dates import utcnow
from lms_subscriptions.db.models import SubscriptionStatus, SubscriptionTier, UserSubscription

TIER_SORT_COLUMNS = {
    "display_order": SubscriptionTier.display_order,
    "entitlement_rank": SubscriptionTier.entitlement_rank,
    "price": SubscriptionTier.price,
    "name": SubscriptionTier.name,
    "created_at": SubscriptionTier.created_at,
}


class TierRepo:
    """Data-access helpers for :class:`SubscriptionTier`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, tier_id: UUID) -> SubscriptionTier | None:
        result = await self.session.execute(
            select(SubscriptionTier).where(SubscriptionTier.id == tier_id)
        )
        return result.scalar_one_or_none()

    async def get_by_slug(self, slug: str) -> SubscriptionTier | None:
        result = await self.session.execute(
            select(SubscriptionTier).where(SubscriptionTier.slug == slug)
        )
        return result.scalar_one_or_none()

    async def create(self, **fields: Any) -> SubscriptionTier:
        tier = SubscriptionTier(**fields)
        self.session.add(tier)
        await self.session.flush()
        return tier

    async def update(self, tier: SubscriptionTier, fields: Mapping[str, Any]) -> SubscriptionTier:
        for key, value in fields.items():
            setattr(tier, key, value)
        self.session.add(tier)
        await self.session.flush()
        return tier

    async def delete(self, tier_id: UUID) -> bool:
        result = await self.session.execute(
            delete(SubscriptionTier).where(SubscriptionTier.id == tier_id)
        )
        return (result.rowcount or 0) > 0

    async def toggle_active(self, tier_id: UUID) -> SubscriptionTier | None:
        """Flip ``is_active`` in a single statement so concurrent toggles do not race."""

        result = await self.session.execute(
            update(SubscriptionTier)
            .where(SubscriptionTier.id == tier_id)
            .values(is_active=not_(SubscriptionTier.is_active), updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            return None
        refreshed = await self.session.execute(
            select(SubscriptionTier)
            .where(SubscriptionTier.id == tier_id)
            .execution_options(populate_existing=True)
        )
        return refreshed.scalar_one()

    async def set_display_order(
        self, tier_id: UUID, display_order: int
    ) -> SubscriptionTier | None:
        tier = await self.get(tier_id)
        if tier is None:
            return None
        tier.display_order = display_order
        await self.session.flush()
        return tier

    async def count_active_subscriptions(self, tier_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(UserSubscription.id)).where(
                UserSubscription.tier_id == tier_id,
                UserSubscription.status == SubscriptionStatus.ACTIVE.value,
            )
        )
        return int(result.scalar_one() or 0)

    async def get_rank(self, tier_id: UUID) -> Optional[int]:
        result = await self.session.execute(
            select(SubscriptionTier.entitlement_rank).where(SubscriptionTier.id == tier_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _filters(is_active: Optional[bool], search: Optional[str]) -> list:
        clauses = []
        if is_active is not None:
            clauses.append(SubscriptionTier.is_active == is_active)
        if search:
            pattern = f"%{search.lower()}%"
            clauses.append(
                or_(
                    func.lower(SubscriptionTier.name).like(pattern),
                    func.lower(SubscriptionTier.slug).like(pattern),
                    func.lower(func.coalesce(SubscriptionTier.description, "")).like(pattern),
                )
            )
        return clauses

    async def count(self, *, is_active: Optional[bool] = None, search: Optional[str] = None) -> int:
        result = await self.session.execute(
            select(func.count(SubscriptionTier.id)).where(*self._filters(is_active, search))
        )
        return int(result.scalar_one() or 0)

    async def list_page(
        self,
        *,
        page: int,
        limit: int,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
        sort_by: str = "display_order",
        sort_order: str = "asc",
    ) -> Sequence[SubscriptionTier]:
        column = TIER_SORT_COLUMNS.get(sort_by, SubscriptionTier.display_order)
        direction = desc if sort_order.lower() == "desc" else asc
        result = await self.session.execute(
            select(SubscriptionTier)
            .where(*self._filters(is_active, search))
            .order_by(direction(column), SubscriptionTier.name)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def active_counts_by_tier(self) -> list[Dict[str, Any]]:
        """Every tier with its number of active subscriptions, zero included."""

        result = await self.session.execute(
            select(
                SubscriptionTier.id,
                SubscriptionTier.name,
                SubscriptionTier.slug,
                SubscriptionTier.price,
                SubscriptionTier.currency,
                func.count(UserSubscription.id).label("subscription_count"),
            )
            .select_from(SubscriptionTier)
            .outerjoin(
                UserSubscription,
                (UserSubscription.tier_id == SubscriptionTier.id)
                & (UserSubscription.status == SubscriptionStatus.ACTIVE.value),
            )
            .group_by(
                SubscriptionTier.id,
                SubscriptionTier.name,
                SubscriptionTier.slug,
                SubscriptionTier.price,
                SubscriptionTier.currency,
            )
            .order_by(SubscriptionTier.display_order, SubscriptionTier.name)
        )
        return [dict(row._mapping) for row in result.all()]
