"""Repository for institution records."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lms_subscriptions.db.models import Institution, SubscriptionTier


class InstitutionRepo:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def tier_rank(self, institution_id: UUID) -> Optional[int]:
        """Rank of the tier assigned to the institution, ``None`` when it has none."""

        result = await self.session.execute(
            select(SubscriptionTier.entitlement_rank)
            .join(Institution, Institution.subscription_tier_id == SubscriptionTier.id)
            .where(Institution.id == institution_id)
        )
        return result.scalar_one_or_none()
