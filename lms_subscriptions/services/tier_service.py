"""Tier catalog: admin management and public reads of subscription tiers."""
from __future__ import annotations

import logging
import re
from typing import List, Mapping, Optional, Tuple
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from lms_subscriptions.core.config import settings
from lms_subscriptions.core.exceptions import ConflictError, NotFoundError
from lms_subscriptions.db.models import SubscriptionTier
from lms_subscriptions.repositories.tier_repo import TierRepo
from lms_subscriptions.schemas.common import Pagination
from lms_subscriptions.schemas.tier import TierCreate, TierUpdate
from lms_subscriptions.services.unit_of_work import unit_of_work

logger = logging.getLogger(__name__)

SLUG_CONFLICT = "Tier slug already exists"
TIER_NOT_FOUND = "Subscription tier not found"
TIER_IN_USE = "Cannot delete tier that has active subscriptions"

NULLABLE_FIELDS = {"description", "short_description", "stripe_price_id"}


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", value.lower()).strip("-")
    return slug or "tier"


class TierService:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.tiers = TierRepo(session)

    async def create(self, data: TierCreate) -> SubscriptionTier:
        fields = data.model_dump()
        fields["slug"] = fields.get("slug") or slugify(data.name)
        if fields.get("entitlement_rank") is None:
            fields["entitlement_rank"] = fields["display_order"]

        async with unit_of_work(
            self.session, "create_tier", conflict_message=SLUG_CONFLICT, slug=fields["slug"]
        ):
            if await self.tiers.get_by_slug(fields["slug"]) is not None:
                raise ConflictError(SLUG_CONFLICT)
            tier = await self.tiers.create(**fields)

        logger.info(
            "Subscription tier created",
            extra={"tier_id": str(tier.id), "slug": tier.slug},
        )
        return tier

    async def update(self, tier_id: UUID, data: TierUpdate) -> SubscriptionTier:
        fields = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key in NULLABLE_FIELDS or key == "features"
        }
        if "features" in fields and fields["features"] is None:
            fields["features"] = []

        async with unit_of_work(
            self.session, "update_tier", conflict_message=SLUG_CONFLICT, tier_id=str(tier_id)
        ):
            tier = await self.tiers.get(tier_id)
            if tier is None:
                raise NotFoundError(TIER_NOT_FOUND)
            new_slug = fields.get("slug")
            if new_slug and new_slug != tier.slug:
                existing = await self.tiers.get_by_slug(new_slug)
                if existing is not None:
                    raise ConflictError(SLUG_CONFLICT)
            tier = await self.tiers.update(tier, fields)

        logger.info(
            "Subscription tier updated",
            extra={"tier_id": str(tier_id), "fields": sorted(fields)},
        )
        return tier

    async def delete(self, tier_id: UUID) -> bool:
        async with unit_of_work(self.session, "delete_tier", tier_id=str(tier_id)):
            # Pre-check only; a subscription activated concurrently can slip past it.
            if await self.tiers.count_active_subscriptions(tier_id) > 0:
                raise ConflictError(TIER_IN_USE)
            deleted = await self.tiers.delete(tier_id)

        if deleted:
            logger.info("Subscription tier deleted", extra={"tier_id": str(tier_id)})
        return deleted

    async def get_by_id(self, tier_id: UUID) -> Optional[SubscriptionTier]:
        return await self.tiers.get(tier_id)

    async def get_by_slug(self, slug: str) -> Optional[SubscriptionTier]:
        return await self.tiers.get_by_slug(slug)

    async def subscription_count(self, tier_id: UUID) -> int:
        return await self.tiers.count_active_subscriptions(tier_id)

    async def get_all(
        self,
        *,
        page: int = 1,
        limit: Optional[int] = None,
        is_active: Optional[bool] = True,
        search: Optional[str] = None,
        sort_by: str = "display_order",
        sort_order: str = "asc",
    ) -> Tuple[List[SubscriptionTier], Pagination]:
        limit = min(
            limit or settings.subscriptions.default_page_size_admin,
            settings.subscriptions.max_page_size,
        )
        page = max(page, 1)
        total = await self.tiers.count(is_active=is_active, search=search)
        items = await self.tiers.list_page(
            page=page,
            limit=limit,
            is_active=is_active,
            search=search,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return list(items), Pagination.build(page, limit, total)

    async def toggle_active(self, tier_id: UUID) -> SubscriptionTier:
        async with unit_of_work(self.session, "toggle_tier", tier_id=str(tier_id)):
            tier = await self.tiers.toggle_active(tier_id)
            if tier is None:
                raise NotFoundError(TIER_NOT_FOUND)

        logger.info(
            "Tier active status toggled",
            extra={"tier_id": str(tier_id), "is_active": tier.is_active},
        )
        return tier

    async def reorder(self, positions: Mapping[UUID, int]) -> bool:
        """Apply every display position or none of them."""

        async with unit_of_work(self.session, "reorder_tiers", tiers=len(positions)):
            for tier_id, position in positions.items():
                if await self.tiers.set_display_order(tier_id, position) is None:
                    raise NotFoundError(TIER_NOT_FOUND, details={"tier_id": str(tier_id)})

        logger.info("Tiers reordered", extra={"tiers": len(positions)})
        return True
