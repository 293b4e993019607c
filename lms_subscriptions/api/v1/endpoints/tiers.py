"""Endpoints for the subscription tier catalog."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from lms_subscriptions.api.deps import get_tier_service
from lms_subscriptions.auth.jwt import require_permission
from lms_subscriptions.schemas.common import Message
from lms_subscriptions.schemas.tier import (
    TierAdminRead,
    TierCreate,
    TierPage,
    TierRead,
    TierReorder,
    TierUpdate,
)
from lms_subscriptions.services.tier_service import TIER_NOT_FOUND, TierService


router = APIRouter(prefix="/subscriptions/tiers", tags=["subscription-tiers"])


@router.get("", response_model=TierPage)
async def list_tiers(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    is_active: Optional[bool] = True,
    search: Optional[str] = Query(None, max_length=100),
    sort_by: str = "display_order",
    sort_order: str = "asc",
    service: TierService = Depends(get_tier_service),
):
    items, pagination = await service.get_all(
        page=page,
        limit=limit,
        is_active=is_active,
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return TierPage(
        items=[TierRead.model_validate(tier) for tier in items],
        pagination=pagination,
    )


@router.get("/slug/{slug}", response_model=TierRead)
async def get_tier_by_slug(slug: str, service: TierService = Depends(get_tier_service)):
    tier = await service.get_by_slug(slug)
    if tier is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TIER_NOT_FOUND)
    return tier


@router.get("/{tier_id}", response_model=TierAdminRead)
async def get_tier(tier_id: UUID, service: TierService = Depends(get_tier_service)):
    tier = await service.get_by_id(tier_id)
    if tier is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TIER_NOT_FOUND)
    result = TierAdminRead.model_validate(tier)
    result.active_subscription_count = await service.subscription_count(tier_id)
    return result


@router.post("", response_model=TierRead, status_code=status.HTTP_201_CREATED)
async def create_tier(
    payload: TierCreate,
    auth=Depends(require_permission("subscription.create")),
    service: TierService = Depends(get_tier_service),
):
    return await service.create(payload)


@router.patch("/reorder", response_model=Message)
async def reorder_tiers(
    payload: TierReorder,
    auth=Depends(require_permission("subscription.manage")),
    service: TierService = Depends(get_tier_service),
):
    await service.reorder(payload.sort_order)
    return Message(message="Tiers reordered successfully")


@router.put("/{tier_id}", response_model=TierRead)
async def update_tier(
    tier_id: UUID,
    payload: TierUpdate,
    auth=Depends(require_permission("subscription.update")),
    service: TierService = Depends(get_tier_service),
):
    return await service.update(tier_id, payload)


@router.delete("/{tier_id}", response_model=Message)
async def delete_tier(
    tier_id: UUID,
    auth=Depends(require_permission("subscription.delete")),
    service: TierService = Depends(get_tier_service),
):
    if not await service.delete(tier_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=TIER_NOT_FOUND)
    return Message(message="Subscription tier deleted successfully")


@router.patch("/{tier_id}/toggle", response_model=TierRead)
async def toggle_tier(
    tier_id: UUID,
    auth=Depends(require_permission("subscription.manage")),
    service: TierService = Depends(get_tier_service),
):
    return await service.toggle_active(tier_id)
