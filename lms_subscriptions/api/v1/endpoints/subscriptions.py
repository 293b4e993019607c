"""Endpoints for user subscriptions and their administration."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status

from lms_subscriptions.api.deps import get_subscription_service
from lms_subscriptions.auth.jwt import require_auth, require_permission
from lms_subscriptions.db.models import SubscriptionStatus
from lms_subscriptions.schemas.subscription import (
    ActivateRequest,
    CancelRequest,
    ExpirySweepResult,
    PaymentRead,
    SubscribeRequest,
    SubscribeResponse,
    SubscriptionDetail,
    SubscriptionPage,
    SubscriptionStats,
    SubscriptionUpdate,
)
from lms_subscriptions.services.limits import (
    check_rate_limit,
    ensure_idempotent,
    release_idempotency_key,
)
from lms_subscriptions.services.subscription_service import (
    SUBSCRIPTION_NOT_FOUND,
    SubscriptionService,
)

NO_ACTIVE_SUBSCRIPTION = "No active subscription found"

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


@router.post("/subscribe", response_model=SubscribeResponse, status_code=status.HTTP_201_CREATED)
async def subscribe(
    payload: SubscribeRequest,
    idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
    auth=Depends(require_auth),
    service: SubscriptionService = Depends(get_subscription_service),
):
    user_id = auth["user_id"]
    await check_rate_limit(str(user_id))
    await ensure_idempotent(str(user_id), idempotency_key)

    try:
        subscription, payment = await service.start_subscription(
            user_id,
            payload.tier_id,
            payment_provider=payload.payment_provider,
            subscription_id=payload.subscription_id,
        )
    except Exception:
        await release_idempotency_key(str(user_id), idempotency_key)
        raise

    if payment is None:
        message = "Subscription activated successfully"
    else:
        message = "Subscription created, awaiting payment"
    return SubscribeResponse(
        message=message,
        subscription=SubscriptionDetail.model_validate(subscription),
        payment=(
            PaymentRead(
                transaction_id=payment.transaction_id,
                provider=payment.provider,
                status=payment.status,
                checkout_url=payment.checkout_url,
            )
            if payment is not None
            else None
        ),
    )


@router.get("/my-subscriptions", response_model=SubscriptionPage)
async def my_subscriptions(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    status_filter: Optional[SubscriptionStatus] = Query(None, alias="status"),
    auth=Depends(require_auth),
    service: SubscriptionService = Depends(get_subscription_service),
):
    items, pagination = await service.get_by_user(
        auth["user_id"],
        page=page,
        limit=limit,
        status=status_filter.value if status_filter else None,
    )
    return SubscriptionPage(
        items=[SubscriptionDetail.model_validate(item) for item in items],
        pagination=pagination,
    )


@router.get("/my-active-subscription", response_model=SubscriptionDetail)
async def my_active_subscription(
    auth=Depends(require_auth),
    service: SubscriptionService = Depends(get_subscription_service),
):
    await service.check_subscription_expired(auth["user_id"])
    subscription = await service.get_user_active_subscription(auth["user_id"])
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_ACTIVE_SUBSCRIPTION)
    return subscription


@router.patch("/cancel-subscription", response_model=SubscriptionDetail)
async def cancel_my_subscription(
    payload: CancelRequest,
    auth=Depends(require_auth),
    service: SubscriptionService = Depends(get_subscription_service),
):
    if not payload.confirmed:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Confirmation required for cancellation",
        )
    active = await service.get_user_active_subscription(auth["user_id"])
    if active is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=NO_ACTIVE_SUBSCRIPTION)
    return await service.cancel_subscription(active.id, payload.reason)


@router.get("/subscriptions", response_model=SubscriptionPage)
async def list_subscriptions(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=100),
    status_filter: Optional[SubscriptionStatus] = Query(None, alias="status"),
    user_id: Optional[UUID] = None,
    tier_id: Optional[UUID] = None,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    auth=Depends(require_permission("subscription.view")),
    service: SubscriptionService = Depends(get_subscription_service),
):
    items, pagination = await service.get_all(
        page=page,
        limit=limit,
        status=status_filter.value if status_filter else None,
        user_id=user_id,
        tier_id=tier_id,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return SubscriptionPage(
        items=[SubscriptionDetail.model_validate(item) for item in items],
        pagination=pagination,
    )


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionDetail)
async def get_subscription(
    subscription_id: UUID,
    auth=Depends(require_permission("subscription.view")),
    service: SubscriptionService = Depends(get_subscription_service),
):
    subscription = await service.get_by_id(subscription_id)
    if subscription is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=SUBSCRIPTION_NOT_FOUND)
    return subscription


@router.patch("/subscriptions/{subscription_id}", response_model=SubscriptionDetail)
async def update_subscription(
    subscription_id: UUID,
    payload: SubscriptionUpdate,
    auth=Depends(require_permission("subscription.update")),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return await service.update_subscription(subscription_id, payload)


@router.post("/subscriptions/{subscription_id}/cancel", response_model=SubscriptionDetail)
async def cancel_subscription(
    subscription_id: UUID,
    payload: CancelRequest,
    auth=Depends(require_permission("subscription.cancel")),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return await service.cancel_subscription(subscription_id, payload.reason)


@router.post("/subscriptions/{subscription_id}/activate", response_model=SubscriptionDetail)
async def activate_subscription(
    subscription_id: UUID,
    payload: ActivateRequest,
    auth=Depends(require_permission("subscription.update")),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return await service.activate_subscription(
        subscription_id,
        amount_paid=payload.amount_paid,
        payment_provider=payload.payment_provider,
        external_subscription_id=payload.subscription_id,
    )


@router.post("/subscriptions/users/{user_id}/expire", response_model=ExpirySweepResult)
async def expire_user_subscriptions(
    user_id: UUID,
    auth=Depends(require_permission("subscription.update")),
    service: SubscriptionService = Depends(get_subscription_service),
):
    expired = await service.check_subscription_expired(user_id)
    return ExpirySweepResult(user_id=user_id, expired=expired)


@router.get("/stats", response_model=SubscriptionStats)
async def subscription_stats(
    auth=Depends(require_permission("subscription.view")),
    service: SubscriptionService = Depends(get_subscription_service),
):
    return await service.stats()
