"""Pydantic schemas for user subscriptions."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from lms_subscriptions.db.models import SubscriptionStatus
from lms_subscriptions.schemas.common import Pagination
from lms_subscriptions.schemas.tier import TierSummary


class SubscribeRequest(BaseModel):
    tier_id: UUID = Field(..., description="Tier to subscribe to")
    payment_provider: Literal["stripe", "paystack", "manual"] = "manual"
    subscription_id: Optional[str] = Field(
        default=None, description="External payment-provider subscription id"
    )


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, min_length=5, max_length=500)
    confirmed: bool = Field(default=False, description="Must be true to cancel")


class ActivateRequest(BaseModel):
    amount_paid: Optional[Decimal] = Field(default=None, ge=0)
    payment_provider: Optional[str] = None
    subscription_id: Optional[str] = None


class SubscriptionUpdate(BaseModel):
    """Admin update of a subscription."""

    status: Optional[SubscriptionStatus] = None
    payment_provider: Optional[str] = None
    subscription_id: Optional[str] = None
    amount_paid: Optional[Decimal] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    extend_months: Optional[int] = Field(default=None, ge=1)
    confirmed: bool = False


class UserSummary(BaseModel):
    id: UUID
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: str
    username: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SubscriptionRead(BaseModel):
    id: UUID
    user_id: UUID
    tier_id: UUID
    status: str
    started_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    payment_provider: str
    subscription_id: Optional[str] = None
    amount_paid: Optional[float] = None
    currency: str
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias="metadata_")
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_dict(cls, value):
        return value or {}


class SubscriptionDetail(SubscriptionRead):
    tier: TierSummary
    user: UserSummary


class SubscriptionPage(BaseModel):
    items: List[SubscriptionDetail]
    pagination: Pagination


class PaymentRead(BaseModel):
    transaction_id: str
    provider: str
    status: str
    checkout_url: Optional[str] = None


class SubscribeResponse(BaseModel):
    message: str
    subscription: SubscriptionDetail
    payment: Optional[PaymentRead] = None


class TierStat(BaseModel):
    id: UUID
    name: str
    slug: str
    price: float
    currency: str
    subscription_count: int


class OverallStats(BaseModel):
    active_subscriptions: int
    expired_subscriptions: int
    cancelled_subscriptions: int
    pending_subscriptions: int
    total_subscriptions: int
    total_revenue: float


class SubscriptionStats(BaseModel):
    tiers: List[TierStat]
    overall: OverallStats


class ExpirySweepResult(BaseModel):
    user_id: UUID
    expired: int
