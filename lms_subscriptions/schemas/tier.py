"""Pydantic schemas for subscription tiers."""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from lms_subscriptions.core.config import settings
from lms_subscriptions.schemas.common import Pagination

SLUG_PATTERN = r"^[a-z0-9-]+$"


class TierCreate(BaseModel):
    """Payload for creating a tier."""

    name: str = Field(..., min_length=2, max_length=100)
    slug: Optional[str] = Field(
        default=None,
        min_length=2,
        max_length=100,
        pattern=SLUG_PATTERN,
        description="Derived from the name when omitted",
    )
    description: Optional[str] = None
    short_description: Optional[str] = Field(default=None, max_length=200)
    price: Decimal = Field(..., ge=0)
    currency: str = Field(
        default=settings.subscriptions.default_currency, min_length=3, max_length=3
    )
    billing_cycle_months: int = Field(default=1, ge=1, le=12)
    billing_cycle_days: int = Field(default=30, ge=1, le=365)
    features: List[str] = Field(default_factory=list)
    is_popular: bool = False
    max_users: int = Field(default=-1, ge=-1, description="-1 means unlimited")
    is_active: bool = True
    display_order: int = Field(
        default=0,
        ge=0,
        validation_alias=AliasChoices("display_order", "sort_order"),
    )
    entitlement_rank: Optional[int] = Field(
        default=None,
        ge=0,
        description="Defaults to display_order when omitted",
    )
    stripe_price_id: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: str) -> str:
        return value.upper()


class TierUpdate(BaseModel):
    """Partial update; only fields sent by the client are applied."""

    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    slug: Optional[str] = Field(
        default=None, min_length=2, max_length=100, pattern=SLUG_PATTERN
    )
    description: Optional[str] = None
    short_description: Optional[str] = Field(default=None, max_length=200)
    price: Optional[Decimal] = Field(default=None, ge=0)
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)
    billing_cycle_months: Optional[int] = Field(default=None, ge=1, le=12)
    billing_cycle_days: Optional[int] = Field(default=None, ge=1, le=365)
    features: Optional[List[str]] = None
    is_popular: Optional[bool] = None
    max_users: Optional[int] = Field(default=None, ge=-1)
    is_active: Optional[bool] = None
    display_order: Optional[int] = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("display_order", "sort_order"),
    )
    entitlement_rank: Optional[int] = Field(default=None, ge=0)
    stripe_price_id: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value


class TierReorder(BaseModel):
    """Mapping of tier id to its new display position."""

    sort_order: Dict[UUID, int] = Field(
        ...,
        validation_alias=AliasChoices("sort_order", "display_order"),
    )

    @field_validator("sort_order")
    @classmethod
    def _non_negative(cls, value: Dict[UUID, int]) -> Dict[UUID, int]:
        if any(position < 0 for position in value.values()):
            raise ValueError("Positions must be non-negative")
        return value


class TierRead(BaseModel):
    id: UUID
    slug: str
    name: str
    description: Optional[str] = None
    short_description: Optional[str] = None
    price: float
    currency: str
    billing_cycle_months: int
    billing_cycle_days: int
    features: List[str] = Field(default_factory=list)
    is_popular: bool
    max_users: int
    is_active: bool
    display_order: int
    entitlement_rank: int
    stripe_price_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)

    @field_validator("features", mode="before")
    @classmethod
    def _features_list(cls, value):
        return value or []


class TierAdminRead(TierRead):
    active_subscription_count: int = 0


class TierSummary(BaseModel):
    """Tier fields embedded in subscription responses."""

    id: UUID
    name: str
    slug: str
    price: float
    currency: str
    billing_cycle_months: int
    features: List[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @field_validator("features", mode="before")
    @classmethod
    def _features_list(cls, value):
        return value or []


class TierPage(BaseModel):
    items: List[TierRead]
    pagination: Pagination
