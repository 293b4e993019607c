"""Subscription tier model definition."""
from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, Numeric, String, Text, func
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from lms_subscriptions.core.dates import utcnow
from lms_subscriptions.db.base import Base, JSONType


class SubscriptionTier(Base):
    """Represents a purchasable subscription plan.

    ``display_order`` only drives listing order. ``entitlement_rank`` is the
    level compared against the rank required by courses and pathways.
    """

    __tablename__ = "subscription_tiers"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    slug: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    short_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    billing_cycle_months: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    billing_cycle_days: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    features: Mapped[List[str]] = mapped_column(JSONType, nullable=False, default=list)
    is_popular: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    max_users: Mapped[int] = mapped_column(Integer, nullable=False, default=-1)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    entitlement_rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    stripe_price_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("ix_subscription_tiers_active_display", "is_active", "display_order"),
    )

    @property
    def is_free(self) -> bool:
        return self.price == 0

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<SubscriptionTier {self.slug} rank={self.entitlement_rank}>"
