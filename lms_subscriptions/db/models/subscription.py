"""User subscription model linking users to tiers."""
from __future__ import annotations

import enum
import uuid
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional

from sqlalchemy import DateTime, ForeignKey, Index, Numeric, String, func, text
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lms_subscriptions.core.dates import utcnow
from lms_subscriptions.db.base import Base, JSONType

if TYPE_CHECKING:
    from lms_subscriptions.db.models.tier import SubscriptionTier
    from lms_subscriptions.db.models.user import User


class SubscriptionStatus(str, enum.Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentProvider(str, enum.Enum):
    MANUAL = "manual"
    STRIPE = "stripe"
    PAYSTACK = "paystack"
    NONE = "none"


class UserSubscription(Base):
    """A user's enrolment in a tier, with its lifecycle status."""

    __tablename__ = "user_subscriptions"

    id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    tier_id: Mapped[uuid.UUID] = mapped_column(
        PGUUID(as_uuid=True),
        ForeignKey("subscription_tiers.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=SubscriptionStatus.PENDING.value
    )
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    payment_provider: Mapped[str] = mapped_column(
        String(20), nullable=False, default=PaymentProvider.MANUAL.value
    )
    # External payment-provider correlation id.
    subscription_id: Mapped[Optional[str]] = mapped_column(String, nullable=True)
    amount_paid: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    metadata_: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata", JSONType, nullable=True
    )
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

    tier: Mapped["SubscriptionTier"] = relationship("SubscriptionTier")
    user: Mapped["User"] = relationship("User")

    __table_args__ = (
        # At most one active subscription per (user, tier).
        Index(
            "uq_user_subscriptions_user_tier_active",
            "user_id",
            "tier_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_user_subscriptions_user_status", "user_id", "status"),
        Index("ix_user_subscriptions_status_expires", "status", "expires_at"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE.value

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<UserSubscription {self.id} user={self.user_id} status={self.status}>"
