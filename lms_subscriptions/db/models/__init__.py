"""Database models package exports."""

from lms_subscriptions.db.models.content import (
    Course,
    Enrollment,
    Pathway,
    PathwayEnrollment,
)
from lms_subscriptions.db.models.institution import Institution
from lms_subscriptions.db.models.subscription import (
    PaymentProvider,
    SubscriptionStatus,
    UserSubscription,
)
from lms_subscriptions.db.models.tier import SubscriptionTier
from lms_subscriptions.db.models.user import User

__all__ = [
    "Course",
    "Enrollment",
    "Institution",
    "Pathway",
    "PathwayEnrollment",
    "PaymentProvider",
    "SubscriptionStatus",
    "SubscriptionTier",
    "User",
    "UserSubscription",
]
