"""Repository layer package."""

from lms_subscriptions.repositories.content_repo import ContentRepo
from lms_subscriptions.repositories.institution_repo import InstitutionRepo
from lms_subscriptions.repositories.subscription_repo import SubscriptionRepo
from lms_subscriptions.repositories.tier_repo import TierRepo
from lms_subscriptions.repositories.user_repo import UserRepo

__all__ = [
    "ContentRepo",
    "InstitutionRepo",
    "SubscriptionRepo",
    "TierRepo",
    "UserRepo",
]
