"""Port for the denormalised "active subscription" pointer on users.

The subscription lifecycle keeps ``users.active_subscription_id`` consistent
through this interface instead of writing the users table directly, so the
coupling is explicit and can be replaced by a fake in tests.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from lms_subscriptions.repositories.user_repo import UserRepo

logger = logging.getLogger(__name__)


class EntitlementCache(ABC):
    """Abstract interface for the user's active-subscription pointer."""

    @abstractmethod
    async def set_active(self, user_id: UUID, subscription_id: Optional[UUID]) -> None:
        """Point ``user_id`` at ``subscription_id`` (or clear it with ``None``)."""

    @abstractmethod
    async def clear_if_points_to(self, subscription_id: UUID) -> int:
        """Clear the pointer on every user referencing ``subscription_id``.

        This scans by value rather than by owner and is a no-op when the data
        is already consistent. Returns the number of users touched.
        """


class UserEntitlementCache(EntitlementCache):
    """Writes the pointer to the users table within the caller's session."""

    def __init__(self, session: AsyncSession) -> None:
        self.users = UserRepo(session)

    async def set_active(self, user_id: UUID, subscription_id: Optional[UUID]) -> None:
        await self.users.set_active_subscription(user_id, subscription_id)

    async def clear_if_points_to(self, subscription_id: UUID) -> int:
        cleared = await self.users.clear_active_subscription(subscription_id)
        if cleared:
            logger.debug(
                "Cleared active subscription pointer",
                extra={"subscription_id": str(subscription_id), "users": cleared},
            )
        return cleared
