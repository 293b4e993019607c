"""Repository for user records."""
from __future__ import annotations

from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from lms_subscriptions.core.dates import utcnow
from lms_subscriptions.db.models import User


class UserRepo:
    """Data-access helpers for :class:`User`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, user_id: UUID) -> User | None:
        result = await self.session.execute(
            select(User)
            .where(User.id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def set_active_subscription(
        self, user_id: UUID, subscription_id: Optional[UUID]
    ) -> int:
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id)
            .values(active_subscription_id=subscription_id, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def clear_active_subscription(self, subscription_id: UUID) -> int:
        """Null the pointer on every user that references ``subscription_id``."""

        result = await self.session.execute(
            update(User)
            .where(User.active_subscription_id == subscription_id)
            .values(active_subscription_id=None, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0
