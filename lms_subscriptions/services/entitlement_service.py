"""Content entitlement decisions."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from lms_subscriptions.core.dates import utcnow
from lms_subscriptions.db.models import Course, Pathway
from lms_subscriptions.repositories.content_repo import ContentRepo
from lms_subscriptions.repositories.institution_repo import InstitutionRepo
from lms_subscriptions.repositories.subscription_repo import SubscriptionRepo
from lms_subscriptions.repositories.tier_repo import TierRepo
from lms_subscriptions.repositories.user_repo import UserRepo

logger = logging.getLogger(__name__)


class ContentKind(str, enum.Enum):
    COURSE = "course"
    PATHWAY = "pathway"


@dataclass
class EntitlementQuery:
    """How an access decision was reached."""

    user_id: UUID
    content_id: UUID
    kind: ContentKind
    granted: bool = False
    reason: str = "denied"
    enrolled: bool = False
    institution_owned: bool = False
    personal_rank: Optional[int] = None
    institution_rank: Optional[int] = None
    required_tier_id: Optional[UUID] = None
    required_rank: Optional[int] = None
    price: Optional[Decimal] = None

    def grant(self, reason: str) -> "EntitlementQuery":
        self.granted = True
        self.reason = reason
        return self


class EntitlementService:
    """Decides whether a user may access a course or pathway.

    Checks run in order and the first that passes grants access:

    1. direct enrollment in the content;
    2. a pathway published by the user's own institution;
    3. the user's personal active subscription ranks at or above the
       content's required tier;
    4. the user's institution tier ranks at or above the required tier;
    5. the content has no required tier and costs nothing.

    Anything else, including a lookup failure, is a denial.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.users = UserRepo(session)
        self.content = ContentRepo(session)
        self.tiers = TierRepo(session)
        self.subscriptions = SubscriptionRepo(session)
        self.institutions = InstitutionRepo(session)

    async def _load_content(
        self, kind: ContentKind, content_id: UUID
    ) -> Union[Course, Pathway, None]:
        if kind is ContentKind.COURSE:
            return await self.content.get_course(content_id)
        return await self.content.get_pathway(content_id)

    async def _is_enrolled(self, kind: ContentKind, user_id: UUID, content_id: UUID) -> bool:
        if kind is ContentKind.COURSE:
            return await self.content.is_enrolled_in_course(user_id, content_id)
        return await self.content.is_enrolled_in_pathway(user_id, content_id)

    async def explain_access(
        self, user_id: UUID, content_id: UUID, kind: Union[ContentKind, str]
    ) -> EntitlementQuery:
        kind = ContentKind(kind)
        query = EntitlementQuery(user_id=user_id, content_id=content_id, kind=kind)

        user = await self.users.get(user_id)
        if user is None:
            query.reason = "user_not_found"
            return query
        content = await self._load_content(kind, content_id)
        if content is None:
            query.reason = "content_not_found"
            return query

        query.required_tier_id = content.subscription_tier_id
        query.price = content.price

        query.enrolled = await self._is_enrolled(kind, user_id, content_id)
        if query.enrolled:
            return query.grant("enrolled")

        # Courses carry no owning institution.
        if kind is ContentKind.PATHWAY and user.institution_id is not None:
            query.institution_owned = content.institution_id == user.institution_id
            if query.institution_owned:
                return query.grant("institution_content")

        if content.subscription_tier_id is not None:
            query.required_rank = await self.tiers.get_rank(content.subscription_tier_id)

        if query.required_rank is not None:
            if user.active_subscription_id is not None:
                query.personal_rank = await self.subscriptions.active_rank(
                    user.active_subscription_id, utcnow()
                )
                if (
                    query.personal_rank is not None
                    and query.personal_rank >= query.required_rank
                ):
                    return query.grant("subscription")

            if user.institution_id is not None:
                query.institution_rank = await self.institutions.tier_rank(user.institution_id)
                if (
                    query.institution_rank is not None
                    and query.institution_rank >= query.required_rank
                ):
                    return query.grant("institution_subscription")

        if content.subscription_tier_id is None and not content.price:
            return query.grant("free_content")

        return query

    async def has_access(
        self, user_id: UUID, content_id: UUID, kind: Union[ContentKind, str]
    ) -> bool:
        """Fail-closed wrapper around :meth:`explain_access`."""

        try:
            query = await self.explain_access(user_id, content_id, kind)
        except Exception:
            logger.exception(
                "Entitlement check failed",
                extra={"user_id": str(user_id), "content_id": str(content_id), "kind": str(kind)},
            )
            await self.session.rollback()
            return False

        logger.debug(
            "Entitlement decided",
            extra={
                "user_id": str(user_id),
                "content_id": str(content_id),
                "kind": query.kind.value,
                "granted": query.granted,
                "reason": query.reason,
            },
        )
        return query.granted
