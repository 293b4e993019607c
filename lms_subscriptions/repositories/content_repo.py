"""Read-only lookups against course and pathway tables."""
from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from lms_subscriptions.db.models import Course, Enrollment, Pathway, PathwayEnrollment


class ContentRepo:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_course(self, course_id: UUID) -> Course | None:
        result = await self.session.execute(select(Course).where(Course.id == course_id))
        return result.scalar_one_or_none()

    async def get_pathway(self, pathway_id: UUID) -> Pathway | None:
        result = await self.session.execute(
            select(Pathway).where(Pathway.id == pathway_id)
        )
        return result.scalar_one_or_none()

    async def is_enrolled_in_course(self, user_id: UUID, course_id: UUID) -> bool:
        result = await self.session.execute(
            select(Enrollment.id)
            .where(Enrollment.user_id == user_id, Enrollment.course_id == course_id)
            .limit(1)
        )
        return result.first() is not None

    async def is_enrolled_in_pathway(self, user_id: UUID, pathway_id: UUID) -> bool:
        result = await self.session.execute(
            select(PathwayEnrollment.id)
            .where(
                PathwayEnrollment.user_id == user_id,
                PathwayEnrollment.pathway_id == pathway_id,
                PathwayEnrollment.status == "active",
            )
            .limit(1)
        )
        return result.first() is not None
