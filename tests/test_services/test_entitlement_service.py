from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from lms_subscriptions.core.dates import utcnow
from lms_subscriptions.db.models import (
    Enrollment,
    PathwayEnrollment,
    SubscriptionStatus,
    UserSubscription,
)
from lms_subscriptions.repositories.content_repo import ContentRepo
from lms_subscriptions.services.entitlement_service import ContentKind, EntitlementService


@pytest.fixture
def tiers(make_tier):
    async def _tiers():
        return {
            rank: await make_tier(f"Rank {rank}", display_order=rank, entitlement_rank=rank)
            for rank in (3, 4, 5, 6)
        }

    return _tiers


async def subscribe(session, user, tier, **fields):
    fields.setdefault("status", SubscriptionStatus.ACTIVE.value)
    fields.setdefault("expires_at", utcnow() + timedelta(days=30))
    subscription = UserSubscription(user_id=user.id, tier_id=tier.id, **fields)
    session.add(subscription)
    await session.flush()
    user.active_subscription_id = subscription.id
    await session.commit()
    return subscription


@pytest.mark.asyncio
async def test_personal_rank_covers_equal_and_lower_tiers(
    test_db, tiers, make_user, make_course
):
    by_rank = await tiers()
    user = await make_user()
    await subscribe(test_db, user, by_rank[5])
    service = EntitlementService(test_db)

    decisions = {}
    for rank, tier in by_rank.items():
        course = await make_course(f"Course {rank}", subscription_tier_id=tier.id)
        decisions[rank] = await service.has_access(user.id, course.id, ContentKind.COURSE)

    assert decisions == {3: True, 4: True, 5: True, 6: False}


@pytest.mark.asyncio
async def test_display_order_does_not_affect_access(test_db, make_tier, make_user, make_course):
    premium = await make_tier("Premium", display_order=0, entitlement_rank=9)
    basic = await make_tier("Basic", display_order=5, entitlement_rank=1)
    user = await make_user()
    await subscribe(test_db, user, premium)
    course = await make_course(subscription_tier_id=basic.id)

    assert await EntitlementService(test_db).has_access(user.id, course.id, "course") is True


@pytest.mark.asyncio
async def test_expired_or_inactive_subscription_grants_nothing(
    test_db, tiers, make_user, make_course
):
    by_rank = await tiers()
    lapsed = await make_user()
    cancelled = await make_user()
    await subscribe(test_db, lapsed, by_rank[6], expires_at=utcnow() - timedelta(minutes=1))
    await subscribe(
        test_db, cancelled, by_rank[6], status=SubscriptionStatus.CANCELLED.value
    )
    course = await make_course(subscription_tier_id=by_rank[3].id)
    service = EntitlementService(test_db)

    assert await service.has_access(lapsed.id, course.id, "course") is False
    assert await service.has_access(cancelled.id, course.id, "course") is False


@pytest.mark.asyncio
async def test_never_expiring_subscription_grants_access(test_db, tiers, make_user, make_course):
    by_rank = await tiers()
    user = await make_user()
    await subscribe(test_db, user, by_rank[4], expires_at=None)
    course = await make_course(subscription_tier_id=by_rank[4].id)

    assert await EntitlementService(test_db).has_access(user.id, course.id, "course") is True


@pytest.mark.asyncio
async def test_institution_tier_grants_access(
    test_db, tiers, make_user, make_course, make_institution
):
    by_rank = await tiers()
    institution = await make_institution(subscription_tier_id=by_rank[6].id)
    member = await make_user(institution_id=institution.id)
    course = await make_course(subscription_tier_id=by_rank[5].id)
    service = EntitlementService(test_db)

    query = await service.explain_access(member.id, course.id, ContentKind.COURSE)

    assert query.granted is True
    assert query.reason == "institution_subscription"
    assert query.institution_rank == 6
    assert query.required_rank == 5


@pytest.mark.asyncio
async def test_institution_tier_below_requirement(
    test_db, tiers, make_user, make_course, make_institution
):
    by_rank = await tiers()
    institution = await make_institution(subscription_tier_id=by_rank[3].id)
    member = await make_user(institution_id=institution.id)
    course = await make_course(subscription_tier_id=by_rank[4].id)

    assert await EntitlementService(test_db).has_access(member.id, course.id, "course") is False


@pytest.mark.asyncio
async def test_enrollment_grants_access(test_db, tiers, make_user, make_course, make_pathway):
    by_rank = await tiers()
    user = await make_user()
    course = await make_course(subscription_tier_id=by_rank[6].id, price=Decimal("50"))
    pathway = await make_pathway(subscription_tier_id=by_rank[6].id)
    dropped = await make_pathway("Dropped", subscription_tier_id=by_rank[6].id)
    test_db.add_all(
        [
            Enrollment(user_id=user.id, course_id=course.id),
            PathwayEnrollment(user_id=user.id, pathway_id=pathway.id),
            PathwayEnrollment(user_id=user.id, pathway_id=dropped.id, status="withdrawn"),
        ]
    )
    await test_db.commit()
    service = EntitlementService(test_db)

    assert await service.has_access(user.id, course.id, "course") is True
    assert await service.has_access(user.id, pathway.id, "pathway") is True
    assert await service.has_access(user.id, dropped.id, "pathway") is False


@pytest.mark.asyncio
async def test_institution_owned_pathway_only(
    test_db, tiers, make_user, make_pathway, make_institution
):
    by_rank = await tiers()
    institution = await make_institution()
    other = await make_institution("Elsewhere College")
    member = await make_user(institution_id=institution.id)
    own = await make_pathway("Own", institution_id=institution.id, subscription_tier_id=by_rank[6].id)
    foreign = await make_pathway(
        "Foreign", institution_id=other.id, subscription_tier_id=by_rank[6].id
    )
    service = EntitlementService(test_db)

    query = await service.explain_access(member.id, own.id, ContentKind.PATHWAY)
    assert query.granted is True
    assert query.reason == "institution_content"
    assert await service.has_access(member.id, foreign.id, "pathway") is False


@pytest.mark.asyncio
async def test_free_content_without_tier(test_db, make_user, make_course, make_pathway):
    user = await make_user()
    free_course = await make_course()
    paid_course = await make_course("Paid", price=Decimal("19.00"))
    free_pathway = await make_pathway()
    service = EntitlementService(test_db)

    assert await service.has_access(user.id, free_course.id, "course") is True
    assert await service.has_access(user.id, paid_course.id, "course") is False
    assert await service.has_access(user.id, free_pathway.id, "pathway") is True


@pytest.mark.asyncio
async def test_free_content_with_tier_requires_entitlement(test_db, tiers, make_user, make_course):
    by_rank = await tiers()
    user = await make_user()
    course = await make_course(subscription_tier_id=by_rank[3].id, price=Decimal("0"))

    query = await EntitlementService(test_db).explain_access(user.id, course.id, "course")

    assert query.granted is False
    assert query.reason == "denied"


@pytest.mark.asyncio
async def test_unknown_user_or_content_is_denied(test_db, make_user, make_course):
    user = await make_user()
    course = await make_course()
    service = EntitlementService(test_db)

    assert await service.has_access(uuid4(), course.id, "course") is False
    assert await service.has_access(user.id, uuid4(), "course") is False
    assert (await service.explain_access(uuid4(), course.id, "course")).reason == "user_not_found"


@pytest.mark.asyncio
async def test_lookup_failure_fails_closed(test_db, make_user, make_course, monkeypatch):
    user = await make_user()
    course = await make_course()

    async def _boom(self, _user_id, _course_id):
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(ContentRepo, "is_enrolled_in_course", _boom)

    assert await EntitlementService(test_db).has_access(user.id, course.id, "course") is False


@pytest.mark.asyncio
async def test_lookup_failure_rolls_back_session(test_db, make_user, make_course, monkeypatch):
    user = await make_user()
    course = await make_course()
    user_id, course_id = user.id, course.id
    rollbacks = []
    real_rollback = test_db.rollback
    real_lookup = ContentRepo.is_enrolled_in_course

    async def _boom(self, _user_id, _course_id):
        raise RuntimeError("database unavailable")

    async def _tracking_rollback():
        rollbacks.append(True)
        await real_rollback()

    monkeypatch.setattr(ContentRepo, "is_enrolled_in_course", _boom)
    monkeypatch.setattr(test_db, "rollback", _tracking_rollback)
    service = EntitlementService(test_db)

    assert await service.has_access(user_id, course_id, "course") is False
    assert rollbacks == [True]

    monkeypatch.setattr(ContentRepo, "is_enrolled_in_course", real_lookup)
    assert await service.has_access(user_id, course_id, "course") is True
