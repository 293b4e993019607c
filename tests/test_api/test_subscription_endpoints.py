from __future__ import annotations

from decimal import Decimal
from uuid import uuid4

import pytest
from fastapi import status

from lms_subscriptions.api.deps import get_payments
from lms_subscriptions.core.config import settings
from lms_subscriptions.core.exceptions import PaymentInitiationError
from lms_subscriptions.services.payments import PaymentGateway


API_PREFIX = f"{settings.API_PREFIX}/v1"
BASE = f"{API_PREFIX}/subscriptions"

ADMIN_PERMISSIONS = [
    "subscription.create",
    "subscription.update",
    "subscription.delete",
    "subscription.manage",
    "subscription.view",
    "subscription.cancel",
]


class DownGateway(PaymentGateway):
    async def create_payment(self, *, user_id, amount, currency, provider, metadata):
        raise PaymentInitiationError("Failed to initiate payment")


@pytest.fixture
def admin_headers(auth_header):
    return auth_header(uuid4(), permissions=ADMIN_PERMISSIONS)


@pytest.mark.asyncio
async def test_public_tier_catalog(client, make_tier):
    await make_tier("Basic", display_order=1)
    await make_tier("Pro", price=Decimal("29.99"), display_order=0)
    await make_tier("Hidden", display_order=2, is_active=False)

    response = await client.get(f"{BASE}/tiers")

    assert response.status_code == status.HTTP_200_OK, response.text
    body = response.json()
    assert [tier["slug"] for tier in body["items"]] == ["pro", "basic"]
    assert body["items"][0]["price"] == pytest.approx(29.99)
    assert body["pagination"]["total"] == 2

    response = await client.get(f"{BASE}/tiers/slug/basic")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["name"] == "Basic"

    response = await client.get(f"{BASE}/tiers/slug/missing")
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["message"] == "Subscription tier not found"


@pytest.mark.asyncio
async def test_tier_admin_requires_permission(client, auth_header):
    payload = {"name": "Pro", "price": 29.99}

    response = await client.post(f"{BASE}/tiers", json=payload)
    assert response.status_code == status.HTTP_401_UNAUTHORIZED

    response = await client.post(
        f"{BASE}/tiers", json=payload, headers=auth_header(uuid4(), permissions=["subscription.view"])
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["message"] == "Missing permission: subscription.create"

    response = await client.post(f"{BASE}/tiers", json=payload, headers=auth_header(uuid4(), role="admin"))
    assert response.status_code == status.HTTP_201_CREATED, response.text


@pytest.mark.asyncio
async def test_tier_management_flow(client, admin_headers):
    response = await client.post(
        f"{BASE}/tiers",
        json={"name": "Pro", "price": 29.99, "sort_order": 10, "features": ["Certificates"]},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_201_CREATED, response.text
    tier = response.json()
    assert tier["slug"] == "pro"
    assert tier["display_order"] == 10
    assert tier["entitlement_rank"] == 10

    response = await client.post(
        f"{BASE}/tiers", json={"name": "Pro", "price": 10}, headers=admin_headers
    )
    assert response.status_code == status.HTTP_409_CONFLICT
    assert response.json()["message"] == "Tier slug already exists"

    response = await client.put(
        f"{BASE}/tiers/{tier['id']}", json={"short_description": "Everything"}, headers=admin_headers
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["short_description"] == "Everything"

    response = await client.patch(
        f"{BASE}/tiers/reorder", json={"sort_order": {tier["id"]: 3}}, headers=admin_headers
    )
    assert response.status_code == status.HTTP_200_OK, response.text

    response = await client.get(f"{BASE}/tiers/{tier['id']}")
    body = response.json()
    assert body["display_order"] == 3
    assert body["entitlement_rank"] == 10
    assert body["active_subscription_count"] == 0

    response = await client.patch(f"{BASE}/tiers/{tier['id']}/toggle", headers=admin_headers)
    assert response.json()["is_active"] is False

    response = await client.delete(f"{BASE}/tiers/{tier['id']}", headers=admin_headers)
    assert response.status_code == status.HTTP_200_OK
    response = await client.delete(f"{BASE}/tiers/{tier['id']}", headers=admin_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND


@pytest.mark.asyncio
async def test_invalid_payload_is_rejected(client, admin_headers):
    response = await client.post(
        f"{BASE}/tiers", json={"name": "X", "price": -1}, headers=admin_headers
    )

    assert response.status_code == status.HTTP_400_BAD_REQUEST
    body = response.json()
    assert body["message"] == "Validation failed"
    assert body["details"]


@pytest.mark.asyncio
async def test_free_subscription_lifecycle(client, auth_header, make_tier, make_user):
    tier = await make_tier("Free")
    user = await make_user()
    headers = auth_header(user.id)

    response = await client.post(f"{BASE}/subscribe", json={"tier_id": str(tier.id)}, headers=headers)
    assert response.status_code == status.HTTP_201_CREATED, response.text
    body = response.json()
    assert body["payment"] is None
    assert body["subscription"]["status"] == "active"
    assert body["subscription"]["payment_provider"] == "none"
    assert body["subscription"]["tier"]["slug"] == "free"

    response = await client.post(f"{BASE}/subscribe", json={"tier_id": str(tier.id)}, headers=headers)
    assert response.status_code == status.HTTP_409_CONFLICT

    response = await client.get(f"{BASE}/my-active-subscription", headers=headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["id"] == body["subscription"]["id"]

    response = await client.patch(
        f"{BASE}/cancel-subscription", json={"reason": "Moving on"}, headers=headers
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["message"] == "Confirmation required for cancellation"

    response = await client.patch(
        f"{BASE}/cancel-subscription",
        json={"reason": "Moving on", "confirmed": True},
        headers=headers,
    )
    assert response.status_code == status.HTTP_200_OK, response.text
    assert response.json()["status"] == "cancelled"
    assert response.json()["metadata"]["cancellation_reason"] == "Moving on"

    response = await client.get(f"{BASE}/my-active-subscription", headers=headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND

    response = await client.get(f"{BASE}/my-subscriptions", headers=headers)
    assert response.json()["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_paid_subscription_activation(client, auth_header, admin_headers, make_tier, make_user):
    tier = await make_tier("Pro", price=Decimal("29.99"))
    user = await make_user()

    response = await client.post(
        f"{BASE}/subscribe",
        json={"tier_id": str(tier.id), "payment_provider": "manual"},
        headers=auth_header(user.id),
    )
    assert response.status_code == status.HTTP_201_CREATED, response.text
    body = response.json()
    assert body["subscription"]["status"] == "pending"
    assert body["payment"]["transaction_id"]
    subscription_id = body["subscription"]["id"]

    response = await client.post(
        f"{BASE}/subscriptions/{subscription_id}/activate",
        json={"amount_paid": 29.99},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_200_OK, response.text
    assert response.json()["status"] == "active"
    assert response.json()["amount_paid"] == pytest.approx(29.99)

    response = await client.get(f"{BASE}/stats", headers=admin_headers)
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["overall"]["active_subscriptions"] == 1
    assert response.json()["tiers"][0]["subscription_count"] == 1


@pytest.mark.asyncio
async def test_payment_failure_returns_pending_subscription_id(
    client, test_app, auth_header, make_tier, make_user
):
    tier = await make_tier("Pro", price=Decimal("29.99"))
    user = await make_user()
    test_app.dependency_overrides[get_payments] = DownGateway

    response = await client.post(
        f"{BASE}/subscribe", json={"tier_id": str(tier.id)}, headers=auth_header(user.id)
    )

    assert response.status_code == status.HTTP_502_BAD_GATEWAY
    body = response.json()
    assert body["message"] == "Failed to initiate payment"
    assert body["subscription_id"]


@pytest.mark.asyncio
async def test_subscribe_idempotency_key(client, auth_header, make_tier, make_user):
    tier = await make_tier("Pro", price=Decimal("9"))
    user = await make_user()
    headers = {**auth_header(user.id), "Idempotency-Key": "abc-123"}

    first = await client.post(f"{BASE}/subscribe", json={"tier_id": str(tier.id)}, headers=headers)
    second = await client.post(f"{BASE}/subscribe", json={"tier_id": str(tier.id)}, headers=headers)

    assert first.status_code == status.HTTP_201_CREATED
    assert second.status_code == status.HTTP_409_CONFLICT
    assert second.json()["message"] == "Duplicate request (idempotency)"


@pytest.mark.asyncio
async def test_failed_subscribe_releases_idempotency_key(
    client, auth_header, fake_redis, make_user
):
    user = await make_user()
    headers = {**auth_header(user.id), "Idempotency-Key": "retry-me"}

    response = await client.post(f"{BASE}/subscribe", json={"tier_id": str(uuid4())}, headers=headers)

    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert not any(key.endswith(":retry-me") for key in fake_redis.store)


@pytest.mark.asyncio
async def test_subscribe_rate_limited(client, auth_header, make_tier, make_user, monkeypatch):
    monkeypatch.setattr(settings.limits, "rate_limit_rpm", 1)
    free = await make_tier("Free")
    other = await make_tier("Other")
    user = await make_user()
    headers = auth_header(user.id)

    first = await client.post(f"{BASE}/subscribe", json={"tier_id": str(free.id)}, headers=headers)
    second = await client.post(f"{BASE}/subscribe", json={"tier_id": str(other.id)}, headers=headers)

    assert first.status_code == status.HTTP_201_CREATED
    assert second.status_code == status.HTTP_429_TOO_MANY_REQUESTS


@pytest.mark.asyncio
async def test_admin_subscription_management(
    client, auth_header, admin_headers, make_tier, make_user
):
    tier = await make_tier("Free")
    user = await make_user()
    created = await client.post(
        f"{BASE}/subscribe", json={"tier_id": str(tier.id)}, headers=auth_header(user.id)
    )
    subscription_id = created.json()["subscription"]["id"]

    response = await client.get(f"{BASE}/subscriptions", headers=auth_header(user.id))
    assert response.status_code == status.HTTP_403_FORBIDDEN

    response = await client.get(
        f"{BASE}/subscriptions", params={"status": "active"}, headers=admin_headers
    )
    assert response.status_code == status.HTTP_200_OK
    assert [item["id"] for item in response.json()["items"]] == [subscription_id]
    assert response.json()["items"][0]["user"]["email"] == user.email

    response = await client.get(f"{BASE}/subscriptions/{uuid4()}", headers=admin_headers)
    assert response.status_code == status.HTTP_404_NOT_FOUND

    response = await client.patch(
        f"{BASE}/subscriptions/{subscription_id}",
        json={"status": "cancelled"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert response.json()["details"]["requires_confirmation"] is True

    response = await client.post(
        f"{BASE}/subscriptions/{subscription_id}/cancel",
        json={"reason": "Refund issued"},
        headers=admin_headers,
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["status"] == "cancelled"

    response = await client.post(
        f"{BASE}/subscriptions/users/{user.id}/expire", headers=admin_headers
    )
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"user_id": str(user.id), "expired": 0}


@pytest.mark.asyncio
async def test_access_endpoint(client, auth_header, make_tier, make_user, make_course):
    tier = await make_tier("Free", display_order=2)
    user = await make_user()
    locked = await make_course("Locked", subscription_tier_id=tier.id)
    open_course = await make_course("Open")
    headers = auth_header(user.id)

    response = await client.get(f"{API_PREFIX}/access/course/{locked.id}", headers=headers)
    assert response.json() == {"has_access": False}

    response = await client.get(f"{API_PREFIX}/access/course/{open_course.id}", headers=headers)
    assert response.json() == {"has_access": True}

    await client.post(f"{BASE}/subscribe", json={"tier_id": str(tier.id)}, headers=headers)
    response = await client.get(f"{API_PREFIX}/access/course/{locked.id}", headers=headers)
    assert response.json() == {"has_access": True}

    response = await client.get(f"{API_PREFIX}/access/lesson/{locked.id}", headers=headers)
    assert response.status_code == status.HTTP_400_BAD_REQUEST
