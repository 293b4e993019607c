"""
Pytest configuration for the application
"""
import os
from decimal import Decimal
from typing import AsyncGenerator, Callable, Dict, Iterable, Optional
from uuid import UUID

import httpx
import jwt
import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from lms_subscriptions.core.config import settings
from lms_subscriptions.db.base import Base
from lms_subscriptions.db.models import (
    Course,
    Institution,
    Pathway,
    SubscriptionTier,
    User,
)
from lms_subscriptions.db.session import get_db
from lms_subscriptions.main import create_application
from lms_subscriptions.services import limits as limits_service


# Keep the test run away from real infrastructure
os.environ["ENV"] = "test"
settings.ENV = "test"
settings.payments.service_url = None

TEST_DATABASE_URL = "sqlite+aiosqlite://"


class FakeRedis:
    """Minimal async Redis stub for rate limiting and idempotency tests."""

    def __init__(self) -> None:
        self.store: Dict[str, int | str] = {}
        self.ttl: Dict[str, int] = {}

    async def incr(self, key: str) -> int:
        current = int(self.store.get(key, 0)) + 1
        self.store[key] = current
        return current

    async def expire(self, key: str, seconds: int) -> None:
        self.ttl[key] = seconds

    async def set(self, key: str, value: str, ex: int | None = None, nx: bool = False) -> bool:
        if nx and key in self.store:
            return False
        self.store[key] = value
        if ex is not None:
            self.ttl[key] = ex
        return True

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
            self.ttl.pop(key, None)
        return removed

    async def aclose(self) -> None:
        return None


@pytest.fixture(autouse=True)
def fake_redis(monkeypatch) -> FakeRedis:
    """Patch the limits module to use an in-memory Redis stub."""

    fake = FakeRedis()
    monkeypatch.setattr(limits_service, "_redis_client", fake, raising=False)
    yield fake
    monkeypatch.setattr(limits_service, "_redis_client", None, raising=False)


@pytest_asyncio.fixture
async def test_db_engine():
    """
    Create a fresh in-memory database per test.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(test_db_engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """
    Session used to seed data and drive the service layer directly.
    """
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def test_app(session_factory) -> AsyncGenerator[FastAPI, None]:
    """
    Create a FastAPI test application bound to the test database.
    """
    app = create_application()

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            try:
                yield session
            finally:
                await session.rollback()

    app.dependency_overrides[get_db] = _override_get_db
    async with LifespanManager(app):
        yield app


@pytest_asyncio.fixture
async def client(test_app: FastAPI) -> AsyncGenerator[httpx.AsyncClient, None]:
    """
    Create an async HTTP client for testing.
    """
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


def build_auth_header(
    user_id: UUID,
    *,
    permissions: Optional[Iterable[str]] = None,
    role: Optional[str] = None,
) -> Dict[str, str]:
    claims = {"sub": str(user_id)}
    if permissions is not None:
        claims["permissions"] = list(permissions)
    if role is not None:
        claims["role"] = role
    token = jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALG)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_header() -> Callable[..., Dict[str, str]]:
    return build_auth_header


@pytest.fixture
def make_user(test_db):
    counter = {"n": 0}

    async def _make_user(**fields) -> User:
        counter["n"] += 1
        fields.setdefault("email", f"learner{counter['n']}@example.com")
        fields.setdefault("first_name", "Ada")
        fields.setdefault("last_name", "Lovelace")
        user = User(**fields)
        test_db.add(user)
        await test_db.commit()
        return user

    return _make_user


@pytest.fixture
def make_tier(test_db):
    async def _make_tier(name: str = "Basic", **fields) -> SubscriptionTier:
        fields.setdefault("slug", name.lower().replace(" ", "-"))
        fields.setdefault("price", Decimal("0"))
        fields.setdefault("display_order", 0)
        fields.setdefault("entitlement_rank", fields["display_order"])
        tier = SubscriptionTier(name=name, **fields)
        test_db.add(tier)
        await test_db.commit()
        return tier

    return _make_tier


@pytest.fixture
def make_institution(test_db):
    async def _make_institution(name: str = "Northwind Academy", **fields) -> Institution:
        institution = Institution(name=name, **fields)
        test_db.add(institution)
        await test_db.commit()
        return institution

    return _make_institution


@pytest.fixture
def make_course(test_db):
    async def _make_course(title: str = "Algebra I", **fields) -> Course:
        fields.setdefault("price", Decimal("0"))
        course = Course(title=title, **fields)
        test_db.add(course)
        await test_db.commit()
        return course

    return _make_course


@pytest.fixture
def make_pathway(test_db):
    async def _make_pathway(title: str = "Data Analyst", **fields) -> Pathway:
        fields.setdefault("price", Decimal("0"))
        pathway = Pathway(title=title, **fields)
        test_db.add(pathway)
        await test_db.commit()
        return pathway

    return _make_pathway
