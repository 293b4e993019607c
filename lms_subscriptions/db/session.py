"""Database engine and session factory."""
from __future__ import annotations

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from lms_subscriptions.core.config import settings


def create_engine() -> AsyncEngine:
    return create_async_engine(
        settings.DATABASE_URI, echo=settings.DB_ECHO, pool_pre_ping=True
    )


engine = create_engine()
SessionLocal = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield a session; services own their commits, leftovers are rolled back."""

    async with SessionLocal() as session:
        try:
            yield session
        finally:
            await session.rollback()
