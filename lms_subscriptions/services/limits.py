"""Redis-backed throttling and idempotency for subscription mutations."""
from __future__ import annotations

import logging
import time
from typing import Optional

import redis.asyncio as redis
from fastapi import HTTPException, status

from lms_subscriptions.core.config import settings

logger = logging.getLogger(__name__)

KEY_PREFIX = "lms:subscriptions"
WINDOW_SECONDS = 60

_redis_client: redis.Redis | None = None


async def _get_client() -> redis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = redis.from_url(str(settings.REDIS_URI), decode_responses=True)
    return _redis_client


async def close_client() -> None:
    """Release the shared connection pool (application shutdown)."""

    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None


def _rate_key(scope: str, user_id: str) -> str:
    window = int(time.time() // WINDOW_SECONDS)
    return f"{KEY_PREFIX}:rl:{scope}:{user_id}:{window}"


def _idempotency_key(user_id: str, key: str) -> str:
    return f"{KEY_PREFIX}:idemp:{user_id}:{key}"


async def check_rate_limit(user_id: str, scope: str = "subscribe") -> None:
    """Fixed one-minute window per user and scope."""

    client = await _get_client()
    key = _rate_key(scope, user_id)
    hits = await client.incr(key)
    if hits == 1:
        await client.expire(key, WINDOW_SECONDS)
    if hits > settings.limits.rate_limit_rpm:
        logger.warning("Rate limit exceeded", extra={"user_id": user_id, "scope": scope})
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests, please try again later",
        )


async def ensure_idempotent(user_id: str, key: Optional[str]) -> None:
    """Claim ``key`` for this user; a second claim within the TTL is a 409."""

    if not key:
        return
    client = await _get_client()
    claimed = await client.set(
        _idempotency_key(user_id, key),
        "1",
        ex=settings.limits.idempotency_ttl_seconds,
        nx=True,
    )
    if not claimed:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Duplicate request (idempotency)",
        )


async def release_idempotency_key(user_id: str, key: Optional[str]) -> None:
    """Give the key back after a failed request so the client may retry."""

    if not key:
        return
    client = await _get_client()
    await client.delete(_idempotency_key(user_id, key))
