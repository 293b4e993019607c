"""Transaction boundary shared by the service layer."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from lms_subscriptions.core.exceptions import AppException, ConflictError

logger = logging.getLogger(__name__)


@asynccontextmanager
async def unit_of_work(
    session: AsyncSession,
    operation: str,
    *,
    conflict_message: Optional[str] = None,
    **context: Any,
) -> AsyncIterator[AsyncSession]:
    """Commit everything done inside the block, or nothing.

    Unique-constraint violations become :class:`ConflictError` when the caller
    supplies ``conflict_message``; every other error is re-raised unchanged
    after the rollback.
    """

    try:
        yield session
        await session.commit()
    except AppException as exc:
        await session.rollback()
        logger.warning(
            "%s rejected: %s", operation, exc.message, extra={"operation": operation, **context}
        )
        raise
    except IntegrityError as exc:
        await session.rollback()
        logger.warning(
            "Integrity error during %s", operation, extra={"operation": operation, **context}
        )
        if conflict_message is None:
            raise
        raise ConflictError(conflict_message) from exc
    except Exception:
        await session.rollback()
        logger.exception(
            "Store error during %s", operation, extra={"operation": operation, **context}
        )
        raise
