"""UTC clock and calendar-month arithmetic.

Month arithmetic uses :class:`dateutil.relativedelta.relativedelta`, which
clamps to the last valid day of the target month (Jan 31 + 1 month is Feb 28,
or Feb 29 in a leap year). Every expiry computation goes through
:func:`add_months` so the policy is applied uniformly.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from dateutil.relativedelta import relativedelta


def utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive timestamps read back from the store."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    return value + relativedelta(months=months)
