"""
Date-range conflict checks for a property.

Stays are half-open intervals ``[check_in, check_out)``: a guest checking out
on the day another checks in does not conflict. All comparisons happen on
calendar dates in the property timezone.
"""

from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Optional, Union
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ValidationError
from .models import Tenant, TenantStatus

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class DateRange:
    start: date
    end: date

    @property
    def nights(self) -> int:
        return (self.end - self.start).days

    def overlaps(self, other: "DateRange") -> bool:
        return ranges_overlap(self.start, self.end, other.start, other.end)


def ranges_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    """Half-open overlap: ``[a_start, a_end)`` intersects ``[b_start, b_end)``."""
    return a_start < b_end and a_end > b_start


def normalize_stay_date(value: Union[date, datetime, str], tz_name: str) -> date:
    """
    Reduce a date, datetime or ISO string to a calendar date in ``tz_name``.

    Browsers post midnight-local dates as UTC timestamps
    (``2025-02-28T23:00:00.000Z`` for 1 March in Lagos); converting before
    truncating keeps those from landing on the previous day.
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(ZoneInfo(tz_name))
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        raw = value.strip()
        try:
            return date.fromisoformat(raw)
        except ValueError:
            pass
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError(f"Invalid date: {value!r}") from None
        return normalize_stay_date(parsed, tz_name)
    raise ValueError(f"Invalid date: {value!r}")


def property_today(tz_name: str) -> date:
    return datetime.now(timezone.utc).astimezone(ZoneInfo(tz_name)).date()


def _require_valid_range(start: date, end: date) -> None:
    if start >= end:
        raise ValidationError("Check-out date must be after check-in date")


async def find_conflict(
    session: AsyncSession,
    property_id: str,
    start: date,
    end: date,
) -> Optional[Tenant]:
    """Return the earliest non-cancelled stay overlapping ``[start, end)``, if any."""
    _require_valid_range(start, end)

    query = (
        select(Tenant)
        .where(
            and_(
                Tenant.property_id == property_id,
                Tenant.status != TenantStatus.CANCELLED.value,
                Tenant.check_in_date < end,
                Tenant.check_out_date > start,
            )
        )
        .order_by(Tenant.check_in_date)
        .limit(1)
    )
    result = await session.execute(query)
    conflict = result.scalar_one_or_none()

    if conflict:
        logger.info(
            "Date conflict found",
            property_id=property_id,
            requested=f"{start.isoformat()}/{end.isoformat()}",
            existing=f"{conflict.check_in_date.isoformat()}/{conflict.check_out_date.isoformat()}",
        )
    return conflict


async def has_conflict(
    session: AsyncSession,
    property_id: str,
    start: date,
    end: date,
) -> bool:
    return await find_conflict(session, property_id, start, end) is not None


async def unavailable_ranges(
    session: AsyncSession,
    property_id: str,
) -> list[DateRange]:
    """All occupied ranges of a property, for calendar display."""
    query = (
        select(Tenant.check_in_date, Tenant.check_out_date)
        .where(
            and_(
                Tenant.property_id == property_id,
                Tenant.status != TenantStatus.CANCELLED.value,
            )
        )
        .order_by(Tenant.check_in_date)
    )
    result = await session.execute(query)
    return [DateRange(start=row.check_in_date, end=row.check_out_date) for row in result]
