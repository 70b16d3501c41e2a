"""
Discount usage statistics for the admin dashboard.
"""

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog
from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .discounts import discount_value
from .models import BookingRequest, DiscountCode

logger = structlog.get_logger(__name__)


@dataclass
class CodeUsage:
    code: str
    usage_count: int
    total_savings_minor: int
    avg_savings_minor: int
    discount_type: Optional[str] = None
    discount_value: Optional[Decimal] = None


@dataclass
class DiscountStatistics:
    total_bookings: int
    bookings_with_discount: int
    usage_rate_percent: int
    total_savings_minor: int
    avg_discount_minor: int
    top_codes: list[CodeUsage]


def _rounded_ratio(numerator: int, denominator: int) -> int:
    if not denominator:
        return 0
    return int((Decimal(numerator) / Decimal(denominator)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


async def discount_statistics(
    session: AsyncSession,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = 10,
) -> DiscountStatistics:
    """
    Aggregate discount usage over booking requests created in
    ``[date_from, date_to]`` (both inclusive, either open-ended).
    """
    filters = []
    if date_from:
        filters.append(BookingRequest.created_at >= datetime.combine(date_from, time.min))
    if date_to:
        filters.append(BookingRequest.created_at < datetime.combine(date_to + timedelta(days=1), time.min))

    discounted = and_(
        BookingRequest.discount_code.is_not(None),
        BookingRequest.discount_amount_minor > 0,
    )

    overview_query = select(
        func.count(BookingRequest.id),
        func.count(case((discounted, 1))),
        func.coalesce(func.sum(case((discounted, BookingRequest.discount_amount_minor), else_=0)), 0),
    ).where(*filters)
    total_bookings, with_discount, total_savings = (await session.execute(overview_query)).one()

    usage_count = func.count(BookingRequest.id).label("usage_count")
    codes_query = (
        select(
            BookingRequest.discount_code,
            usage_count,
            func.sum(BookingRequest.discount_amount_minor).label("total_savings"),
        )
        .where(discounted, *filters)
        .group_by(BookingRequest.discount_code)
        .order_by(usage_count.desc(), BookingRequest.discount_code)
        .limit(limit)
    )
    rows = (await session.execute(codes_query)).all()

    definitions = {}
    if rows:
        result = await session.execute(
            select(DiscountCode).where(DiscountCode.code.in_([row.discount_code for row in rows]))
        )
        definitions = {discount.code: discount for discount in result.scalars()}

    top_codes = []
    for row in rows:
        definition = definitions.get(row.discount_code)
        top_codes.append(CodeUsage(
            code=row.discount_code,
            usage_count=row.usage_count,
            total_savings_minor=int(row.total_savings),
            avg_savings_minor=_rounded_ratio(int(row.total_savings), row.usage_count),
            discount_type=definition.discount_type if definition else None,
            discount_value=discount_value(definition) if definition else None,
        ))

    logger.debug(
        "Discount statistics computed",
        total_bookings=total_bookings,
        bookings_with_discount=with_discount,
    )

    return DiscountStatistics(
        total_bookings=total_bookings,
        bookings_with_discount=with_discount,
        usage_rate_percent=_rounded_ratio(with_discount * 100, total_bookings),
        total_savings_minor=int(total_savings),
        avg_discount_minor=_rounded_ratio(int(total_savings), with_discount),
        top_codes=top_codes,
    )
