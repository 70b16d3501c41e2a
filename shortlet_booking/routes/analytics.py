from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..analytics import discount_statistics
from ..context import get_session
from ..pricing import from_minor_units
from ..schemas import (
    DiscountAnalytics,
    DiscountOverview,
    DiscountTimeframe,
    Envelope,
    TopDiscountCode,
)

router = APIRouter(prefix="/analytics", tags=["analytics"])


@router.get("/discounts", response_model=Envelope[DiscountAnalytics])
async def discount_analytics(
    date_from: Optional[date] = Query(default=None, alias="from"),
    date_to: Optional[date] = Query(default=None, alias="to"),
    limit: int = Query(default=10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
) -> Envelope[DiscountAnalytics]:
    stats = await discount_statistics(session, date_from, date_to, limit)

    return Envelope[DiscountAnalytics](
        data=DiscountAnalytics(
            overview=DiscountOverview(
                total_bookings=stats.total_bookings,
                bookings_with_discount=stats.bookings_with_discount,
                discount_usage_rate=f"{stats.usage_rate_percent}%",
                total_savings=from_minor_units(stats.total_savings_minor),
                avg_discount_amount=from_minor_units(stats.avg_discount_minor),
            ),
            top_discount_codes=[
                TopDiscountCode(
                    code=usage.code,
                    usage_count=usage.usage_count,
                    total_savings=from_minor_units(usage.total_savings_minor),
                    avg_savings=from_minor_units(usage.avg_savings_minor),
                    discount_type=usage.discount_type,
                    discount_value=usage.discount_value,
                )
                for usage in stats.top_codes
            ],
            timeframe=DiscountTimeframe(
                from_=date_from.isoformat() if date_from else "All time",
                to=date_to.isoformat() if date_to else "Present",
            ),
        )
    )
