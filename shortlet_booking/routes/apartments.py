from fastapi import APIRouter, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from ..availability import find_conflict, unavailable_ranges
from ..bookings import describe_conflict
from ..context import get_session
from ..observability import AVAILABILITY_CHECKS
from ..schemas import AvailabilityCheckRequest, AvailabilityCheckResponse, BookedRange, Envelope

router = APIRouter(prefix="/apartments", tags=["availability"])


@router.post("/{apartment_id}/check-availability", response_model=AvailabilityCheckResponse)
async def check_availability(
    request: AvailabilityCheckRequest,
    apartment_id: str = Path(min_length=1, max_length=64),
    session: AsyncSession = Depends(get_session),
) -> AvailabilityCheckResponse:
    """Check whether ``[checkInDate, checkOutDate)`` is free for the apartment."""
    conflict = await find_conflict(
        session, apartment_id, request.check_in_date, request.check_out_date
    )

    if conflict:
        AVAILABILITY_CHECKS.labels(result="conflict").inc()
        return AvailabilityCheckResponse(available=False, conflict_details=describe_conflict(conflict))

    AVAILABILITY_CHECKS.labels(result="available").inc()
    return AvailabilityCheckResponse(available=True)


@router.get("/{apartment_id}/bookings", response_model=Envelope[list[BookedRange]])
async def list_booked_ranges(
    apartment_id: str = Path(min_length=1, max_length=64),
    session: AsyncSession = Depends(get_session),
) -> Envelope[list[BookedRange]]:
    """Occupied ranges for calendar rendering."""
    ranges = await unavailable_ranges(session, apartment_id)
    return Envelope[list[BookedRange]](
        data=[BookedRange(start_date=r.start, end_date=r.end) for r in ranges]
    )
