from uuid import UUID

from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..bookings import create_booking_request, get_booking_request
from ..context import AppContext, get_context, get_session
from ..models import PaymentMethod
from ..pricing import from_minor_units
from ..schemas import BookingCreated, BookingCreateRequest, BookingRequestOut, Envelope

router = APIRouter(tags=["bookings"])


@router.post("/bookings", response_model=Envelope[BookingCreated])
async def create_booking(
    request: BookingCreateRequest,
    background_tasks: BackgroundTasks,
    ctx: AppContext = Depends(get_context),
) -> Envelope[BookingCreated]:
    """
    Submit a booking request.

    Edge Cases:
    - Check-in in the past or check-out not after check-in: 400
    - Dates overlap a confirmed stay: 409
    - Another submission for the same dates in flight: 409
    - Rejected discount code: 400 with the reason
    """
    booking, notifications = await create_booking_request(ctx, request)

    # Emails go out only after the request is stored
    background_tasks.add_task(ctx.notifier.dispatch_all, notifications)

    is_bank_transfer = request.payment_method == PaymentMethod.BANK_TRANSFER
    return Envelope[BookingCreated](
        message=(
            "Booking request submitted successfully. Please confirm your payment on WhatsApp."
            if is_bank_transfer
            else "Booking request submitted successfully"
        ),
        data=BookingCreated(
            booking_id=booking.id,
            status=booking.status,
            number_of_nights=booking.number_of_nights,
            subtotal=from_minor_units(booking.subtotal_minor),
            discount_code=booking.discount_code,
            discount_amount=from_minor_units(booking.discount_amount_minor),
            total_amount=from_minor_units(booking.total_amount_minor),
            payment_method=request.payment_method,
            id_document_attached=booking.guest_id_document is not None,
        ),
    )


@router.get("/bookings/{booking_id}", response_model=Envelope[BookingRequestOut])
async def get_booking(
    booking_id: UUID,
    session: AsyncSession = Depends(get_session),
) -> Envelope[BookingRequestOut]:
    booking = await get_booking_request(session, booking_id)
    return Envelope[BookingRequestOut](data=BookingRequestOut.from_booking(booking))
