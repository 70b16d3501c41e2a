"""
Booking request submission.

A booking request is the guest's offer to stay: it is stored as Pending and
only becomes a tenancy once payment is reconciled. Submissions for the same
property and dates are serialized by the booking lock so two guests cannot
both pass the availability check.
"""

from datetime import date
from typing import Any, Optional
from uuid import UUID, uuid4

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from .availability import find_conflict, property_today
from .config import Settings
from .context import AppContext
from .discounts import validate_discount
from .errors import ConflictError, NotFoundError, ValidationError
from .locks import booking_key
from .models import BookingRequest, BookingStatus, PaymentMethod, Tenant
from .notifications import NotificationKind, NotificationQueue
from .observability import AVAILABILITY_CHECKS, BOOKING_REQUESTS_CREATED, DISCOUNT_VALIDATIONS
from .pricing import count_nights, from_minor_units, to_minor_units
from .schemas import BookingCreateRequest, ViewingRequest

logger = structlog.get_logger(__name__)

BANK_TRANSFER_ADMIN_NOTE = "Payment method: Bank Transfer - Awaiting confirmation"
WEBSITE_NOTE = "Booking request submitted via website"
BANK_TRANSFER_NOTE = (
    "Booking request submitted via website with bank transfer payment - "
    "awaiting payment confirmation"
)


def booking_payload(booking: BookingRequest, currency: str = "NGN") -> dict[str, Any]:
    """Notification payload describing a booking request."""
    return {
        "booking_request_id": str(booking.id),
        "guest_name": booking.guest_full_name,
        "email": booking.guest_email,
        "phone": booking.guest_phone,
        "property_id": booking.property_id,
        "property_title": booking.property_title,
        "check_in": booking.check_in_date.isoformat(),
        "check_out": booking.check_out_date.isoformat(),
        "nights": booking.number_of_nights,
        "guests": booking.number_of_guests,
        "total_amount": str(from_minor_units(booking.total_amount_minor)),
        "currency": currency,
        "payment_method": booking.payment_method,
    }


def describe_conflict(tenant: Tenant) -> str:
    return (
        f"Booked from {tenant.check_in_date.isoformat()} "
        f"to {tenant.check_out_date.isoformat()}"
    )


def _require_bookable_dates(check_in: date, check_out: date, today: date) -> None:
    if check_in < today:
        raise ValidationError("Check-in date cannot be in the past")
    if check_out <= check_in:
        raise ValidationError("Check-out date must be after check-in date")


async def create_booking_request(
    ctx: AppContext,
    request: BookingCreateRequest,
    today: Optional[date] = None,
) -> tuple[BookingRequest, NotificationQueue]:
    """
    Persist a Pending booking request.

    Flow:
    1. Validate dates against today in the property timezone
    2. Acquire the booking lock for the property and dates
    3. Verify availability (with lock held)
    4. Apply the optional discount code to the subtotal
    5. Store the request with its initial audit entry

    Returns the stored request and the notifications to send after commit.

    Raises:
        ValidationError: Bad dates or a rejected discount code
        ConflictError: Dates taken, or another submission holds the lock
    """
    stay = request.booking_details
    guest = request.personal_details
    prop = request.property

    today = today or property_today(ctx.settings.PROPERTY_TIMEZONE)
    _require_bookable_dates(stay.check_in_date, stay.check_out_date, today)

    nights = count_nights(stay.check_in_date, stay.check_out_date)
    price_per_night_minor = to_minor_units(prop.price)
    subtotal_minor = price_per_night_minor * nights
    user_id = request.user_id or guest.email.lower()

    lock_key = booking_key(prop.id, stay.check_in_date, stay.check_out_date)

    async with ctx.locks.hold(lock_key):
        async with ctx.session_factory() as session:
            conflict = await find_conflict(session, prop.id, stay.check_in_date, stay.check_out_date)
            if conflict:
                AVAILABILITY_CHECKS.labels(result="conflict").inc()
                raise ConflictError(
                    "Property is not available for the selected dates",
                    details={"conflictDetails": describe_conflict(conflict)},
                )
            AVAILABILITY_CHECKS.labels(result="available").inc()

            discount_code = None
            discount_minor = 0
            if request.discount_code:
                result = await validate_discount(
                    session,
                    request.discount_code,
                    from_minor_units(subtotal_minor),
                    nights,
                    user_id=user_id,
                )
                DISCOUNT_VALIDATIONS.labels(
                    outcome="applied" if result.ok else result.kind.value
                ).inc()
                if not result.ok:
                    raise ValidationError(result.message, details={"reason": result.kind.value})
                discount_code = result.code
                discount_minor = to_minor_units(result.discount_amount)

            is_bank_transfer = request.payment_method == PaymentMethod.BANK_TRANSFER

            booking = BookingRequest(
                id=uuid4(),
                property_id=prop.id,
                property_title=prop.title,
                property_location=prop.location,
                guest_first_name=guest.first_name,
                guest_last_name=guest.last_name,
                guest_email=guest.email,
                guest_phone=guest.phone,
                guest_nin=guest.nin,
                guest_id_document=(
                    guest.id_document.model_dump() if guest.id_document else None
                ),
                emergency_contact=request.emergency_contact.model_dump(),
                check_in_date=stay.check_in_date,
                check_out_date=stay.check_out_date,
                number_of_guests=stay.guests,
                number_of_nights=nights,
                price_per_night_minor=price_per_night_minor,
                subtotal_minor=subtotal_minor,
                discount_code=discount_code,
                discount_amount_minor=discount_minor,
                total_amount_minor=max(0, subtotal_minor - discount_minor),
                status=BookingStatus.PENDING.value,
                payment_method=request.payment_method.value,
                source="Website",
                admin_notes=BANK_TRANSFER_ADMIN_NOTE if is_bank_transfer else None,
                communications=[],
            )
            booking.add_communication(
                "Note", BANK_TRANSFER_NOTE if is_bank_transfer else WEBSITE_NOTE
            )

            session.add(booking)
            await session.commit()

    BOOKING_REQUESTS_CREATED.labels(payment_method=booking.payment_method).inc()
    logger.info(
        "Booking request created",
        booking_request_id=str(booking.id),
        property_id=booking.property_id,
        check_in=booking.check_in_date.isoformat(),
        check_out=booking.check_out_date.isoformat(),
        total_amount_minor=booking.total_amount_minor,
        discount_code=discount_code,
    )

    queue = NotificationQueue()
    payload = booking_payload(booking, ctx.settings.PAYMENT_CURRENCY)
    queue.add(NotificationKind.BOOKING_RECEIVED, **payload)
    queue.add(NotificationKind.BOOKING_ADMIN_ALERT, **payload)
    return booking, queue


async def get_booking_request(session: AsyncSession, booking_request_id: UUID) -> BookingRequest:
    booking = await session.get(BookingRequest, booking_request_id)
    if booking is None:
        raise NotFoundError("Booking request not found")
    return booking


def submit_viewing_request(
    settings: Settings,
    request: ViewingRequest,
    today: Optional[date] = None,
) -> NotificationQueue:
    """Validate a viewing request and queue the admin and guest emails."""
    details = request.viewing_details
    today = today or property_today(settings.PROPERTY_TIMEZONE)

    if details.preferred_date < today:
        raise ValidationError("Preferred viewing date cannot be in the past")

    logger.info(
        "Viewing request received",
        property_id=request.property.id,
        preferred_date=details.preferred_date.isoformat(),
        preferred_time=details.preferred_time,
    )

    queue = NotificationQueue()
    queue.add(
        NotificationKind.VIEWING_REQUEST,
        guest_name=f"{details.first_name} {details.last_name}",
        email=details.email,
        phone=details.phone,
        property_id=request.property.id,
        property_title=request.property.title,
        preferred_date=details.preferred_date.isoformat(),
        preferred_time=details.preferred_time,
        message=details.message,
    )
    return queue
