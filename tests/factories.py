from datetime import date, timedelta
from typing import Any, Optional
from uuid import uuid4

from shortlet_booking.models import BookingRequest, BookingStatus, Tenant, TenantStatus
from shortlet_booking.schemas import BookingCreateRequest

PROPERTY_ID = "apt-lekki-1"


def future(days: int) -> date:
    return date.today() + timedelta(days=days)


def booking_payload(
    check_in: Optional[date] = None,
    check_out: Optional[date] = None,
    **overrides: Any,
) -> dict[str, Any]:
    """A booking form submission as the website posts it."""
    check_in = check_in or future(30)
    check_out = check_out or check_in + timedelta(days=4)
    payload = {
        "property": {
            "id": PROPERTY_ID,
            "title": "Lekki Phase 1 Loft",
            "location": "Lekki, Lagos",
            "price": "₦25,000",
        },
        "personalDetails": {
            "firstName": "Ada",
            "lastName": "Obi",
            "email": "ada.obi@gmail.com",
            "phone": "+2348012345678",
            "nin": "12345678901",
        },
        "bookingDetails": {
            "checkInDate": check_in.isoformat(),
            "checkOutDate": check_out.isoformat(),
            "guests": 2,
        },
        "emergencyContact": {
            "name": "Chidi Obi",
            "phone": "+2348098765432",
            "relationship": "Brother",
        },
        "paymentMethod": "online",
    }
    payload.update(overrides)
    return payload


def booking_create_request(**kwargs: Any) -> BookingCreateRequest:
    return BookingCreateRequest.model_validate(booking_payload(**kwargs))


async def add_booking(
    session,
    check_in: date = date(2025, 3, 1),
    check_out: date = date(2025, 3, 5),
    total_minor: int = 10_000_000,
    status: BookingStatus = BookingStatus.PENDING,
    email: str = "ada.obi@gmail.com",
    property_id: str = PROPERTY_ID,
) -> BookingRequest:
    nights = (check_out - check_in).days
    booking = BookingRequest(
        id=uuid4(),
        property_id=property_id,
        property_title="Lekki Phase 1 Loft",
        property_location="Lekki, Lagos",
        guest_first_name="Ada",
        guest_last_name="Obi",
        guest_email=email,
        guest_phone="+2348012345678",
        emergency_contact={"name": "Chidi Obi", "phone": "+2348098765432", "relationship": "Brother"},
        check_in_date=check_in,
        check_out_date=check_out,
        number_of_guests=2,
        number_of_nights=nights,
        price_per_night_minor=total_minor // nights,
        subtotal_minor=total_minor,
        discount_amount_minor=0,
        total_amount_minor=total_minor,
        status=status.value,
        payment_method="online",
        communications=[],
    )
    session.add(booking)
    await session.commit()
    return booking


async def add_tenant(
    session,
    check_in: date,
    check_out: date,
    property_id: str = PROPERTY_ID,
    email: str = "someone.else@gmail.com",
    status: TenantStatus = TenantStatus.CONFIRMED,
) -> Tenant:
    tenant = Tenant(
        id=uuid4(),
        first_name="Bola",
        last_name="Ade",
        email=email,
        phone="+2348011111111",
        property_id=property_id,
        check_in_date=check_in,
        check_out_date=check_out,
        number_of_guests=1,
        number_of_nights=(check_out - check_in).days,
        price_per_night_minor=2_500_000,
        total_amount_minor=2_500_000 * (check_out - check_in).days,
        amount_paid_minor=2_500_000 * (check_out - check_in).days,
        status=status.value,
    )
    session.add(tenant)
    await session.commit()
    return tenant
