from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from pydantic import ValidationError as SchemaError

from shortlet_booking.bookings import (
    BANK_TRANSFER_ADMIN_NOTE,
    BANK_TRANSFER_NOTE,
    WEBSITE_NOTE,
    create_booking_request,
    get_booking_request,
    submit_viewing_request,
)
from shortlet_booking.discounts import create_discount_code, mark_used
from shortlet_booking.errors import ConflictError, NotFoundError, ValidationError
from shortlet_booking.models import BookingRequest, BookingStatus, DiscountType
from shortlet_booking.notifications import NotificationKind
from shortlet_booking.schemas import BookingCreateRequest, ViewingRequest
from tests.factories import add_tenant, booking_create_request, booking_payload

TODAY = date(2025, 2, 1)
CHECK_IN = date(2025, 3, 1)
CHECK_OUT = date(2025, 3, 5)


def stay_request(**overrides):
    return booking_create_request(check_in=CHECK_IN, check_out=CHECK_OUT, **overrides)


class TestCreateBookingRequest:
    async def test_stores_pending_request_with_computed_totals(self, ctx, session):
        booking, queue = await create_booking_request(ctx, stay_request(), today=TODAY)

        stored = await session.get(BookingRequest, booking.id)
        assert stored.status == BookingStatus.PENDING.value
        assert stored.number_of_nights == 4
        assert stored.price_per_night_minor == 2_500_000
        assert stored.subtotal_minor == 10_000_000
        assert stored.total_amount_minor == 10_000_000
        assert stored.discount_code is None
        assert stored.admin_notes is None
        assert stored.emergency_contact["relationship"] == "Brother"
        assert [entry["message"] for entry in stored.communications] == [WEBSITE_NOTE]
        assert queue.kinds == [NotificationKind.BOOKING_RECEIVED, NotificationKind.BOOKING_ADMIN_ALERT]

    async def test_bank_transfer_is_flagged_for_confirmation(self, ctx):
        booking, _ = await create_booking_request(
            ctx, stay_request(paymentMethod="bank_transfer"), today=TODAY
        )

        assert booking.payment_method == "bank_transfer"
        assert booking.admin_notes == BANK_TRANSFER_ADMIN_NOTE
        assert booking.communications[0]["message"] == BANK_TRANSFER_NOTE

    async def test_discount_code_reduces_total(self, ctx, session):
        await create_discount_code(session, DiscountType.PERCENTAGE, 10, code="SAVE10", min_stay_days=3)
        await session.commit()

        booking, _ = await create_booking_request(ctx, stay_request(discountCode="save10"), today=TODAY)

        assert booking.discount_code == "SAVE10"
        assert booking.subtotal_minor == 10_000_000
        assert booking.discount_amount_minor == 1_000_000
        assert booking.total_amount_minor == 9_000_000

    async def test_rejected_discount_code_blocks_submission(self, ctx, session):
        await create_discount_code(session, DiscountType.PERCENTAGE, 10, code="SAVE10")
        await mark_used(session, "SAVE10", "ada.obi@gmail.com")
        await session.commit()

        with pytest.raises(ValidationError) as excinfo:
            await create_booking_request(ctx, stay_request(discountCode="SAVE10"), today=TODAY)

        assert excinfo.value.message == "You have already used this discount code"
        assert excinfo.value.details == {"reason": "already_used"}

    async def test_overlapping_confirmed_stay_is_a_conflict(self, ctx, session):
        await add_tenant(session, date(2025, 3, 4), date(2025, 3, 8))

        with pytest.raises(ConflictError) as excinfo:
            await create_booking_request(ctx, stay_request(), today=TODAY)

        assert excinfo.value.message == "Property is not available for the selected dates"
        assert excinfo.value.details == {"conflictDetails": "Booked from 2025-03-04 to 2025-03-08"}

    async def test_back_to_back_stay_is_accepted(self, ctx, session):
        await add_tenant(session, date(2025, 2, 25), CHECK_IN)

        booking, _ = await create_booking_request(ctx, stay_request(), today=TODAY)

        assert booking.check_in_date == CHECK_IN

    async def test_past_check_in_is_rejected(self, ctx):
        with pytest.raises(ValidationError, match="cannot be in the past"):
            await create_booking_request(ctx, stay_request(), today=CHECK_IN + timedelta(days=1))

    async def test_check_in_today_is_allowed(self, ctx):
        booking, _ = await create_booking_request(ctx, stay_request(), today=CHECK_IN)

        assert booking.status == BookingStatus.PENDING.value

    async def test_get_unknown_booking(self, session):
        with pytest.raises(NotFoundError):
            await get_booking_request(session, uuid4())


class TestBookingSchema:
    def test_formatted_price_is_parsed(self):
        request = stay_request()

        assert request.property.price == Decimal("25000")

    def test_price_written_with_currency_name(self):
        payload = booking_payload(check_in=CHECK_IN, check_out=CHECK_OUT)
        payload["property"]["price"] = "NGN 45,000.50"

        assert BookingCreateRequest.model_validate(payload).property.price == Decimal("45000.50")

    def test_negative_price_is_rejected(self):
        payload = booking_payload(check_in=CHECK_IN, check_out=CHECK_OUT)
        payload["property"]["price"] = "-₦25,000"

        with pytest.raises(SchemaError, match="greater than 0"):
            BookingCreateRequest.model_validate(payload)

    def test_same_day_checkout_is_rejected(self):
        with pytest.raises(SchemaError, match="Check-out date must be after check-in date"):
            BookingCreateRequest.model_validate(booking_payload(check_in=CHECK_IN, check_out=CHECK_IN))

    def test_blank_name_is_rejected(self):
        payload = booking_payload(check_in=CHECK_IN, check_out=CHECK_OUT)
        payload["personalDetails"]["firstName"] = "   "

        with pytest.raises(SchemaError, match="Please fill in all required fields"):
            BookingCreateRequest.model_validate(payload)

    def test_invalid_email_is_rejected(self):
        payload = booking_payload(check_in=CHECK_IN, check_out=CHECK_OUT)
        payload["personalDetails"]["email"] = "not-an-email"

        with pytest.raises(SchemaError):
            BookingCreateRequest.model_validate(payload)


def viewing(preferred_date: date) -> ViewingRequest:
    return ViewingRequest.model_validate({
        "property": {"id": "apt-lekki-1", "title": "Lekki Phase 1 Loft"},
        "viewingDetails": {
            "firstName": "Tunde",
            "lastName": "Bakare",
            "email": "tunde@gmail.com",
            "phone": "+2348022222222",
            "preferredDate": preferred_date.isoformat(),
            "preferredTime": "14:00",
        },
    })


class TestViewingRequest:
    def test_queues_viewing_notification(self, settings):
        queue = submit_viewing_request(settings, viewing(date(2025, 2, 10)), today=TODAY)

        (notification,) = queue.drain()
        assert notification.kind == NotificationKind.VIEWING_REQUEST
        assert notification.payload["guest_name"] == "Tunde Bakare"
        assert notification.payload["preferred_date"] == "2025-02-10"

    def test_past_date_is_rejected(self, settings):
        with pytest.raises(ValidationError, match="Preferred viewing date cannot be in the past"):
            submit_viewing_request(settings, viewing(date(2025, 1, 31)), today=TODAY)
