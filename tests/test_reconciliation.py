import asyncio
from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy import exc as sa_exc

from shortlet_booking import reconciliation
from shortlet_booking.context import build_context
from shortlet_booking.database import create_all
from shortlet_booking.errors import ConflictError, GatewayError, IntegrityError, NotFoundError, ValidationError
from shortlet_booking.models import BookingRequest, BookingStatus, Tenant, Transaction, TransactionStatus
from shortlet_booking.notifications import NotificationKind
from shortlet_booking.reconciliation import (
    APPROVED_NOTE,
    PAYMENT_FAILED_NOTE,
    TENANT_CREATED_NOTE,
    TENANT_LINKED_NOTE,
    ReconciliationOutcome,
    initialize_payment,
    verify_and_reconcile,
)
from tests.factories import add_booking, add_tenant


async def reload(session, model, ident):
    return await session.get(model, ident, populate_existing=True)


async def count(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


async def tenants_for(session, booking: BookingRequest) -> list[Tenant]:
    result = await session.execute(
        select(Tenant).where(Tenant.property_id == booking.property_id).execution_options(populate_existing=True)
    )
    return list(result.scalars())


async def paid_booking_reference(ctx, session, **booking_kwargs):
    booking = await add_booking(session, **booking_kwargs)
    init = await initialize_payment(ctx, booking.id)
    return booking, init.reference


class TestInitializePayment:
    async def test_sends_amount_in_kobo_and_stores_pending_transaction(self, ctx, session, gateway):
        booking = await add_booking(session, total_minor=9_000_000)

        result = await initialize_payment(ctx, booking.id, client_ip="102.89.1.1", user_agent="Mozilla/5.0")

        assert result.authorization_url.startswith("https://checkout.paystack.com/")
        assert result.reference.startswith("SB-")

        payload = gateway.initialized[0]
        assert payload["amount"] == 9_000_000
        assert payload["email"] == "ada.obi@gmail.com"
        assert payload["currency"] == "NGN"
        assert payload["callback_url"] == "https://saphire.test/payment/callback"
        assert payload["metadata"]["bookingRequestId"] == str(booking.id)
        assert payload["metadata"]["checkInDate"] == "2025-03-01"

        transaction = await reload(session, Transaction, result.transaction_id)
        assert transaction.status == TransactionStatus.PENDING.value
        assert transaction.amount_minor == 9_000_000
        assert transaction.booking_request_id == booking.id
        assert transaction.ip_address == "102.89.1.1"
        assert result.notifications.kinds == [NotificationKind.BOOKING_REQUEST]

    async def test_unknown_booking(self, ctx):
        with pytest.raises(NotFoundError, match="Booking request not found"):
            await initialize_payment(ctx, uuid4())

    async def test_already_paid_booking_is_refused(self, ctx, session, gateway):
        booking, reference = await paid_booking_reference(ctx, session)
        await verify_and_reconcile(ctx, reference)

        with pytest.raises(ConflictError, match="Payment already completed"):
            await initialize_payment(ctx, booking.id)
        assert len(gateway.initialized) == 1

    async def test_rejected_booking_cannot_be_paid(self, ctx, session):
        booking = await add_booking(session, status=BookingStatus.REJECTED)

        with pytest.raises(ConflictError, match="cannot be paid"):
            await initialize_payment(ctx, booking.id)

    async def test_zero_total_is_refused(self, ctx, session):
        booking = await add_booking(session, total_minor=0, check_out=date(2025, 3, 2))

        with pytest.raises(ValidationError):
            await initialize_payment(ctx, booking.id)

    async def test_dates_taken_since_submission(self, ctx, session, gateway):
        booking = await add_booking(session)
        await add_tenant(session, date(2025, 3, 4), date(2025, 3, 6))

        with pytest.raises(ConflictError) as excinfo:
            await initialize_payment(ctx, booking.id)

        assert excinfo.value.details == {"conflictDetails": "Booked from 2025-03-04 to 2025-03-06"}
        assert gateway.initialized == []

    async def test_gateway_failure_stores_nothing(self, ctx, session, gateway):
        booking = await add_booking(session)
        gateway.error = GatewayError("Invalid key", provider_status=401)

        with pytest.raises(GatewayError):
            await initialize_payment(ctx, booking.id)

        assert await count(session, Transaction) == 0


class TestVerifyAndReconcile:
    async def test_success_converts_booking_into_one_tenant(self, ctx, session):
        booking, reference = await paid_booking_reference(ctx, session)

        result = await verify_and_reconcile(ctx, reference)

        assert result.outcome == ReconciliationOutcome.SUCCESS
        assert not result.already_processed
        assert result.tenant_id is not None

        transaction = await reload(session, Transaction, result.transaction.id)
        assert transaction.status == TransactionStatus.SUCCESS.value
        assert transaction.paid_at is not None
        assert transaction.gateway_metadata["channel"] == "card"

        stored = await reload(session, BookingRequest, booking.id)
        assert stored.status == BookingStatus.CONVERTED.value
        assert stored.converted_to_tenant_id == result.tenant_id
        notes = [entry["message"] for entry in stored.communications]
        assert APPROVED_NOTE in notes
        assert TENANT_CREATED_NOTE in notes

        tenants = await tenants_for(session, booking)
        assert [tenant.id for tenant in tenants] == [result.tenant_id]
        assert tenants[0].amount_paid_minor == booking.total_amount_minor
        assert tenants[0].transaction_reference == reference

        assert result.notifications.kinds == [
            NotificationKind.PAYMENT_RECEIVED,
            NotificationKind.BOOKING_APPROVED,
            NotificationKind.TENANT_CREATED,
        ]

    async def test_second_verification_is_idempotent(self, ctx, session, gateway):
        booking, reference = await paid_booking_reference(ctx, session)
        first = await verify_and_reconcile(ctx, reference)

        second = await verify_and_reconcile(ctx, reference)

        assert second.outcome == ReconciliationOutcome.SUCCESS
        assert second.already_processed
        assert second.tenant_id == first.tenant_id
        assert len(second.notifications) == 0
        assert gateway.verified == [reference]
        assert len(await tenants_for(session, booking)) == 1

    async def test_failed_payment_keeps_booking_pending(self, ctx, session, gateway):
        booking, reference = await paid_booking_reference(ctx, session)
        gateway.fail("Declined by issuer")

        result = await verify_and_reconcile(ctx, reference)

        assert result.outcome == ReconciliationOutcome.FAILED
        assert result.message == "Declined by issuer"
        assert result.notifications.kinds == [NotificationKind.PAYMENT_FAILED]

        transaction = await reload(session, Transaction, result.transaction.id)
        assert transaction.status == TransactionStatus.FAILED.value
        assert transaction.failure_reason == "Declined by issuer"

        stored = await reload(session, BookingRequest, booking.id)
        assert stored.status == BookingStatus.PENDING.value
        assert stored.communications[-1]["message"] == PAYMENT_FAILED_NOTE
        assert await tenants_for(session, booking) == []

    async def test_failed_transaction_is_terminal(self, ctx, session, gateway):
        _, reference = await paid_booking_reference(ctx, session)
        gateway.fail("Declined by issuer")
        await verify_and_reconcile(ctx, reference)
        gateway.succeed()

        again = await verify_and_reconcile(ctx, reference)

        assert again.outcome == ReconciliationOutcome.FAILED
        assert again.already_processed
        assert again.message == "Declined by issuer"
        assert gateway.verified == [reference]

    async def test_failed_booking_can_be_paid_with_a_new_reference(self, ctx, session, gateway):
        booking, reference = await paid_booking_reference(ctx, session)
        gateway.fail()
        await verify_and_reconcile(ctx, reference)

        gateway.succeed()
        retry = await initialize_payment(ctx, booking.id)
        result = await verify_and_reconcile(ctx, retry.reference)

        assert result.outcome == ReconciliationOutcome.SUCCESS
        assert result.tenant_id is not None

    async def test_unsettled_payment_writes_nothing(self, ctx, session, gateway):
        booking, reference = await paid_booking_reference(ctx, session)
        gateway.pend()

        result = await verify_and_reconcile(ctx, reference)

        assert result.outcome == ReconciliationOutcome.PENDING
        transaction = await reload(session, Transaction, result.transaction.id)
        assert transaction.status == TransactionStatus.PENDING.value
        stored = await reload(session, BookingRequest, booking.id)
        assert stored.status == BookingStatus.PENDING.value

    async def test_amount_mismatch_is_a_failure(self, ctx, session, gateway):
        booking, reference = await paid_booking_reference(ctx, session, total_minor=10_000_000)
        gateway.succeed(amount_minor=100)

        result = await verify_and_reconcile(ctx, reference)

        assert result.outcome == ReconciliationOutcome.FAILED
        assert result.message == "Amount mismatch: expected 10000000, received 100"
        assert await tenants_for(session, booking) == []

    async def test_existing_tenant_is_linked_not_duplicated(self, ctx, session):
        booking, reference = await paid_booking_reference(ctx, session)
        existing = await add_tenant(
            session, booking.check_in_date, booking.check_out_date, email=booking.guest_email
        )

        result = await verify_and_reconcile(ctx, reference)

        assert result.tenant_id == existing.id
        assert NotificationKind.TENANT_CREATED not in result.notifications.kinds
        stored = await reload(session, BookingRequest, booking.id)
        assert stored.communications[-1]["message"] == TENANT_LINKED_NOTE
        assert len(await tenants_for(session, booking)) == 1

    async def test_paid_booking_overlapping_a_confirmed_stay(self, ctx, session):
        booking, reference = await paid_booking_reference(ctx, session)
        await add_tenant(session, date(2025, 3, 2), date(2025, 3, 3))

        result = await verify_and_reconcile(ctx, reference)

        assert result.outcome == ReconciliationOutcome.SUCCESS
        assert result.tenant_id is None
        stored = await reload(session, BookingRequest, booking.id)
        assert stored.status == BookingStatus.APPROVED.value
        assert "manual review required" in stored.communications[-1]["message"]

    async def test_payment_for_cancelled_booking_is_recorded_for_refund(self, ctx, session):
        booking, reference = await paid_booking_reference(ctx, session)
        booking.status = BookingStatus.CANCELLED.value
        await session.commit()

        result = await verify_and_reconcile(ctx, reference)

        assert result.outcome == ReconciliationOutcome.SUCCESS
        assert result.tenant_id is None
        stored = await reload(session, BookingRequest, booking.id)
        assert stored.status == BookingStatus.CANCELLED.value
        assert "refund review required" in stored.communications[-1]["message"]

    async def test_second_payment_for_paid_booking_is_failed_for_refund(self, ctx, session):
        booking = await add_booking(session)
        first = await initialize_payment(ctx, booking.id)
        second = await initialize_payment(ctx, booking.id)
        await verify_and_reconcile(ctx, first.reference)

        result = await verify_and_reconcile(ctx, second.reference)

        assert result.outcome == ReconciliationOutcome.FAILED
        transaction = await reload(session, Transaction, result.transaction.id)
        assert transaction.failure_reason.startswith("Duplicate payment")
        assert len(await tenants_for(session, booking)) == 1

    async def test_unknown_reference(self, ctx, gateway):
        with pytest.raises(NotFoundError) as excinfo:
            await verify_and_reconcile(ctx, "SB-0-DEADBEEF")

        assert excinfo.value.reference == "SB-0-DEADBEEF"
        assert gateway.verified == []

    async def test_gateway_error_carries_reference_and_writes_nothing(self, ctx, session, gateway):
        booking, reference = await paid_booking_reference(ctx, session)
        gateway.error = GatewayError("Payment gateway unreachable: timed out")

        with pytest.raises(GatewayError) as excinfo:
            await verify_and_reconcile(ctx, reference)

        assert excinfo.value.reference == reference
        stored = await reload(session, BookingRequest, booking.id)
        assert stored.status == BookingStatus.PENDING.value

    async def test_failure_midway_rolls_back_every_write(self, ctx, session, monkeypatch):
        booking, reference = await paid_booking_reference(ctx, session)

        def explode(cls, *args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(Tenant, "from_booking_request", classmethod(explode))

        with pytest.raises(IntegrityError) as excinfo:
            await verify_and_reconcile(ctx, reference)

        assert excinfo.value.message == "Failed to verify payment"
        assert excinfo.value.reference == reference

        transaction = (await session.execute(
            select(Transaction)
            .where(Transaction.reference == reference)
            .execution_options(populate_existing=True)
        )).scalar_one()
        assert transaction.status == TransactionStatus.PENDING.value
        stored = await reload(session, BookingRequest, booking.id)
        assert stored.status == BookingStatus.PENDING.value
        assert await tenants_for(session, booking) == []

    async def test_transaction_without_booking_request(self, ctx, session):
        transaction = Transaction(
            reference="SB-1-ORPHAN01",
            amount_minor=500_000,
            currency="NGN",
            customer={"email": "walkin@gmail.com", "first_name": "Walk", "last_name": "In"},
            status=TransactionStatus.PENDING.value,
        )
        session.add(transaction)
        await session.commit()

        result = await verify_and_reconcile(ctx, "SB-1-ORPHAN01")

        assert result.outcome == ReconciliationOutcome.SUCCESS
        assert result.tenant_id is None
        assert result.notifications.kinds == [NotificationKind.PAYMENT_RECEIVED]


class TestLostRace:
    async def test_unique_violation_defers_to_the_winner(self, ctx, session, monkeypatch):
        _, reference = await paid_booking_reference(ctx, session)
        resolved = []

        async def collide(*args, **kwargs):
            raise sa_exc.IntegrityError("INSERT INTO tenants", {}, Exception("UNIQUE constraint failed"))

        async def fake_resolve(ctx_, ref):
            resolved.append(ref)
            return "winner"

        monkeypatch.setattr(reconciliation, "_reconcile_success", collide)
        monkeypatch.setattr(reconciliation, "_resolve_race", fake_resolve)

        assert await verify_and_reconcile(ctx, reference) == "winner"
        assert resolved == [reference]

    async def test_resolve_returns_the_committed_outcome(self, ctx, session):
        _, reference = await paid_booking_reference(ctx, session)
        await verify_and_reconcile(ctx, reference)

        result = await reconciliation._resolve_race(ctx, reference)

        assert result.outcome == ReconciliationOutcome.SUCCESS
        assert result.already_processed

    async def test_resolve_still_pending_is_an_integrity_error(self, ctx, session):
        _, reference = await paid_booking_reference(ctx, session)

        with pytest.raises(IntegrityError, match="Failed to verify payment"):
            await reconciliation._resolve_race(ctx, reference)


class TestConcurrentVerification:
    @pytest.fixture
    async def file_ctx(self, settings, gateway, notifier, tmp_path):
        # Separate connections per session, so the two calls really contend
        url = f"sqlite+aiosqlite:///{tmp_path / 'shortlet.db'}"
        context = build_context(settings.model_copy(update={"DATABASE_URL": url}), gateway=gateway, notifier=notifier)
        await create_all(context.engine)
        yield context
        await context.aclose()

    @pytest.fixture
    def slow_gateway(self, gateway, monkeypatch):
        verify = gateway.verify

        async def slow_verify(reference):
            await asyncio.sleep(0.05)
            return await verify(reference)

        monkeypatch.setattr(gateway, "verify", slow_verify)
        return gateway

    async def test_only_one_caller_applies_the_success(self, file_ctx, slow_gateway):
        async with file_ctx.session_factory() as session:
            booking, reference = await paid_booking_reference(file_ctx, session)

        first, second = await asyncio.gather(
            verify_and_reconcile(file_ctx, reference),
            verify_and_reconcile(file_ctx, reference),
        )

        assert sorted([first.already_processed, second.already_processed]) == [False, True]
        assert first.outcome == second.outcome == ReconciliationOutcome.SUCCESS
        assert first.tenant_id is not None
        assert first.tenant_id == second.tenant_id

        kinds = first.notifications.kinds + second.notifications.kinds
        assert kinds == [
            NotificationKind.PAYMENT_RECEIVED,
            NotificationKind.BOOKING_APPROVED,
            NotificationKind.TENANT_CREATED,
        ]

        async with file_ctx.session_factory() as session:
            stored = await session.get(BookingRequest, booking.id)
            assert stored.status == BookingStatus.CONVERTED.value
            assert [entry["message"] for entry in stored.communications] == [APPROVED_NOTE, TENANT_CREATED_NOTE]
            assert len(await tenants_for(session, booking)) == 1

            transaction = (await session.execute(
                select(Transaction).where(Transaction.reference == reference)
            )).scalar_one()
            assert transaction.status == TransactionStatus.SUCCESS.value

    async def test_only_one_caller_applies_the_failure(self, file_ctx, slow_gateway):
        async with file_ctx.session_factory() as session:
            booking, reference = await paid_booking_reference(file_ctx, session)
        slow_gateway.fail("Declined by issuer")

        results = await asyncio.gather(
            verify_and_reconcile(file_ctx, reference),
            verify_and_reconcile(file_ctx, reference),
        )

        assert [result.outcome for result in results] == [ReconciliationOutcome.FAILED] * 2
        assert sorted(result.already_processed for result in results) == [False, True]
        kinds = [kind for result in results for kind in result.notifications.kinds]
        assert kinds == [NotificationKind.PAYMENT_FAILED]

        async with file_ctx.session_factory() as session:
            stored = await session.get(BookingRequest, booking.id)
            assert [entry["message"] for entry in stored.communications] == [PAYMENT_FAILED_NOTE]
