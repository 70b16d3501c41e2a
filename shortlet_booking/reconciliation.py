"""
Payment Reconciliation Workflow
===============================

Turns a gateway verification result into internal state.

Booking request states touched here:
    Pending -> Approved -> Converted      (payment succeeded)
    Pending -> Pending                    (payment failed, guest may retry)

Transaction states:
    pending -> success | failed           (both terminal)

Every write for one verification (transaction status, booking status,
tenant record) is committed in a single database transaction, which starts
by claiming the pending Transaction row so only one caller applies them.
The gateway is called before that transaction opens. Notifications are
collected in a queue and only sent after the commit.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy import and_, select, update
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession

from .availability import find_conflict
from .bookings import booking_payload, describe_conflict, get_booking_request
from .context import AppContext
from .errors import (
    BookingServiceError,
    ConflictError,
    GatewayError,
    IntegrityError,
    NotFoundError,
    ValidationError,
)
from .models import BookingRequest, BookingStatus, Tenant, Transaction, TransactionStatus, utcnow
from .notifications import NotificationKind, NotificationQueue
from .observability import PAYMENT_INITIALIZATIONS, PAYMENT_VERIFICATIONS
from .payment_adapters import PaymentVerification
from .pricing import from_minor_units

logger = structlog.get_logger(__name__)

APPROVED_NOTE = "Payment completed successfully - auto-approved"
TENANT_CREATED_NOTE = "Tenant record created successfully after payment confirmation"
TENANT_LINKED_NOTE = "Existing tenant record linked after payment confirmation"
PAYMENT_FAILED_NOTE = "Payment failed - awaiting retry or alternative payment"
VERIFY_FAILED_MESSAGE = "Failed to verify payment"


class ReconciliationOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


@dataclass
class PaymentInitResult:
    authorization_url: str
    access_code: str
    reference: str
    transaction_id: UUID
    notifications: NotificationQueue = field(default_factory=NotificationQueue)


@dataclass
class ReconciliationResult:
    outcome: ReconciliationOutcome
    transaction: Transaction
    message: str
    tenant_id: Optional[UUID] = None
    already_processed: bool = False
    notifications: NotificationQueue = field(default_factory=NotificationQueue)

    @property
    def reference(self) -> str:
        return self.transaction.reference


def transaction_payload(transaction: Transaction, booking: Optional[BookingRequest] = None) -> dict[str, Any]:
    payload = booking_payload(booking, transaction.currency) if booking else {}
    payload.update({
        "reference": transaction.reference,
        "transaction_id": str(transaction.id),
        "amount": str(from_minor_units(transaction.amount_minor)),
        "currency": transaction.currency,
    })
    if not booking and transaction.customer:
        payload["email"] = transaction.customer.get("email")
        payload["guest_name"] = " ".join(
            filter(None, [transaction.customer.get("first_name"), transaction.customer.get("last_name")])
        )
    return payload


# =============================================================================
# INITIALIZE
# =============================================================================

async def _successful_transaction(session: AsyncSession, booking_request_id: UUID) -> Optional[Transaction]:
    query = select(Transaction).where(
        and_(
            Transaction.booking_request_id == booking_request_id,
            Transaction.status == TransactionStatus.SUCCESS.value,
        )
    )
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def initialize_payment(
    ctx: AppContext,
    booking_request_id: UUID,
    payment_type: str = "booking_payment",
    client_ip: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> PaymentInitResult:
    """
    Start an online payment for a booking request.

    Flow:
    1. Load the booking request; it must be Pending and unpaid
    2. Re-check the dates are still free
    3. Initialize the payment with the gateway (amount in kobo)
    4. Store a pending Transaction

    Raises:
        NotFoundError: Unknown booking request
        ConflictError: Already paid, no longer Pending, or dates taken
        ValidationError: Nothing to pay
        GatewayError: The gateway refused or could not be reached
    """
    settings = ctx.settings

    async with ctx.session_factory() as session:
        booking = await get_booking_request(session, booking_request_id)

        if await _successful_transaction(session, booking.id):
            raise ConflictError("Payment already completed for this booking")

        if booking.status != BookingStatus.PENDING.value:
            raise ConflictError(f"Booking request is {booking.status} and cannot be paid")

        if booking.total_amount_minor <= 0:
            raise ValidationError("Nothing to pay for this booking request")

        conflict = await find_conflict(
            session, booking.property_id, booking.check_in_date, booking.check_out_date
        )
        if conflict:
            raise ConflictError(
                "Property is no longer available for the selected dates",
                details={"conflictDetails": describe_conflict(conflict)},
            )

        reference = Transaction.generate_reference()
        stay_snapshot = {
            "propertyId": booking.property_id,
            "propertyTitle": booking.property_title,
            "checkInDate": booking.check_in_date.isoformat(),
            "checkOutDate": booking.check_out_date.isoformat(),
            "numberOfNights": booking.number_of_nights,
            "numberOfGuests": booking.number_of_guests,
        }

        initialization = await ctx.gateway.initialize({
            "email": booking.guest_email,
            "amount": booking.total_amount_minor,
            "reference": reference,
            "currency": settings.PAYMENT_CURRENCY,
            "callback_url": settings.payment_callback_url,
            "metadata": {
                "bookingRequestId": str(booking.id),
                "paymentType": payment_type,
                **stay_snapshot,
            },
            "channels": settings.PAYMENT_CHANNELS,
        })

        transaction = Transaction(
            reference=reference,
            gateway_reference=initialization.gateway_reference,
            access_code=initialization.access_code,
            amount_minor=booking.total_amount_minor,
            currency=settings.PAYMENT_CURRENCY,
            customer={
                "email": booking.guest_email,
                "first_name": booking.guest_first_name,
                "last_name": booking.guest_last_name,
                "phone": booking.guest_phone,
            },
            booking_request_id=booking.id,
            payment_type=payment_type,
            status=TransactionStatus.PENDING.value,
            booking_snapshot=stay_snapshot,
            ip_address=client_ip,
            user_agent=(user_agent or "")[:255] or None,
        )
        session.add(transaction)
        await session.commit()

    PAYMENT_INITIALIZATIONS.labels(payment_type=payment_type).inc()
    logger.info(
        "Payment initialized",
        reference=reference,
        booking_request_id=str(booking.id),
        amount_minor=transaction.amount_minor,
    )

    queue = NotificationQueue()
    queue.add(NotificationKind.BOOKING_REQUEST, **transaction_payload(transaction, booking))

    return PaymentInitResult(
        authorization_url=initialization.authorization_url,
        access_code=initialization.access_code,
        reference=reference,
        transaction_id=transaction.id,
        notifications=queue,
    )


# =============================================================================
# VERIFY & RECONCILE
# =============================================================================

async def _get_transaction(session: AsyncSession, reference: str) -> Transaction:
    query = select(Transaction).where(Transaction.reference == reference)
    result = await session.execute(query)
    transaction = result.scalar_one_or_none()
    if transaction is None:
        raise NotFoundError("Transaction not found", reference=reference)
    return transaction


async def _lock_booking(session: AsyncSession, booking_request_id: UUID) -> Optional[BookingRequest]:
    # Fresh row, locked until commit, so the audit log is appended to the latest copy
    return await session.get(
        BookingRequest, booking_request_id, with_for_update=True, populate_existing=True
    )


async def _find_tenant(session: AsyncSession, booking: BookingRequest) -> Optional[Tenant]:
    query = select(Tenant).where(
        and_(
            Tenant.email == booking.guest_email,
            Tenant.property_id == booking.property_id,
            Tenant.check_in_date == booking.check_in_date,
            Tenant.check_out_date == booking.check_out_date,
        )
    )
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def _already_processed(session: AsyncSession, transaction: Transaction) -> ReconciliationResult:
    """Result for a transaction that reached a terminal state earlier."""
    if transaction.status == TransactionStatus.SUCCESS.value:
        tenant_id = None
        if transaction.booking_request_id:
            booking = await session.get(BookingRequest, transaction.booking_request_id)
            tenant_id = booking.converted_to_tenant_id if booking else None
        PAYMENT_VERIFICATIONS.labels(outcome="duplicate").inc()
        return ReconciliationResult(
            outcome=ReconciliationOutcome.SUCCESS,
            transaction=transaction,
            message="Payment already verified",
            tenant_id=tenant_id,
            already_processed=True,
        )

    PAYMENT_VERIFICATIONS.labels(outcome="duplicate").inc()
    return ReconciliationResult(
        outcome=ReconciliationOutcome.FAILED,
        transaction=transaction,
        message=transaction.failure_reason or "Payment verification failed",
        already_processed=True,
    )


def _failure_reason(transaction: Transaction, verification: PaymentVerification) -> Optional[str]:
    """None when the verification is a usable success."""
    if not verification.success:
        return verification.gateway_response or f"Payment {verification.gateway_status}"
    if verification.amount_minor is not None and verification.amount_minor != transaction.amount_minor:
        return (
            f"Amount mismatch: expected {transaction.amount_minor}, "
            f"received {verification.amount_minor}"
        )
    if verification.currency and verification.currency.upper() != transaction.currency.upper():
        return f"Currency mismatch: expected {transaction.currency}, received {verification.currency}"
    return None


async def _claim_pending(session: AsyncSession, transaction_id: UUID) -> bool:
    """
    Take the pending transaction row for this unit of work.

    A concurrent verification of the same reference blocks on the row until
    this unit of work ends, then finds it no longer pending.
    """
    result = await session.execute(
        update(Transaction)
        .where(
            and_(
                Transaction.id == transaction_id,
                Transaction.status == TransactionStatus.PENDING.value,
            )
        )
        .values(updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def verify_and_reconcile(ctx: AppContext, reference: str) -> ReconciliationResult:
    """
    Verify a payment with the gateway and reflect the outcome.

    Safe to call repeatedly for the same reference: a transaction that is
    already success or failed is returned as-is without asking the gateway.
    Concurrent calls are settled by whichever claims the pending row first;
    the others return the winner's outcome as already processed.

    Raises:
        NotFoundError: Unknown reference
        GatewayError: Gateway failure, nothing was written
        IntegrityError: The unit of work could not be committed
    """
    async with ctx.session_factory() as session:
        transaction = await _get_transaction(session, reference)
        if transaction.status != TransactionStatus.PENDING.value:
            return await _already_processed(session, transaction)

    # No database transaction is open while the gateway is called
    try:
        verification = await ctx.gateway.verify(reference)
    except GatewayError as e:
        e.reference = e.reference or reference
        raise

    if not verification.settled:
        PAYMENT_VERIFICATIONS.labels(outcome="pending").inc()
        logger.info(
            "Payment not settled yet",
            reference=reference,
            gateway_status=verification.gateway_status,
        )
        return ReconciliationResult(
            outcome=ReconciliationOutcome.PENDING,
            transaction=transaction,
            message="Payment is still being processed",
        )

    queue = NotificationQueue()

    async with ctx.session_factory() as session:
        try:
            if not await _claim_pending(session, transaction.id):
                await session.rollback()
                logger.info("Transaction settled by a concurrent verification", reference=reference)
                return await _already_processed(session, await _get_transaction(session, reference))

            transaction = await session.get(Transaction, transaction.id, populate_existing=True)
            reason = _failure_reason(transaction, verification)
            if reason is None:
                result = await _reconcile_success(session, transaction, verification, queue)
            else:
                result = await _reconcile_failure(session, transaction, reason, verification, queue)
            await session.commit()

        except sa_exc.IntegrityError as e:
            await session.rollback()
            logger.warning(
                "Reconciliation lost a race, re-reading transaction",
                reference=reference,
                error=str(e.orig),
            )
            return await _resolve_race(ctx, reference)

        except BookingServiceError:
            await session.rollback()
            raise

        except Exception as e:
            await session.rollback()
            logger.exception("Reconciliation failed", reference=reference)
            raise IntegrityError(VERIFY_FAILED_MESSAGE, reference=reference) from e

    result.notifications = queue
    PAYMENT_VERIFICATIONS.labels(outcome=result.outcome.value).inc()
    logger.info(
        "Payment reconciled",
        reference=reference,
        outcome=result.outcome.value,
        tenant_id=str(result.tenant_id) if result.tenant_id else None,
    )
    return result


async def _resolve_race(ctx: AppContext, reference: str) -> ReconciliationResult:
    async with ctx.session_factory() as session:
        transaction = await _get_transaction(session, reference)
        if transaction.status != TransactionStatus.PENDING.value:
            return await _already_processed(session, transaction)

    logger.error("Transaction still pending after a lost race", reference=reference)
    raise IntegrityError(VERIFY_FAILED_MESSAGE, reference=reference)


async def _reconcile_success(
    session: AsyncSession,
    transaction: Transaction,
    verification: PaymentVerification,
    queue: NotificationQueue,
) -> ReconciliationResult:
    booking = None
    if transaction.booking_request_id:
        booking = await _lock_booking(session, transaction.booking_request_id)

    if booking is not None:
        paid = await _successful_transaction(session, booking.id)
        if paid is not None and paid.id != transaction.id:
            return await _reconcile_duplicate(session, transaction, booking, paid, verification, queue)

    transaction.mark_successful(verification.data, verification.paid_at)
    queue.add(NotificationKind.PAYMENT_RECEIVED, **transaction_payload(transaction, booking))

    if booking is None:
        logger.warning(
            "Transaction has no booking request, skipping tenancy",
            reference=transaction.reference,
            booking_request_id=str(transaction.booking_request_id),
        )
        return ReconciliationResult(
            outcome=ReconciliationOutcome.SUCCESS,
            transaction=transaction,
            message="Payment verified successfully",
        )

    status = BookingStatus(booking.status)

    if status in (BookingStatus.REJECTED, BookingStatus.CANCELLED):
        booking.add_communication(
            "Note",
            f"Payment {transaction.reference} received after the request was "
            f"{status.value.lower()} - refund review required",
        )
        logger.warning(
            "Payment received for a closed booking request",
            reference=transaction.reference,
            booking_request_id=str(booking.id),
            status=status.value,
        )
        return ReconciliationResult(
            outcome=ReconciliationOutcome.SUCCESS,
            transaction=transaction,
            message="Payment verified successfully. Our team will contact you about this booking.",
        )

    if status == BookingStatus.CONVERTED:
        return ReconciliationResult(
            outcome=ReconciliationOutcome.SUCCESS,
            transaction=transaction,
            message="Payment verified successfully",
            tenant_id=booking.converted_to_tenant_id,
        )

    if status == BookingStatus.PENDING:
        booking.update_status(BookingStatus.APPROVED, APPROVED_NOTE)
        queue.add(NotificationKind.BOOKING_APPROVED, **booking_payload(booking, transaction.currency))

    tenant = await _find_tenant(session, booking)

    if tenant is None:
        conflict = await find_conflict(
            session, booking.property_id, booking.check_in_date, booking.check_out_date
        )
        if conflict is not None:
            # Paid, but someone else's stay was confirmed first
            booking.add_communication(
                "Note",
                f"Dates no longer available ({describe_conflict(conflict)}) - manual review required",
            )
            logger.warning(
                "Paid booking overlaps a confirmed stay",
                reference=transaction.reference,
                booking_request_id=str(booking.id),
                conflicting_tenant_id=str(conflict.id),
            )
            return ReconciliationResult(
                outcome=ReconciliationOutcome.SUCCESS,
                transaction=transaction,
                message="Payment verified successfully. Our team will contact you to confirm your stay.",
            )

        tenant = Tenant.from_booking_request(booking, transaction)
        session.add(tenant)
        note = TENANT_CREATED_NOTE
        queue.add(
            NotificationKind.TENANT_CREATED,
            tenant_id=str(tenant.id),
            **transaction_payload(transaction, booking),
        )
    else:
        note = TENANT_LINKED_NOTE

    booking.converted_to_tenant_id = tenant.id
    booking.update_status(BookingStatus.CONVERTED, note)
    await session.flush()

    return ReconciliationResult(
        outcome=ReconciliationOutcome.SUCCESS,
        transaction=transaction,
        message="Payment verified successfully and tenant record created",
        tenant_id=tenant.id,
    )


async def _reconcile_duplicate(
    session: AsyncSession,
    transaction: Transaction,
    booking: BookingRequest,
    paid: Transaction,
    verification: PaymentVerification,
    queue: NotificationQueue,
) -> ReconciliationResult:
    """A second payment for a booking that another transaction already paid."""
    reason = f"Duplicate payment: booking already paid by {paid.reference} - refund required"
    transaction.mark_failed(reason, verification.data)
    booking.add_communication("Note", f"Duplicate payment {transaction.reference} received - refund required")
    queue.add(NotificationKind.PAYMENT_FAILED, reason=reason, **transaction_payload(transaction, booking))

    logger.warning(
        "Duplicate payment for booking request",
        reference=transaction.reference,
        paid_reference=paid.reference,
        booking_request_id=str(booking.id),
    )
    return ReconciliationResult(
        outcome=ReconciliationOutcome.FAILED,
        transaction=transaction,
        message="This booking has already been paid. The duplicate payment will be refunded.",
    )


async def _reconcile_failure(
    session: AsyncSession,
    transaction: Transaction,
    reason: str,
    verification: PaymentVerification,
    queue: NotificationQueue,
) -> ReconciliationResult:
    transaction.mark_failed(reason, verification.data)

    booking = None
    if transaction.booking_request_id:
        booking = await _lock_booking(session, transaction.booking_request_id)

    if booking is not None:
        if booking.status == BookingStatus.PENDING.value:
            booking.update_status(BookingStatus.PENDING, PAYMENT_FAILED_NOTE)
        else:
            booking.add_communication("Note", f"Payment {transaction.reference} failed: {reason}")

    queue.add(NotificationKind.PAYMENT_FAILED, reason=reason, **transaction_payload(transaction, booking))

    logger.info(
        "Payment failed",
        reference=transaction.reference,
        reason=reason,
        gateway_status=verification.gateway_status,
    )
    return ReconciliationResult(
        outcome=ReconciliationOutcome.FAILED,
        transaction=transaction,
        message=reason if verification.success else (verification.gateway_response or "Payment verification failed"),
    )
