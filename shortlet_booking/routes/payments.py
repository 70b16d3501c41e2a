from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from fastapi.responses import JSONResponse

from ..context import AppContext, get_context
from ..reconciliation import ReconciliationOutcome, initialize_payment, verify_and_reconcile
from ..schemas import (
    Envelope,
    PaymentInitialized,
    PaymentInitializeRequest,
    PaymentVerified,
    PaymentVerifyRequest,
    PaymentVerifyResponse,
    TransactionOut,
)

router = APIRouter(prefix="/payments", tags=["payments"])

VERIFY_STATUS_CODES = {
    ReconciliationOutcome.SUCCESS: status.HTTP_200_OK,
    ReconciliationOutcome.PENDING: status.HTTP_202_ACCEPTED,
    ReconciliationOutcome.FAILED: status.HTTP_400_BAD_REQUEST,
}


def client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else None)


@router.post("/initialize", response_model=Envelope[PaymentInitialized])
async def initialize(
    body: PaymentInitializeRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    ctx: AppContext = Depends(get_context),
) -> Envelope[PaymentInitialized]:
    """
    Start an online payment for a Pending booking request.

    Returns the hosted checkout URL the guest is redirected to.
    """
    result = await initialize_payment(
        ctx,
        body.booking_request_id,
        payment_type=body.payment_type,
        client_ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    background_tasks.add_task(ctx.notifier.dispatch_all, result.notifications)

    return Envelope[PaymentInitialized](
        data=PaymentInitialized(
            authorization_url=result.authorization_url,
            access_code=result.access_code,
            reference=result.reference,
            transaction_id=result.transaction_id,
        )
    )


@router.post(
    "/verify",
    response_model=PaymentVerifyResponse,
    responses={
        202: {"model": PaymentVerifyResponse, "description": "Payment not settled yet"},
        400: {"model": PaymentVerifyResponse, "description": "Payment failed"},
    },
)
async def verify(
    body: PaymentVerifyRequest,
    background_tasks: BackgroundTasks,
    ctx: AppContext = Depends(get_context),
) -> JSONResponse:
    """
    Verify a payment and reconcile the booking.

    Idempotent per reference: repeated calls after success return the same
    result without further writes.
    """
    result = await verify_and_reconcile(ctx, body.reference)

    if len(result.notifications):
        background_tasks.add_task(ctx.notifier.dispatch_all, result.notifications)

    response = PaymentVerifyResponse(
        success=result.outcome != ReconciliationOutcome.FAILED,
        data=PaymentVerified(
            status=result.outcome.value,
            reference=result.reference,
            transaction=TransactionOut.from_transaction(result.transaction),
            message=result.message,
            tenant_id=result.tenant_id,
            already_processed=result.already_processed,
        ),
    )
    return JSONResponse(
        status_code=VERIFY_STATUS_CODES[result.outcome],
        content=response.model_dump(mode="json", by_alias=True),
    )
