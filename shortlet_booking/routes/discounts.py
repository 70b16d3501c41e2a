from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..context import get_session
from ..discounts import RejectionKind, mark_used, validate_discount
from ..observability import DISCOUNT_VALIDATIONS
from ..pricing import from_minor_units, to_minor_units
from ..schemas import (
    DiscountBreakdown,
    DiscountUseRequest,
    DiscountValidateRequest,
    DiscountValidateResponse,
    SimpleResponse,
)

router = APIRouter(prefix="/discount-codes", tags=["discounts"])


def _rounded(amount):
    return from_minor_units(to_minor_units(amount))


@router.post(
    "/validate",
    response_model=DiscountValidateResponse,
    responses={400: {"description": "Code rejected"}, 404: {"description": "Unknown code"}},
)
async def validate_code(
    request: DiscountValidateRequest,
    session: AsyncSession = Depends(get_session),
):
    """Price an order with a discount code. Nothing is written."""
    result = await validate_discount(
        session,
        request.code,
        request.total_amount,
        request.number_of_days,
        user_id=request.user_id,
    )

    if not result.ok:
        DISCOUNT_VALIDATIONS.labels(outcome=result.kind.value).inc()
        return JSONResponse(
            status_code=(
                status.HTTP_404_NOT_FOUND
                if result.kind == RejectionKind.NOT_FOUND
                else status.HTTP_400_BAD_REQUEST
            ),
            content={"success": False, "error": result.message, "reason": result.kind.value},
        )

    DISCOUNT_VALIDATIONS.labels(outcome="applied").inc()
    discount_amount = _rounded(result.discount_amount)
    return DiscountValidateResponse(
        discount=DiscountBreakdown(
            code=result.code,
            description=result.description,
            discount_type=result.discount_type,
            discount_value=result.discount_value,
            original_amount=result.original_amount,
            discount_amount=discount_amount,
            final_amount=_rounded(result.final_amount),
            savings=discount_amount,
        )
    )


@router.post("/use", response_model=SimpleResponse)
async def use_code(
    request: DiscountUseRequest,
    session: AsyncSession = Depends(get_session),
) -> SimpleResponse:
    """Record a redemption; a user can redeem each code once."""
    await mark_used(session, request.code, request.user_id, order_id=request.order_id)
    await session.commit()
    return SimpleResponse(message="Discount code marked as used successfully")
