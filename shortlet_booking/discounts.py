"""
Discount code evaluation and redemption.

``validate_discount`` is side-effect free and returns a result value rather
than raising, so the HTTP layer can answer ``success: false`` with the
reason. ``mark_used`` is the only write and re-checks everything at
redemption time.
"""

import secrets
import string
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

import structlog
from sqlalchemy import and_, or_, select, update
from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import ConflictError, DiscountAlreadyUsedError, NotFoundError, ValidationError
from .models import DiscountCode, DiscountCodeUsage, DiscountType, utcnow
from .pricing import Amount, from_minor_units, to_decimal, to_minor_units

logger = structlog.get_logger(__name__)

CODE_LENGTH = 8
CODE_ALPHABET = string.ascii_uppercase + string.digits


class RejectionKind(str, Enum):
    NOT_FOUND = "not_found"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    USAGE_LIMIT_REACHED = "usage_limit_reached"
    MINIMUM_STAY = "minimum_stay"
    ALREADY_USED = "already_used"


@dataclass(frozen=True)
class DiscountApplication:
    code: str
    description: Optional[str]
    discount_type: DiscountType
    discount_value: Decimal
    original_amount: Decimal
    discount_amount: Decimal
    final_amount: Decimal

    ok = True

    @property
    def savings(self) -> Decimal:
        return self.discount_amount


@dataclass(frozen=True)
class DiscountRejection:
    kind: RejectionKind
    message: str

    ok = False


DiscountResult = Union[DiscountApplication, DiscountRejection]


def normalize_code(code: str) -> str:
    return code.strip().upper()


def generate_code(length: int = CODE_LENGTH) -> str:
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def discount_value(discount: DiscountCode) -> Decimal:
    """Percent for percentage codes, major units for fixed codes."""
    if discount.discount_type == DiscountType.FIXED.value:
        return from_minor_units(discount.discount_value)
    return Decimal(discount.discount_value)


def compute_discount(discount: DiscountCode, total_amount: Amount) -> tuple[Decimal, Decimal]:
    """
    Return ``(discount_amount, final_amount)`` for ``total_amount``.

    Unrounded; callers round when storing or rendering.
    """
    total = to_decimal(total_amount)

    if discount.discount_type == DiscountType.PERCENTAGE.value:
        amount = total * Decimal(discount.discount_value) / 100
        if discount.max_discount_amount_minor:
            cap = from_minor_units(discount.max_discount_amount_minor)
            if amount > cap:
                amount = cap
    elif discount.discount_type == DiscountType.FIXED.value:
        amount = from_minor_units(discount.discount_value)
    else:
        amount = Decimal("0")

    # Never discount more than the order is worth
    amount = min(amount, total)
    final_amount = max(Decimal("0"), total - amount)
    return amount, final_amount


async def get_discount_code(session: AsyncSession, code: str) -> Optional[DiscountCode]:
    query = (
        select(DiscountCode)
        .where(DiscountCode.code == normalize_code(code))
        # Counters change through conditional UPDATEs; never trust the identity map
        .execution_options(populate_existing=True)
    )
    result = await session.execute(query)
    return result.scalar_one_or_none()


async def has_user_used(session: AsyncSession, discount: DiscountCode, user_id: str) -> bool:
    query = select(DiscountCodeUsage.id).where(
        and_(
            DiscountCodeUsage.discount_code_id == discount.id,
            DiscountCodeUsage.user_id == user_id,
        )
    )
    result = await session.execute(query)
    return result.first() is not None


async def validate_discount(
    session: AsyncSession,
    code: str,
    total_amount: Amount,
    stay_nights: int,
    user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DiscountResult:
    """
    Check a code against the order, in order:

    exists -> active -> not expired -> under its usage limit ->
    minimum stay met -> not already used by ``user_id``.
    """
    discount = await get_discount_code(session, code)
    if discount is None:
        return DiscountRejection(RejectionKind.NOT_FOUND, "Invalid discount code")

    if not discount.is_active:
        return DiscountRejection(RejectionKind.INACTIVE, "This discount code is no longer active")

    if discount.is_expired(now):
        return DiscountRejection(RejectionKind.EXPIRED, "This discount code has expired")

    if discount.is_fully_used():
        return DiscountRejection(
            RejectionKind.USAGE_LIMIT_REACHED,
            "This discount code has reached its usage limit",
        )

    if stay_nights < discount.min_stay_days:
        return DiscountRejection(
            RejectionKind.MINIMUM_STAY,
            f"This discount code requires a minimum stay of {discount.min_stay_days} days",
        )

    if user_id and await has_user_used(session, discount, user_id):
        return DiscountRejection(RejectionKind.ALREADY_USED, "You have already used this discount code")

    total = to_decimal(total_amount)
    amount, final_amount = compute_discount(discount, total)

    return DiscountApplication(
        code=discount.code,
        description=discount.description,
        discount_type=DiscountType(discount.discount_type),
        discount_value=discount_value(discount),
        original_amount=total,
        discount_amount=amount,
        final_amount=final_amount,
    )


async def mark_used(
    session: AsyncSession,
    code: str,
    user_id: str,
    order_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> DiscountCodeUsage:
    """
    Record a redemption of ``code`` by ``user_id``.

    Must run inside the caller's transaction. The usage row's unique key and
    the conditional ``used_count`` update close the race between validation
    and redemption.
    """
    discount = await get_discount_code(session, code)
    if discount is None:
        raise NotFoundError("Discount code not found")

    if not discount.is_available(now):
        raise ConflictError("Discount code is no longer available")

    if await has_user_used(session, discount, user_id):
        raise DiscountAlreadyUsedError("User has already used this discount code")

    usage = DiscountCodeUsage(
        discount_code_id=discount.id,
        user_id=user_id,
        order_id=order_id,
        used_at=now or utcnow(),
    )
    session.add(usage)

    try:
        await session.flush()
    except sa_exc.IntegrityError:
        raise DiscountAlreadyUsedError("User has already used this discount code") from None

    result = await session.execute(
        update(DiscountCode)
        .where(
            and_(
                DiscountCode.id == discount.id,
                or_(
                    DiscountCode.usage_limit.is_(None),
                    DiscountCode.used_count < DiscountCode.usage_limit,
                ),
            )
        )
        .values(used_count=DiscountCode.used_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise ConflictError("Discount code has reached its usage limit")

    logger.info(
        "Discount code redeemed",
        code=discount.code,
        user_id=user_id,
        order_id=order_id,
    )
    return usage


async def create_discount_code(
    session: AsyncSession,
    discount_type: DiscountType,
    value: Amount,
    code: Optional[str] = None,
    description: Optional[str] = None,
    max_discount_amount: Optional[Amount] = None,
    min_stay_days: int = 1,
    usage_limit: Optional[int] = None,
    expires_at: Optional[datetime] = None,
    is_active: bool = True,
) -> DiscountCode:
    """
    Issue a code. ``value`` is a whole percent for percentage codes and a
    major-unit amount for fixed codes.
    """
    code = normalize_code(code) if code else generate_code()
    if not 4 <= len(code) <= 32 or not code.isalnum():
        raise ValidationError("Discount codes must be 4-32 letters or digits")

    value = to_decimal(value)
    if discount_type == DiscountType.PERCENTAGE:
        if not 0 < value <= 100 or value != value.to_integral_value():
            raise ValidationError("Percentage discounts must be a whole number between 1 and 100")
        stored_value = int(value)
    else:
        if value <= 0:
            raise ValidationError("Fixed discounts must be positive")
        stored_value = to_minor_units(value)

    discount = DiscountCode(
        code=code,
        description=description,
        discount_type=discount_type.value,
        discount_value=stored_value,
        max_discount_amount_minor=(
            to_minor_units(max_discount_amount) if max_discount_amount is not None else None
        ),
        min_stay_days=min_stay_days,
        usage_limit=usage_limit,
        expires_at=expires_at,
        is_active=is_active,
        used_count=0,
    )
    session.add(discount)
    await session.flush()
    return discount
