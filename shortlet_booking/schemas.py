"""
Request/response schemas.

Wire names are camelCase; Python attributes stay snake_case. Amounts are
major units (naira) on the wire, rendered as JSON numbers.
"""

import re
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Generic, Optional, TypeVar
from uuid import UUID

from pydantic import (
    BaseModel,
    BeforeValidator,
    ConfigDict,
    EmailStr,
    Field,
    PlainSerializer,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from .availability import normalize_stay_date
from .config import get_settings
from .models import (
    BookingRequest,
    DiscountType,
    MaintenanceCategory,
    MaintenancePriority,
    PaymentMethod,
    RequesterType,
    Transaction,
)
from .pricing import from_minor_units


def _stay_date(value: Any) -> Any:
    if isinstance(value, (str, datetime)):
        return normalize_stay_date(value, get_settings().PROPERTY_TIMEZONE)
    return value


PRICE_DECORATION = re.compile(r"NGN|[₦,\s]")


def _plain_amount(value: Any) -> Any:
    # Listings render prices like "₦45,000"; the sign is kept so gt=0 still applies
    if isinstance(value, str):
        cleaned = PRICE_DECORATION.sub("", value)
        if not cleaned:
            raise ValueError(f"Invalid amount: {value!r}")
        return cleaned
    return value


Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]
StayDate = Annotated[date, BeforeValidator(_stay_date)]

T = TypeVar("T")


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class Envelope(CamelModel, Generic[T]):
    success: bool = True
    message: Optional[str] = None
    data: T


# =============================================================================
# BOOKINGS
# =============================================================================

class PropertyRef(CamelModel):
    id: str = Field(min_length=1, max_length=64)
    title: str = Field(min_length=1, max_length=200)
    location: Optional[str] = Field(default=None, max_length=200)


class PropertySnapshot(PropertyRef):
    price: Annotated[Decimal, BeforeValidator(_plain_amount)] = Field(gt=0)


class IdDocument(CamelModel):
    url: str
    public_id: Optional[str] = None


class GuestDetails(CamelModel):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: EmailStr
    phone: str = Field(min_length=5, max_length=30)
    nin: Optional[str] = Field(default=None, max_length=20)
    id_document: Optional[IdDocument] = None

    @field_validator("first_name", "last_name", "phone")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Please fill in all required fields")
        return v


class EmergencyContact(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    phone: str = Field(min_length=5, max_length=30)
    relationship: str = Field(min_length=1, max_length=50)


class StayDetails(CamelModel):
    check_in_date: StayDate
    check_out_date: StayDate
    guests: int = Field(ge=1, le=20)

    @model_validator(mode="after")
    def check_out_after_check_in(self) -> "StayDetails":
        if self.check_out_date <= self.check_in_date:
            raise ValueError("Check-out date must be after check-in date")
        return self


class BookingCreateRequest(CamelModel):
    property: PropertySnapshot
    personal_details: GuestDetails
    booking_details: StayDetails
    emergency_contact: EmergencyContact
    payment_method: PaymentMethod = PaymentMethod.ONLINE
    discount_code: Optional[str] = Field(default=None, max_length=32)
    user_id: Optional[str] = Field(default=None, max_length=254)


class BookingCreated(CamelModel):
    booking_id: UUID
    status: str
    number_of_nights: int
    subtotal: Money
    discount_code: Optional[str] = None
    discount_amount: Money
    total_amount: Money
    payment_method: PaymentMethod
    id_document_attached: bool


class CommunicationEntry(CamelModel):
    type: str
    message: str
    sent_by: str
    sent_at: str


class BookingRequestOut(CamelModel):
    id: UUID
    property_id: str
    property_title: str
    property_location: Optional[str] = None
    guest_name: str
    guest_email: str
    guest_phone: str
    check_in_date: date
    check_out_date: date
    number_of_guests: int
    number_of_nights: int
    price_per_night: Money
    subtotal: Money
    discount_code: Optional[str] = None
    discount_amount: Money
    total_amount: Money
    status: str
    payment_method: str
    converted_to_tenant_id: Optional[UUID] = None
    communications: list[CommunicationEntry] = []
    created_at: datetime

    @classmethod
    def from_booking(cls, booking: BookingRequest) -> "BookingRequestOut":
        return cls(
            id=booking.id,
            property_id=booking.property_id,
            property_title=booking.property_title,
            property_location=booking.property_location,
            guest_name=booking.guest_full_name,
            guest_email=booking.guest_email,
            guest_phone=booking.guest_phone,
            check_in_date=booking.check_in_date,
            check_out_date=booking.check_out_date,
            number_of_guests=booking.number_of_guests,
            number_of_nights=booking.number_of_nights,
            price_per_night=from_minor_units(booking.price_per_night_minor),
            subtotal=from_minor_units(booking.subtotal_minor),
            discount_code=booking.discount_code,
            discount_amount=from_minor_units(booking.discount_amount_minor),
            total_amount=from_minor_units(booking.total_amount_minor),
            status=booking.status,
            payment_method=booking.payment_method,
            converted_to_tenant_id=booking.converted_to_tenant_id,
            communications=[CommunicationEntry(**entry) for entry in booking.communications or []],
            created_at=booking.created_at,
        )


# =============================================================================
# AVAILABILITY
# =============================================================================

class AvailabilityCheckRequest(CamelModel):
    check_in_date: StayDate
    check_out_date: StayDate

    @model_validator(mode="after")
    def check_out_after_check_in(self) -> "AvailabilityCheckRequest":
        if self.check_out_date <= self.check_in_date:
            raise ValueError("Check-out date must be after check-in date")
        return self


class AvailabilityCheckResponse(CamelModel):
    success: bool = True
    available: bool
    conflict_details: Optional[str] = None


class BookedRange(CamelModel):
    start_date: date
    end_date: date
    type: str = "booking"


# =============================================================================
# DISCOUNT CODES
# =============================================================================

class DiscountValidateRequest(CamelModel):
    code: str = Field(min_length=1, max_length=32)
    total_amount: Decimal = Field(gt=0)
    number_of_days: int = Field(ge=1)
    user_id: Optional[str] = None


class DiscountBreakdown(CamelModel):
    code: str
    description: Optional[str] = None
    discount_type: DiscountType
    discount_value: Money
    original_amount: Money
    discount_amount: Money
    final_amount: Money
    savings: Money


class DiscountValidateResponse(CamelModel):
    success: bool = True
    message: str = "Discount code is valid"
    discount: DiscountBreakdown


class DiscountUseRequest(CamelModel):
    code: str = Field(min_length=1, max_length=32)
    user_id: str = Field(min_length=1, max_length=254)
    order_id: Optional[str] = Field(default=None, max_length=64)


class SimpleResponse(CamelModel):
    success: bool = True
    message: str


# =============================================================================
# PAYMENTS
# =============================================================================

class PaymentInitializeRequest(CamelModel):
    booking_request_id: UUID
    payment_type: str = Field(default="booking_payment", max_length=30)


class PaymentInitialized(CamelModel):
    authorization_url: str
    access_code: str
    reference: str
    transaction_id: UUID


class PaymentVerifyRequest(CamelModel):
    reference: str = Field(min_length=1, max_length=64)


class TransactionOut(CamelModel):
    id: UUID
    reference: str
    status: str
    amount: Money
    currency: str
    booking_request_id: Optional[UUID] = None
    payment_type: str
    gateway_response: Optional[str] = None
    failure_reason: Optional[str] = None
    paid_at: Optional[datetime] = None
    created_at: datetime

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "TransactionOut":
        return cls(
            id=transaction.id,
            reference=transaction.reference,
            status=transaction.status,
            amount=from_minor_units(transaction.amount_minor),
            currency=transaction.currency,
            booking_request_id=transaction.booking_request_id,
            payment_type=transaction.payment_type,
            gateway_response=transaction.gateway_response,
            failure_reason=transaction.failure_reason,
            paid_at=transaction.paid_at,
            created_at=transaction.created_at,
        )


class PaymentVerified(CamelModel):
    status: str  # success, failed, pending
    reference: str
    transaction: TransactionOut
    message: str
    tenant_id: Optional[UUID] = None
    already_processed: bool = False


class PaymentVerifyResponse(CamelModel):
    success: bool
    data: PaymentVerified


# =============================================================================
# VIEWINGS
# =============================================================================

class ViewingDetails(CamelModel):
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    email: EmailStr
    phone: str = Field(min_length=5, max_length=30)
    preferred_date: StayDate
    preferred_time: str = Field(min_length=1, max_length=20)
    message: Optional[str] = Field(default=None, max_length=1000)


class ViewingRequest(CamelModel):
    property: PropertyRef
    viewing_details: ViewingDetails


# =============================================================================
# MAINTENANCE
# =============================================================================

class Requester(CamelModel):
    type: RequesterType = RequesterType.TENANT
    name: str = Field(min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    phone: Optional[str] = Field(default=None, max_length=30)
    tenant_id: Optional[UUID] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("requester name is required")
        return v


class AccessDetails(CamelModel):
    preferred_time: str = Field(default="Anytime", max_length=50)
    contact_for_access: bool = True
    special_instructions: Optional[str] = Field(default=None, max_length=500)


class MaintenanceRequestCreate(CamelModel):
    apartment: str = Field(min_length=1, max_length=64)
    apartment_title: str = Field(min_length=1, max_length=200)
    apartment_location: str = Field(min_length=1, max_length=200)
    requester: Requester
    issue_category: MaintenanceCategory
    priority: MaintenancePriority = MaintenancePriority.MEDIUM
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=1000)
    access_details: Optional[AccessDetails] = None

    @field_validator("title", "description")
    @classmethod
    def text_not_blank(cls, v: str, info: ValidationInfo) -> str:
        v = v.strip()
        if not v:
            raise ValueError(f"{info.field_name} is required")
        return v


class MaintenanceRequestOut(CamelModel):
    id: UUID
    property_id: str
    property_title: str
    property_location: str
    requester_type: str
    requester_name: str
    requester_email: Optional[str] = None
    requester_phone: Optional[str] = None
    tenant_id: Optional[UUID] = None
    issue_category: str
    priority: str
    title: str
    description: str
    access_details: Optional[dict[str, Any]] = None
    status: str
    communications: list[CommunicationEntry] = []
    created_at: datetime


# =============================================================================
# ANALYTICS
# =============================================================================

class TopDiscountCode(CamelModel):
    code: str
    usage_count: int
    total_savings: Money
    avg_savings: Money
    discount_type: Optional[str] = None
    discount_value: Optional[Money] = None


class DiscountTimeframe(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_: str = Field(alias="from")
    to: str


class DiscountOverview(CamelModel):
    total_bookings: int
    bookings_with_discount: int
    discount_usage_rate: str
    total_savings: Money
    avg_discount_amount: Money


class DiscountAnalytics(CamelModel):
    overview: DiscountOverview
    top_discount_codes: list[TopDiscountCode]
    timeframe: DiscountTimeframe
