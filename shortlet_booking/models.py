"""
Persistence models.

Booking requests carry their own copy of the guest and stay details so they
stay stable if the property listing changes later. Money columns hold
integer minor units (kobo).
"""

import secrets
import time
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base
from .errors import IntegrityError


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# =============================================================================
# ENUMS
# =============================================================================

class BookingStatus(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    CONVERTED = "Converted"
    REJECTED = "Rejected"
    CANCELLED = "Cancelled"


BOOKING_TRANSITIONS: dict[BookingStatus, frozenset] = {
    BookingStatus.PENDING: frozenset({
        BookingStatus.PENDING,
        BookingStatus.APPROVED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.APPROVED: frozenset({
        BookingStatus.CONVERTED,
        BookingStatus.REJECTED,
        BookingStatus.CANCELLED,
    }),
    BookingStatus.CONVERTED: frozenset(),
    BookingStatus.REJECTED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}


class PaymentMethod(str, Enum):
    ONLINE = "online"
    BANK_TRANSFER = "bank_transfer"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class TenantStatus(str, Enum):
    PENDING = "Pending"
    CONFIRMED = "Confirmed"
    CHECKED_IN = "CheckedIn"
    CHECKED_OUT = "CheckedOut"
    CANCELLED = "Cancelled"


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class MaintenanceCategory(str, Enum):
    PLUMBING = "Plumbing"
    ELECTRICAL = "Electrical"
    HVAC = "HVAC"
    APPLIANCES = "Appliances"
    CLEANING = "Cleaning"
    REPAIRS = "Repairs"
    PAINTING = "Painting"
    PEST_CONTROL = "Pest Control"
    SECURITY = "Security"
    OTHER = "Other"


class MaintenancePriority(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    EMERGENCY = "Emergency"


class MaintenanceStatus(str, Enum):
    PENDING = "Pending"
    SCHEDULED = "Scheduled"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class RequesterType(str, Enum):
    TENANT = "Tenant"
    GUEST = "Guest"
    STAFF = "Staff"


# =============================================================================
# BOOKING REQUEST
# =============================================================================

class CommunicationLogMixin:
    """Append-only audit log stored as a JSON list."""

    communications: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    def add_communication(self, kind: str, message: str, sent_by: str = "System") -> None:
        """Append an entry to the audit log."""
        entries = list(self.communications or [])
        entries.append({
            "type": kind,
            "message": message,
            "sent_by": sent_by,
            "sent_at": utcnow().isoformat(),
        })
        # Reassign so the JSON column is flagged dirty
        self.communications = entries


class BookingRequest(CommunicationLogMixin, Base):
    __tablename__ = "booking_requests"
    __table_args__ = (
        CheckConstraint("check_out_date > check_in_date", name="ck_booking_requests_dates"),
        CheckConstraint("total_amount_minor >= 0", name="ck_booking_requests_total"),
        Index("ix_booking_requests_property_dates", "property_id", "check_in_date", "check_out_date"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    # Property snapshot
    property_id: Mapped[str] = mapped_column(String(64), nullable=False)
    property_title: Mapped[str] = mapped_column(String(200), nullable=False)
    property_location: Mapped[Optional[str]] = mapped_column(String(200))

    # Guest
    guest_first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    guest_last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    guest_email: Mapped[str] = mapped_column(String(254), nullable=False, index=True)
    guest_phone: Mapped[str] = mapped_column(String(30), nullable=False)
    guest_nin: Mapped[Optional[str]] = mapped_column(String(20))
    guest_id_document: Mapped[Optional[dict]] = mapped_column(JSON)
    emergency_contact: Mapped[Optional[dict]] = mapped_column(JSON)

    # Stay
    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)
    number_of_guests: Mapped[int] = mapped_column(Integer, nullable=False)
    number_of_nights: Mapped[int] = mapped_column(Integer, nullable=False)
    price_per_night_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    subtotal_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    discount_code: Mapped[Optional[str]] = mapped_column(String(32))
    discount_amount_minor: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    total_amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default=BookingStatus.PENDING.value, nullable=False, index=True
    )
    payment_method: Mapped[str] = mapped_column(
        String(20), default=PaymentMethod.ONLINE.value, nullable=False
    )
    source: Mapped[str] = mapped_column(String(30), default="Website", nullable=False)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text)

    converted_to_tenant_id: Mapped[Optional[UUID]] = mapped_column(ForeignKey("tenants.id"))

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    @property
    def guest_full_name(self) -> str:
        return f"{self.guest_first_name} {self.guest_last_name}"

    def update_status(self, new_status: BookingStatus, note: str, sent_by: str = "System") -> None:
        """Move to ``new_status`` if the state machine allows it, logging ``note``."""
        current = BookingStatus(self.status)
        if new_status not in BOOKING_TRANSITIONS[current]:
            raise IntegrityError(
                f"Booking request {self.id} cannot move from {current.value} to {new_status.value}"
            )
        self.status = new_status.value
        self.add_communication("Note", note, sent_by)


# =============================================================================
# TRANSACTION
# =============================================================================

GATEWAY_METADATA_KEYS = (
    "id",
    "domain",
    "channel",
    "currency",
    "amount",
    "fees",
    "paid_at",
    "gateway_response",
    "ip_address",
)


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        CheckConstraint("amount_minor >= 0", name="ck_transactions_amount"),
        # At most one successful payment per booking request
        Index(
            "uq_transactions_booking_success",
            "booking_request_id",
            unique=True,
            postgresql_where=text("status = 'success'"),
            sqlite_where=text("status = 'success'"),
        ),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    reference: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    gateway_reference: Mapped[Optional[str]] = mapped_column(String(100))
    access_code: Mapped[Optional[str]] = mapped_column(String(100))

    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="NGN", nullable=False)
    customer: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    booking_request_id: Mapped[Optional[UUID]] = mapped_column(
        ForeignKey("booking_requests.id"), index=True
    )
    payment_type: Mapped[str] = mapped_column(String(30), default="booking_payment", nullable=False)
    status: Mapped[str] = mapped_column(
        String(10), default=TransactionStatus.PENDING.value, nullable=False
    )

    gateway_response: Mapped[Optional[str]] = mapped_column(String(255))
    failure_reason: Mapped[Optional[str]] = mapped_column(String(255))
    gateway_metadata: Mapped[Optional[dict]] = mapped_column(JSON)
    booking_snapshot: Mapped[Optional[dict]] = mapped_column(JSON)

    ip_address: Mapped[Optional[str]] = mapped_column(String(64))
    user_agent: Mapped[Optional[str]] = mapped_column(String(255))

    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    @staticmethod
    def generate_reference() -> str:
        """Generate a unique reference like SB-1709290000000-9F2C41AB."""
        return f"SB-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"

    def _require_pending(self) -> None:
        if self.status != TransactionStatus.PENDING.value:
            raise IntegrityError(
                f"Transaction {self.reference} is already {self.status}",
                reference=self.reference,
            )

    def mark_successful(self, gateway_data: dict[str, Any], paid_at: Optional[datetime] = None) -> None:
        self._require_pending()
        self.status = TransactionStatus.SUCCESS.value
        self.gateway_response = gateway_data.get("gateway_response")
        self.gateway_metadata = {
            key: gateway_data[key] for key in GATEWAY_METADATA_KEYS if key in gateway_data
        }
        self.paid_at = paid_at or utcnow()

    def mark_failed(self, reason: str, gateway_data: Optional[dict[str, Any]] = None) -> None:
        self._require_pending()
        self.status = TransactionStatus.FAILED.value
        self.failure_reason = reason[:255]
        if gateway_data:
            self.gateway_response = gateway_data.get("gateway_response")
            self.gateway_metadata = {
                key: gateway_data[key] for key in GATEWAY_METADATA_KEYS if key in gateway_data
            }


# =============================================================================
# TENANT
# =============================================================================

class Tenant(Base):
    """A confirmed occupancy record, created only after a successful payment."""

    __tablename__ = "tenants"
    __table_args__ = (
        UniqueConstraint(
            "email", "property_id", "check_in_date", "check_out_date",
            name="uq_tenants_guest_stay",
        ),
        Index("ix_tenants_property_dates", "property_id", "check_in_date", "check_out_date"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(254), nullable=False)
    phone: Mapped[str] = mapped_column(String(30), nullable=False)
    nin: Mapped[Optional[str]] = mapped_column(String(20))
    id_document: Mapped[Optional[dict]] = mapped_column(JSON)
    emergency_contact: Mapped[Optional[dict]] = mapped_column(JSON)

    property_id: Mapped[str] = mapped_column(String(64), nullable=False)
    check_in_date: Mapped[date] = mapped_column(Date, nullable=False)
    check_out_date: Mapped[date] = mapped_column(Date, nullable=False)
    number_of_guests: Mapped[int] = mapped_column(Integer, nullable=False)
    number_of_nights: Mapped[int] = mapped_column(Integer, nullable=False)
    price_per_night_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    total_amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    payment_method: Mapped[str] = mapped_column(String(30), default="Online Payment", nullable=False)
    payment_status: Mapped[str] = mapped_column(String(20), default="Paid", nullable=False)
    amount_paid_minor: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    payment_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    transaction_reference: Mapped[Optional[str]] = mapped_column(String(64))

    status: Mapped[str] = mapped_column(
        String(20), default=TenantStatus.CONFIRMED.value, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )

    @classmethod
    def from_booking_request(
        cls,
        booking: BookingRequest,
        transaction: Transaction,
    ) -> "Tenant":
        """Materialize a confirmed tenancy from a paid booking request."""
        return cls(
            id=uuid4(),
            first_name=booking.guest_first_name,
            last_name=booking.guest_last_name,
            email=booking.guest_email,
            phone=booking.guest_phone,
            nin=booking.guest_nin,
            id_document=booking.guest_id_document,
            emergency_contact=booking.emergency_contact,
            property_id=booking.property_id,
            check_in_date=booking.check_in_date,
            check_out_date=booking.check_out_date,
            number_of_guests=booking.number_of_guests,
            number_of_nights=booking.number_of_nights,
            price_per_night_minor=booking.price_per_night_minor,
            total_amount_minor=booking.total_amount_minor,
            payment_method="Online Payment",
            payment_status="Paid",
            amount_paid_minor=transaction.amount_minor,
            payment_date=transaction.paid_at or utcnow(),
            transaction_reference=transaction.reference,
            status=TenantStatus.CONFIRMED.value,
        )


# =============================================================================
# DISCOUNT CODES
# =============================================================================

class DiscountCode(Base):
    __tablename__ = "discount_codes"
    __table_args__ = (
        CheckConstraint("discount_value >= 0", name="ck_discount_codes_value"),
        CheckConstraint("used_count >= 0", name="ck_discount_codes_used"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    discount_type: Mapped[str] = mapped_column(String(12), nullable=False)
    # Whole percent for percentage codes, minor units for fixed codes
    discount_value: Mapped[int] = mapped_column(BigInteger, nullable=False)
    max_discount_amount_minor: Mapped[Optional[int]] = mapped_column(BigInteger)
    min_stay_days: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    usage_limit: Mapped[Optional[int]] = mapped_column(Integer)
    used_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or utcnow())

    def is_fully_used(self) -> bool:
        return self.usage_limit is not None and self.used_count >= self.usage_limit

    def is_available(self, now: Optional[datetime] = None) -> bool:
        return self.is_active and not self.is_expired(now) and not self.is_fully_used()


class DiscountCodeUsage(Base):
    __tablename__ = "discount_code_usages"
    __table_args__ = (
        UniqueConstraint("discount_code_id", "user_id", name="uq_discount_code_usages_user"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    discount_code_id: Mapped[UUID] = mapped_column(ForeignKey("discount_codes.id"), nullable=False)
    user_id: Mapped[str] = mapped_column(String(254), nullable=False)
    order_id: Mapped[Optional[str]] = mapped_column(String(64))
    used_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)


# =============================================================================
# MAINTENANCE REQUESTS
# =============================================================================

class MaintenanceRequest(CommunicationLogMixin, Base):
    __tablename__ = "maintenance_requests"
    __table_args__ = (
        Index("ix_maintenance_requests_property_status", "property_id", "status"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)

    property_id: Mapped[str] = mapped_column(String(64), nullable=False)
    property_title: Mapped[str] = mapped_column(String(200), nullable=False)
    property_location: Mapped[str] = mapped_column(String(200), nullable=False)

    requester_type: Mapped[str] = mapped_column(
        String(10), default=RequesterType.TENANT.value, nullable=False
    )
    requester_name: Mapped[str] = mapped_column(String(100), nullable=False)
    requester_email: Mapped[Optional[str]] = mapped_column(String(254))
    requester_phone: Mapped[Optional[str]] = mapped_column(String(30))
    tenant_id: Mapped[Optional[UUID]] = mapped_column(ForeignKey("tenants.id"))

    issue_category: Mapped[str] = mapped_column(String(20), nullable=False)
    priority: Mapped[str] = mapped_column(
        String(10), default=MaintenancePriority.MEDIUM.value, nullable=False
    )
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    access_details: Mapped[Optional[dict]] = mapped_column(JSON)

    status: Mapped[str] = mapped_column(
        String(12), default=MaintenanceStatus.PENDING.value, nullable=False
    )

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow, nullable=False
    )


# =============================================================================
# ADMIN NOTIFICATIONS
# =============================================================================

class AdminNotification(Base):
    __tablename__ = "admin_notifications"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[str] = mapped_column(String(40), nullable=False)
    priority: Mapped[str] = mapped_column(String(10), default="medium", nullable=False)
    related_records: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    action_url: Mapped[Optional[str]] = mapped_column(String(200))
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
