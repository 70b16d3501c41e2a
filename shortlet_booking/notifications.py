"""
Notification side-effects.

Domain operations never notify directly. They append ``(kind, payload)``
entries to a ``NotificationQueue`` while their unit of work is open; the HTTP
layer hands the queue to ``Notifier.dispatch_all`` as a background task once
the database commit has succeeded. A failing notification is logged and
counted, never raised.
"""

import asyncio
import smtplib
from dataclasses import dataclass, field
from email.message import EmailMessage
from enum import Enum
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import Settings
from .models import AdminNotification
from .observability import NOTIFICATION_FAILURES

logger = structlog.get_logger(__name__)


class NotificationKind(str, Enum):
    BOOKING_REQUEST = "booking_request"
    BOOKING_RECEIVED = "booking_received"
    BOOKING_ADMIN_ALERT = "booking_admin_alert"
    PAYMENT_RECEIVED = "payment_received"
    BOOKING_APPROVED = "booking_approved"
    TENANT_CREATED = "tenant_created"
    PAYMENT_FAILED = "payment_failed"
    VIEWING_REQUEST = "viewing_request"
    MAINTENANCE_REQUEST = "maintenance_request"


@dataclass
class Notification:
    kind: NotificationKind
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationQueue:
    """Notifications collected inside one unit of work."""

    def __init__(self):
        self._items: list[Notification] = []

    def add(self, kind: NotificationKind, **payload: Any) -> None:
        self._items.append(Notification(kind, payload))

    def drain(self) -> list[Notification]:
        items, self._items = self._items, []
        return items

    @property
    def kinds(self) -> list[NotificationKind]:
        return [item.kind for item in self._items]

    def __len__(self) -> int:
        return len(self._items)


# =============================================================================
# ROUTING TABLES
# =============================================================================

# kind -> (title, admin notification type, priority, dashboard URL)
ADMIN_RECORDS: dict[NotificationKind, tuple[str, str, str, str]] = {
    NotificationKind.BOOKING_REQUEST: (
        "New Booking Request", "booking_request", "high", "/dashboard/booking-requests"
    ),
    NotificationKind.PAYMENT_RECEIVED: (
        "Payment Received", "payment_received", "high", "/dashboard/transactions"
    ),
    NotificationKind.TENANT_CREATED: (
        "New Tenant Created", "tenant_checkin", "medium", "/dashboard/tenants"
    ),
    NotificationKind.PAYMENT_FAILED: (
        "Payment Failed", "payment_failed", "medium", "/dashboard/transactions"
    ),
    NotificationKind.VIEWING_REQUEST: (
        "New Viewing Request", "viewing_request", "medium", "/dashboard/viewings"
    ),
    NotificationKind.MAINTENANCE_REQUEST: (
        "New Maintenance Request", "maintenance_request", "medium", "/dashboard/maintenance"
    ),
}

GUEST_EMAILS = frozenset({
    NotificationKind.BOOKING_RECEIVED,
    NotificationKind.BOOKING_APPROVED,
    NotificationKind.VIEWING_REQUEST,
    NotificationKind.MAINTENANCE_REQUEST,
})

URGENT_PRIORITIES = frozenset({"High", "Emergency"})

ADMIN_EMAILS = frozenset({
    NotificationKind.BOOKING_ADMIN_ALERT,
    NotificationKind.VIEWING_REQUEST,
})


def render_message(kind: NotificationKind, payload: dict[str, Any]) -> str:
    """One-line summary used for admin records and email bodies."""
    guest = payload.get("guest_name", "A guest")
    title = payload.get("property_title", "the property")
    stay = f"{payload.get('check_in', '?')} to {payload.get('check_out', '?')}"

    if kind == NotificationKind.BOOKING_REQUEST:
        return f"{guest} started payment for {title} ({stay})"
    if kind == NotificationKind.BOOKING_RECEIVED:
        return (
            f"Dear {guest}, we have received your booking request for {title} ({stay}). "
            "We will be in touch shortly."
        )
    if kind == NotificationKind.BOOKING_ADMIN_ALERT:
        return (
            f"New booking request from {guest} for {title} ({stay}), "
            f"total {payload.get('total_amount', '?')} {payload.get('currency', '')}".rstrip()
        )
    if kind == NotificationKind.PAYMENT_RECEIVED:
        return f"Payment {payload.get('reference')} of {payload.get('amount', '?')} received from {guest}"
    if kind == NotificationKind.BOOKING_APPROVED:
        return f"Dear {guest}, your payment was received and your stay at {title} ({stay}) is confirmed."
    if kind == NotificationKind.TENANT_CREATED:
        return f"New tenant {guest} created after successful payment"
    if kind == NotificationKind.PAYMENT_FAILED:
        return f"Payment {payload.get('reference')} from {guest} failed: {payload.get('reason', 'unknown')}"
    if kind == NotificationKind.VIEWING_REQUEST:
        return (
            f"Viewing request from {guest} for {title} on "
            f"{payload.get('preferred_date', '?')} at {payload.get('preferred_time', '?')}"
        )
    if kind == NotificationKind.MAINTENANCE_REQUEST:
        return (
            f"{payload.get('priority', 'Medium')} priority {payload.get('issue_category', 'maintenance')} "
            f"request at {title} from {guest}: {payload.get('title', '')}"
        )
    return str(payload)


# =============================================================================
# NOTIFIER
# =============================================================================

class Notifier:
    """Dispatches notifications to admin records and email."""

    def __init__(
        self,
        settings: Settings,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    ):
        self.settings = settings
        self.session_factory = session_factory

    async def notify(self, kind: NotificationKind, payload: dict[str, Any]) -> bool:
        """Deliver one notification. Returns False instead of raising on failure."""
        try:
            if kind in ADMIN_RECORDS:
                await self._record_admin_notification(kind, payload)

            if kind in GUEST_EMAILS and payload.get("email"):
                await self._send_email(payload["email"], self._subject(kind, payload, guest=True), kind, payload)

            if kind in ADMIN_EMAILS:
                if self.settings.ADMIN_EMAIL:
                    await self._send_email(
                        self.settings.ADMIN_EMAIL, self._subject(kind, payload, guest=False), kind, payload
                    )
                else:
                    logger.warning("ADMIN_EMAIL not configured, skipping admin email", kind=kind.value)

        except Exception as e:
            NOTIFICATION_FAILURES.labels(kind=kind.value).inc()
            logger.error(
                "Notification failed",
                kind=kind.value,
                error=str(e),
                reference=payload.get("reference"),
            )
            return False

        return True

    async def dispatch_all(self, queue: NotificationQueue) -> None:
        for notification in queue.drain():
            await self.notify(notification.kind, notification.payload)

    async def _record_admin_notification(self, kind: NotificationKind, payload: dict[str, Any]) -> None:
        if self.session_factory is None:
            return

        title, notification_type, priority, action_url = ADMIN_RECORDS[kind]
        related = {
            key: str(payload[key])
            for key in (
                "booking_request_id",
                "transaction_id",
                "tenant_id",
                "maintenance_request_id",
                "property_id",
                "reference",
            )
            if payload.get(key) is not None
        }
        # Urgent maintenance jumps the admin queue
        if kind == NotificationKind.MAINTENANCE_REQUEST and payload.get("priority") in URGENT_PRIORITIES:
            priority = "high"

        async with self.session_factory() as session:
            session.add(AdminNotification(
                title=title,
                message=render_message(kind, payload),
                type=notification_type,
                priority=priority,
                related_records=related,
                action_url=action_url,
                is_read=False,
            ))
            await session.commit()

    def _subject(self, kind: NotificationKind, payload: dict[str, Any], guest: bool) -> str:
        title = payload.get("property_title", "Saphire Apartments")
        name = payload.get("guest_name", "")
        if kind == NotificationKind.VIEWING_REQUEST:
            return f"Viewing Request Received - {title}" if guest else f"NEW VIEWING REQUEST - {title} | {name}"
        if kind == NotificationKind.BOOKING_APPROVED:
            return f"Booking Confirmed - {title}"
        if kind == NotificationKind.MAINTENANCE_REQUEST:
            return f"Maintenance Request Received - {title}"
        if kind == NotificationKind.BOOKING_ADMIN_ALERT:
            return f"NEW BOOKING REQUEST - {title} | {name}"
        return f"Booking Request Received - {title}"

    async def _send_email(
        self,
        recipient: str,
        subject: str,
        kind: NotificationKind,
        payload: dict[str, Any],
    ) -> None:
        body = render_message(kind, payload)

        if not self.settings.SMTP_HOST:
            logger.info("Email (SMTP not configured)", to=recipient, subject=subject, kind=kind.value)
            return

        message = EmailMessage()
        message["From"] = self.settings.SMTP_SENDER
        message["To"] = recipient
        message["Subject"] = subject
        message.set_content(body)

        await asyncio.to_thread(self._deliver, message)
        logger.info("Email sent", to=recipient, subject=subject, kind=kind.value)

    def _deliver(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.settings.SMTP_HOST, self.settings.SMTP_PORT, timeout=30) as smtp:
            smtp.starttls()
            if self.settings.SMTP_USER and self.settings.SMTP_PASS:
                smtp.login(self.settings.SMTP_USER, self.settings.SMTP_PASS)
            smtp.send_message(message)
