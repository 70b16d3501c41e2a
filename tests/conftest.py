"""
Shared fixtures: an in-memory database per test, a scripted payment gateway
and a notifier that records instead of sending.
"""

from typing import Any, Optional

import pytest

from shortlet_booking.config import Settings
from shortlet_booking.context import build_context
from shortlet_booking.database import create_all
from shortlet_booking.errors import GatewayError
from shortlet_booking.notifications import NotificationKind, Notifier
from shortlet_booking.payment_adapters import (
    GatewayType,
    PaymentGatewayAdapter,
    PaymentInitialization,
    PaymentVerification,
)


class StubGateway(PaymentGatewayAdapter):
    """Gateway double; answers whatever the test scripted."""

    def __init__(self):
        super().__init__(secret_key="sk_test_stub")
        self.initialized: list[dict[str, Any]] = []
        self.verified: list[str] = []
        self.error: Optional[GatewayError] = None
        self._status = "success"
        self._amount: Optional[int] = None
        self._gateway_response = "Approved"

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.PAYSTACK

    @property
    def default_base_url(self) -> str:
        return "https://gateway.invalid"

    def succeed(self, amount_minor: Optional[int] = None):
        self._status, self._amount, self._gateway_response = "success", amount_minor, "Approved"

    def fail(self, reason: str = "Declined"):
        self._status, self._amount, self._gateway_response = "failed", None, reason

    def pend(self):
        self._status, self._amount, self._gateway_response = "ongoing", None, None

    async def initialize(self, payload: dict[str, Any]) -> PaymentInitialization:
        self.initialized.append(payload)
        if self.error:
            raise self.error
        return PaymentInitialization(
            authorization_url=f"https://checkout.paystack.com/{payload['reference']}",
            access_code="ac_stub",
            gateway_reference=payload["reference"],
        )

    async def verify(self, reference: str) -> PaymentVerification:
        self.verified.append(reference)
        if self.error:
            raise self.error
        data = {
            "id": 4099260516,
            "status": self._status,
            "reference": reference,
            "amount": self._amount,
            "currency": "NGN",
            "channel": "card",
            "gateway_response": self._gateway_response,
        }
        return PaymentVerification(
            success=self._status == "success",
            gateway_status=self._status,
            reference=reference,
            amount_minor=self._amount,
            currency="NGN",
            gateway_response=self._gateway_response,
            data=data,
            raw={"status": True, "data": data},
        )


class RecordingNotifier(Notifier):
    """Records notifications instead of delivering them."""

    def __init__(self, settings: Settings):
        super().__init__(settings, session_factory=None)
        self.sent: list[tuple[NotificationKind, dict[str, Any]]] = []

    async def notify(self, kind, payload):
        self.sent.append((kind, payload))
        return True

    @property
    def kinds(self) -> list[NotificationKind]:
        return [kind for kind, _ in self.sent]


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        ENVIRONMENT="test",
        DATABASE_URL="sqlite+aiosqlite://",
        CREATE_TABLES_ON_STARTUP=False,
        PAYSTACK_SECRET_KEY="sk_test_123",
        PUBLIC_BASE_URL="https://saphire.test",
        ADMIN_EMAIL="bookings@saphireapartments.com",
        LOG_JSON=False,
    )


@pytest.fixture
def gateway():
    return StubGateway()


@pytest.fixture
def notifier(settings):
    return RecordingNotifier(settings)


@pytest.fixture
async def ctx(settings, gateway, notifier):
    context = build_context(settings, gateway=gateway, notifier=notifier)
    await create_all(context.engine)
    yield context
    await context.aclose()


@pytest.fixture
async def session(ctx):
    async with ctx.session_factory() as session:
        yield session
