from .base_adapter import (
    PENDING_GATEWAY_STATUSES,
    GatewayType,
    PaymentGatewayAdapter,
    PaymentInitialization,
    PaymentVerification,
)
from .paystack_adapter import PaystackAdapter

__all__ = [
    "PENDING_GATEWAY_STATUSES",
    "GatewayType",
    "PaymentGatewayAdapter",
    "PaymentInitialization",
    "PaymentVerification",
    "PaystackAdapter",
]
