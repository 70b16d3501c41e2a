"""
Paystack Payment Adapter
========================

Adapter for the Paystack Transactions API.

API Documentation: https://paystack.com/docs/api/transaction/
Auth: Bearer secret key
Amounts: integer minor units (kobo for NGN)

Endpoints used:
- POST /transaction/initialize
- GET /transaction/verify/{reference}
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from urllib.parse import quote

import structlog

from ..errors import GatewayError
from .base_adapter import (
    GatewayType,
    PaymentGatewayAdapter,
    PaymentInitialization,
    PaymentVerification,
)

logger = structlog.get_logger(__name__)


def _parse_paid_at(value: Optional[str]) -> Optional[datetime]:
    """Parse Paystack's ``paid_at`` into naive UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


class PaystackAdapter(PaymentGatewayAdapter):
    """
    Adapter for Paystack.

    Paystack wraps every answer as ``{"status": bool, "message": str,
    "data": {...}}``. A ``status: false`` envelope is a failed call even when
    the HTTP status is 2xx.
    """

    @property
    def gateway_type(self) -> GatewayType:
        return GatewayType.PAYSTACK

    @property
    def default_base_url(self) -> str:
        return "https://api.paystack.co"

    async def _request_data(
        self,
        method: str,
        endpoint: str,
        operation: str,
        json: Optional[Dict] = None,
    ) -> tuple[Dict[str, Any], Dict[str, Any]]:
        """Return ``(envelope, data)`` for a successful Paystack call."""
        response = await self._make_request(method, endpoint, operation, json=json)
        body = self._parse_json(response)

        if body.get("status") is not True:
            raise GatewayError(
                str(body.get("message") or f"Paystack {operation} failed"),
                provider_status=response.status_code,
                response_body=response.text
            )

        data = body.get("data")
        if not isinstance(data, dict):
            raise GatewayError(
                f"Malformed Paystack {operation} response: missing data",
                provider_status=response.status_code,
                response_body=response.text
            )
        return body, data

    async def initialize(self, payload: Dict[str, Any]) -> PaymentInitialization:
        self._log_request(
            "POST",
            "/transaction/initialize",
            reference=payload.get("reference"),
            amount=payload.get("amount")
        )

        body, data = await self._request_data(
            "POST", "/transaction/initialize", "initialize", json=payload
        )

        try:
            return PaymentInitialization(
                authorization_url=data["authorization_url"],
                access_code=data["access_code"],
                gateway_reference=data["reference"],
                raw=body,
            )
        except KeyError as e:
            raise GatewayError(f"Malformed Paystack initialize response: missing {e.args[0]}") from None

    async def verify(self, reference: str) -> PaymentVerification:
        endpoint = f"/transaction/verify/{quote(reference, safe='')}"
        self._log_request("GET", endpoint, reference=reference)

        body, data = await self._request_data("GET", endpoint, "verify")

        gateway_status = str(data.get("status") or "").lower()
        if not gateway_status:
            raise GatewayError(
                "Malformed Paystack verify response: missing status",
                reference=reference
            )

        amount = data.get("amount")
        return PaymentVerification(
            success=gateway_status == "success",
            gateway_status=gateway_status,
            reference=str(data.get("reference") or reference),
            amount_minor=int(amount) if isinstance(amount, (int, float)) else None,
            currency=data.get("currency"),
            gateway_response=data.get("gateway_response"),
            paid_at=_parse_paid_at(data.get("paid_at") or data.get("paidAt")),
            data=data,
            raw=body,
        )
