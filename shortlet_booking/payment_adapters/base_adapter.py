"""
Base Payment Gateway Adapter
============================

Abstract base class for payment provider adapters. An adapter is a thin
translation layer over the provider's HTTP API: it initializes a payment,
verifies one by reference, and turns every transport problem, non-2xx
answer or malformed body into a ``GatewayError``.

Adapters never retry. Retrying verification is the caller's job.
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

import httpx
import structlog

from ..errors import GatewayError
from ..observability import GATEWAY_LATENCY

logger = structlog.get_logger(__name__)

# Gateway statuses meaning "not settled yet, ask again later"
PENDING_GATEWAY_STATUSES = frozenset({"pending", "ongoing", "processing", "queued"})


class GatewayType(str, Enum):
    """Supported payment gateways."""
    PAYSTACK = "paystack"


@dataclass
class PaymentInitialization:
    """Result of initializing a payment with the gateway."""
    authorization_url: str
    access_code: str
    gateway_reference: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class PaymentVerification:
    """Standardized verification result from any gateway."""
    success: bool
    gateway_status: str
    reference: str
    amount_minor: Optional[int] = None
    currency: Optional[str] = None
    gateway_response: Optional[str] = None
    paid_at: Optional[datetime] = None
    data: Dict[str, Any] = field(default_factory=dict)
    raw: Dict[str, Any] = field(default_factory=dict)

    @property
    def settled(self) -> bool:
        return self.gateway_status not in PENDING_GATEWAY_STATUSES


class PaymentGatewayAdapter(ABC):
    """
    Abstract base class for payment gateway adapters.

    Each adapter must implement:
    - initialize: start a payment and return the hosted checkout URL
    - verify: look up the outcome of a payment by reference
    """

    def __init__(
        self,
        secret_key: str,
        base_url: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the adapter.

        Args:
            secret_key: Provider secret key used as bearer token
            base_url: Override for the provider API URL
            timeout: HTTP request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.secret_key = secret_key
        self._base_url = base_url
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    @abstractmethod
    def gateway_type(self) -> GatewayType:
        """Return the gateway type for this adapter."""
        pass

    @property
    @abstractmethod
    def default_base_url(self) -> str:
        """Return the provider's public API URL."""
        pass

    @property
    def base_url(self) -> str:
        return self._base_url or self.default_base_url

    @property
    def headers(self) -> Dict[str, str]:
        """Return default headers for API requests."""
        return {
            "Authorization": f"Bearer {self.secret_key}",
            "Content-Type": "application/json",
            "Accept": "application/json"
        }

    async def get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=self.headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    # =========================================================================
    # ABSTRACT METHODS - Must be implemented by each adapter
    # =========================================================================

    @abstractmethod
    async def initialize(self, payload: Dict[str, Any]) -> PaymentInitialization:
        """
        Initialize a payment.

        Args:
            payload: Provider payload (email, amount in minor units,
                reference, currency, callback URL, metadata)

        Returns:
            Checkout URL, access code and the gateway's reference

        Raises:
            GatewayError: On any provider or transport failure
        """
        pass

    @abstractmethod
    async def verify(self, reference: str) -> PaymentVerification:
        """
        Verify a payment by reference.

        Args:
            reference: Our transaction reference

        Returns:
            Standardized verification result

        Raises:
            GatewayError: On any provider or transport failure
        """
        pass

    # =========================================================================
    # HELPER METHODS - Shared across adapters
    # =========================================================================

    async def _make_request(
        self,
        method: str,
        endpoint: str,
        operation: str,
        json: Optional[Dict] = None,
        **kwargs
    ) -> httpx.Response:
        """
        Make an HTTP request and map failures to ``GatewayError``.

        Args:
            method: HTTP method
            endpoint: API endpoint (relative to base_url)
            operation: Label for latency metrics (initialize, verify)
            json: JSON body

        Returns:
            httpx.Response with a 2xx status
        """
        client = await self.get_client()
        started = time.perf_counter()

        try:
            response = await client.request(
                method=method,
                url=endpoint,
                json=json,
                **kwargs
            )
        except httpx.RequestError as e:
            logger.error(
                "Gateway request failed",
                gateway=self.gateway_type.value,
                endpoint=endpoint,
                error=str(e)
            )
            raise GatewayError(f"Payment gateway unreachable: {e}") from e
        finally:
            GATEWAY_LATENCY.labels(
                gateway=self.gateway_type.value,
                operation=operation
            ).observe(time.perf_counter() - started)

        self._log_response(response, endpoint=endpoint)

        if response.status_code >= 400:
            raise GatewayError(
                self._error_message(response),
                provider_status=response.status_code,
                response_body=response.text
            )

        return response

    def _parse_json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            raise GatewayError(
                "Malformed response from payment gateway",
                provider_status=response.status_code,
                response_body=response.text
            ) from None
        if not isinstance(body, dict):
            raise GatewayError(
                "Malformed response from payment gateway",
                provider_status=response.status_code,
                response_body=response.text
            )
        return body

    def _error_message(self, response: httpx.Response) -> str:
        """Best-effort provider message for a failed response."""
        try:
            body = response.json()
        except ValueError:
            body = None
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        return f"Payment gateway error: {response.status_code}"

    def _log_request(self, method: str, endpoint: str, **kwargs):
        """Log outgoing API request."""
        logger.info(
            "Gateway request",
            gateway=self.gateway_type.value,
            method=method,
            endpoint=endpoint,
            **kwargs
        )

    def _log_response(self, response: httpx.Response, **kwargs):
        """Log API response."""
        logger.info(
            "Gateway response",
            gateway=self.gateway_type.value,
            status_code=response.status_code,
            **kwargs
        )
