"""
Payment verification client.

Used by the payment callback page (or any caller holding a reference) to
confirm a payment. The gateway can report a payment as pending for a few
seconds after the redirect, so verification is retried with fixed delays.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence

import httpx
import structlog

logger = structlog.get_logger(__name__)

# Seconds to wait before each attempt
RETRY_DELAYS = (0, 3, 7)

EXHAUSTED_MESSAGE = "Payment verification failed after multiple attempts"
UNREACHABLE_MESSAGE = "Failed to verify payment after multiple attempts. Please contact support."


class VerificationStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    ERROR = "error"


@dataclass
class VerificationOutcome:
    status: VerificationStatus
    reference: str
    message: str
    attempts: int
    data: Optional[dict[str, Any]] = None

    @property
    def succeeded(self) -> bool:
        return self.status == VerificationStatus.SUCCESS


class PaymentVerificationClient:
    """
    Calls ``POST /payments/verify`` until the payment settles.

    Stops early on success or on a definitive failure; a pending answer,
    a 5xx or a transport error moves on to the next attempt.
    """

    def __init__(
        self,
        base_url: str,
        delays: Sequence[float] = RETRY_DELAYS,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.base_url = base_url
        self.delays = tuple(delays)
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep

    async def verify(self, reference: str) -> VerificationOutcome:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        ) as client:
            last_message = EXHAUSTED_MESSAGE
            last_status = VerificationStatus.FAILED

            for attempt, delay in enumerate(self.delays, start=1):
                if delay > 0:
                    logger.info(
                        "Retrying payment verification",
                        reference=reference,
                        attempt=attempt,
                        delay_seconds=delay,
                    )
                    await self._sleep(delay)

                try:
                    response = await client.post("/payments/verify", json={"reference": reference})
                    body = response.json()
                except (httpx.HTTPError, ValueError) as e:
                    logger.warning(
                        "Payment verification attempt failed",
                        reference=reference,
                        attempt=attempt,
                        error=str(e),
                    )
                    last_status, last_message = VerificationStatus.ERROR, UNREACHABLE_MESSAGE
                    continue

                if not isinstance(body, dict):
                    body = {}
                data = body.get("data")
                data = data if isinstance(data, dict) else {}
                status = data.get("status")

                if status == VerificationStatus.SUCCESS.value and body.get("success"):
                    return VerificationOutcome(
                        VerificationStatus.SUCCESS, reference, data.get("message") or "Payment verified",
                        attempt, data,
                    )

                if status == VerificationStatus.FAILED.value or response.status_code in (400, 404, 409):
                    return VerificationOutcome(
                        VerificationStatus.FAILED,
                        reference,
                        data.get("message") or body.get("error") or "Payment verification failed",
                        attempt,
                        data or None,
                    )

                # Pending, gateway error or server error: try again
                last_status = VerificationStatus.FAILED
                last_message = data.get("message") or body.get("error") or EXHAUSTED_MESSAGE

        logger.warning("Payment verification exhausted retries", reference=reference, attempts=len(self.delays))
        return VerificationOutcome(last_status, reference, last_message, len(self.delays))
