"""
Error taxonomy shared by the domain modules and the HTTP layer.

Each error carries the HTTP status it maps to; the application factory
registers one exception handler that renders them as
``{"success": false, "error": ..., "reference": ...}``.
"""

from typing import Any, Optional


class BookingServiceError(Exception):
    """Base exception for booking service errors."""

    status_code = 500
    retryable = False

    def __init__(
        self,
        message: str,
        reference: Optional[str] = None,
        details: Optional[Any] = None,
    ):
        self.message = message
        self.reference = reference
        self.details = details
        super().__init__(message)

    def to_payload(self) -> dict:
        payload: dict[str, Any] = {"success": False, "error": self.message}
        if self.reference:
            payload["reference"] = self.reference
        if self.details is not None:
            payload["details"] = self.details
        return payload


class ValidationError(BookingServiceError):
    """Raised on bad input (400)."""
    status_code = 400


class NotFoundError(BookingServiceError):
    """Raised when a booking, transaction or code does not exist (404)."""
    status_code = 404


class ConflictError(BookingServiceError):
    """Raised when dates overlap or a one-time action was already taken (409)."""
    status_code = 409


class DiscountAlreadyUsedError(ConflictError):
    """Raised when a user redeems the same discount code twice."""
    pass


class GatewayError(BookingServiceError):
    """Raised when the payment provider fails or answers with garbage (502).

    Retryable: the caller may try again with backoff.
    """
    status_code = 502
    retryable = True

    def __init__(
        self,
        message: str,
        provider_status: Optional[int] = None,
        response_body: Optional[str] = None,
        reference: Optional[str] = None,
    ):
        super().__init__(message, reference=reference)
        self.provider_status = provider_status
        self.response_body = response_body


class IntegrityError(BookingServiceError):
    """Raised when an internal invariant is violated (500)."""
    status_code = 500
