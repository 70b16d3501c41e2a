"""
Logging and metrics.

structlog is configured once at startup; every module logs through
``structlog.get_logger(__name__)`` with an event message and keyword context.
Prometheus metrics are exposed on ``/metrics`` by the application factory.
"""

import logging
import sys

import structlog
from prometheus_client import Counter, Histogram

from .config import Settings


def configure_logging(settings: Settings) -> None:
    """Configure stdlib logging and structlog for the process."""
    level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)

    render_json = settings.LOG_JSON
    if render_json is None:
        render_json = settings.is_production()

    renderer = (
        structlog.processors.JSONRenderer()
        if render_json
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# =============================================================================
# PROMETHEUS METRICS
# =============================================================================

BOOKING_REQUESTS_CREATED = Counter(
    "shortlet_booking_requests_created_total",
    "Booking requests persisted",
    ["payment_method"]
)

MAINTENANCE_REQUESTS_CREATED = Counter(
    "shortlet_maintenance_requests_created_total",
    "Maintenance requests persisted",
    ["priority"]
)

AVAILABILITY_CHECKS = Counter(
    "shortlet_availability_checks_total",
    "Availability checks",
    ["result"]  # available, conflict
)

DISCOUNT_VALIDATIONS = Counter(
    "shortlet_discount_validations_total",
    "Discount code validations",
    ["outcome"]  # applied or a rejection kind
)

PAYMENT_INITIALIZATIONS = Counter(
    "shortlet_payment_initializations_total",
    "Payments initialized with the gateway",
    ["payment_type"]
)

PAYMENT_VERIFICATIONS = Counter(
    "shortlet_payment_verifications_total",
    "Payment verification outcomes",
    ["outcome"]  # success, failed, pending, duplicate
)

GATEWAY_LATENCY = Histogram(
    "shortlet_gateway_request_seconds",
    "Payment gateway request latency",
    ["gateway", "operation"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0]
)

NOTIFICATION_FAILURES = Counter(
    "shortlet_notification_failures_total",
    "Notifications that failed to dispatch",
    ["kind"]
)
