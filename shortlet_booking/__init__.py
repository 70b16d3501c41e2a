"""
Shortlet Booking Backend
========================

Booking requests, availability, discount codes and Paystack payment
reconciliation for a serviced-apartment operator.
"""

__version__ = "1.0.0"
