"""Payments service helpers."""

from .paypal_client import (
    PayPalClient,
    PayPalError,
    get_paypal_client,
    get_paypal_public_config,
    order_amount,
    order_is_captured,
)

__all__ = [
    "PayPalClient",
    "PayPalError",
    "get_paypal_client",
    "get_paypal_public_config",
    "order_amount",
    "order_is_captured",
]
