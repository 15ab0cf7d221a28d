"""
Paystack API access and webhook simulation.
"""

from .client import (
    PaystackClient,
    PaystackClientError,
    PaystackConfig,
    WebhookDelivery,
    WebhookSimulator,
)

__all__ = [
    "PaystackClient",
    "PaystackClientError",
    "PaystackConfig",
    "WebhookDelivery",
    "WebhookSimulator",
]
