"""Outbound webhook signing, matching and delivery."""

from .dispatcher import DeliveryResult, WebhookDispatcher
from .matcher import SubscriptionMatcher
from .signer import generate_secret, sign, verify

__all__ = [
    "DeliveryResult",
    "SubscriptionMatcher",
    "WebhookDispatcher",
    "generate_secret",
    "sign",
    "verify",
]
