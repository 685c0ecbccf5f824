"""Payment provider adapters."""
from .base import (
    CanonicalStatus,
    CreatePaymentOptions,
    PaymentProcessorPort,
    ProviderIntent,
    ProviderRefund,
    ProviderStatus,
    WebhookEvent,
    WebhookEventType,
)
from .registry import ADAPTERS, get_adapter, resolve_processor_type

__all__ = [
    "ADAPTERS",
    "CanonicalStatus",
    "CreatePaymentOptions",
    "PaymentProcessorPort",
    "ProviderIntent",
    "ProviderRefund",
    "ProviderStatus",
    "WebhookEvent",
    "WebhookEventType",
    "get_adapter",
    "resolve_processor_type",
]
