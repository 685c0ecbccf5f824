"""Schema package exports."""
from .payment import (
    PaymentCreate,
    PaymentIntentResponse,
    PaymentRead,
    RefundCreate,
    RefundRead,
    RefundResponse,
)
from .processor import ProcessorCreate, ProcessorRead, ProcessorVerifyResponse
from .webhook import WebhookResponse

__all__ = [
    "PaymentCreate",
    "PaymentIntentResponse",
    "PaymentRead",
    "RefundCreate",
    "RefundRead",
    "RefundResponse",
    "ProcessorCreate",
    "ProcessorRead",
    "ProcessorVerifyResponse",
    "WebhookResponse",
]
