"""ORM models package."""
from .audit import AuditLog
from .base import Base
from .order import Order, OrderPaymentStatus
from .payment import Payment, PaymentStatus
from .payment_processor import PaymentProcessor, ProcessorStatus, ProcessorType
from .refund import PaymentRefund, RefundStatus
from .webhook_event import ProcessedWebhookEvent

__all__ = [
    "AuditLog",
    "Base",
    "Order",
    "OrderPaymentStatus",
    "Payment",
    "PaymentStatus",
    "PaymentProcessor",
    "ProcessorStatus",
    "ProcessorType",
    "PaymentRefund",
    "RefundStatus",
    "ProcessedWebhookEvent",
]
