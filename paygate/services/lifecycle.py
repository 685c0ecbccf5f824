"""Payment state machine.

Pure functions only; :mod:`paygate.services.payments` applies the outcome to
rows inside its own transaction.
"""
from __future__ import annotations

import enum

from paygate.models import OrderPaymentStatus, PaymentStatus
from paygate.providers.base import CanonicalStatus, WebhookEventType

ALLOWED_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.SUCCEEDED, PaymentStatus.FAILED}),
    PaymentStatus.SUCCEEDED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

CANCELED_REASON = "canceled"


class TransitionOutcome(str, enum.Enum):
    APPLIED = "applied"
    NOOP = "noop"
    REJECTED = "rejected"


def evaluate_transition(current: PaymentStatus, target: PaymentStatus) -> TransitionOutcome:
    if current == target:
        return TransitionOutcome.NOOP
    if target in ALLOWED_TRANSITIONS[current]:
        return TransitionOutcome.APPLIED
    return TransitionOutcome.REJECTED


def is_anomaly(current: PaymentStatus, target: PaymentStatus) -> bool:
    """A failure reported for money we already hold needs a human look."""

    return current in (PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED) and target == PaymentStatus.FAILED


def target_for_event(event_type: WebhookEventType) -> PaymentStatus | None:
    """Payment status a webhook event asks for; refunds are decided by amount, not here."""

    if event_type is WebhookEventType.PAYMENT_SUCCEEDED:
        return PaymentStatus.SUCCEEDED
    if event_type is WebhookEventType.PAYMENT_FAILED:
        return PaymentStatus.FAILED
    return None


def target_for_poll(status: CanonicalStatus) -> tuple[PaymentStatus | None, str | None]:
    """Map a polled provider status to ``(target, failure_reason_override)``."""

    if status is CanonicalStatus.SUCCEEDED:
        return PaymentStatus.SUCCEEDED, None
    if status is CanonicalStatus.FAILED:
        return PaymentStatus.FAILED, None
    if status is CanonicalStatus.CANCELED:
        return PaymentStatus.FAILED, CANCELED_REASON
    return None, None


def order_status_after(
    payment_status: PaymentStatus, current: OrderPaymentStatus
) -> OrderPaymentStatus | None:
    """Order cascade for a payment that just moved to ``payment_status``.

    Returns ``None`` when the order must be left alone. A failed retry never
    downgrades an order that another attempt already paid.
    """

    if payment_status == PaymentStatus.SUCCEEDED:
        return OrderPaymentStatus.PAID
    if payment_status == PaymentStatus.FAILED and current != OrderPaymentStatus.PAID:
        return OrderPaymentStatus.FAILED
    return None


def refund_completes_payment(amount_cents: int, refunded_total_cents: int) -> bool:
    return refunded_total_cents >= amount_cents


__all__ = [
    "ALLOWED_TRANSITIONS",
    "CANCELED_REASON",
    "TransitionOutcome",
    "evaluate_transition",
    "is_anomaly",
    "target_for_event",
    "target_for_poll",
    "order_status_after",
    "refund_completes_payment",
]
