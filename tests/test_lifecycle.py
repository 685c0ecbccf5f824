import pytest

from paygate.models import OrderPaymentStatus, PaymentStatus
from paygate.providers.base import CanonicalStatus, WebhookEventType
from paygate.services import lifecycle
from paygate.services.lifecycle import TransitionOutcome


@pytest.mark.parametrize(
    ("current", "target", "outcome"),
    [
        (PaymentStatus.PENDING, PaymentStatus.SUCCEEDED, TransitionOutcome.APPLIED),
        (PaymentStatus.PENDING, PaymentStatus.FAILED, TransitionOutcome.APPLIED),
        (PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED, TransitionOutcome.APPLIED),
        (PaymentStatus.SUCCEEDED, PaymentStatus.SUCCEEDED, TransitionOutcome.NOOP),
        (PaymentStatus.SUCCEEDED, PaymentStatus.FAILED, TransitionOutcome.REJECTED),
        (PaymentStatus.FAILED, PaymentStatus.SUCCEEDED, TransitionOutcome.REJECTED),
        (PaymentStatus.REFUNDED, PaymentStatus.SUCCEEDED, TransitionOutcome.REJECTED),
        (PaymentStatus.PENDING, PaymentStatus.REFUNDED, TransitionOutcome.REJECTED),
    ],
)
def test_evaluate_transition(current, target, outcome):
    assert lifecycle.evaluate_transition(current, target) is outcome


def test_failure_after_money_collected_is_an_anomaly():
    assert lifecycle.is_anomaly(PaymentStatus.SUCCEEDED, PaymentStatus.FAILED)
    assert lifecycle.is_anomaly(PaymentStatus.REFUNDED, PaymentStatus.FAILED)
    assert not lifecycle.is_anomaly(PaymentStatus.FAILED, PaymentStatus.SUCCEEDED)


def test_event_and_poll_targets():
    assert lifecycle.target_for_event(WebhookEventType.PAYMENT_SUCCEEDED) == PaymentStatus.SUCCEEDED
    assert lifecycle.target_for_event(WebhookEventType.PAYMENT_FAILED) == PaymentStatus.FAILED
    assert lifecycle.target_for_event(WebhookEventType.REFUND_COMPLETED) is None
    assert lifecycle.target_for_poll(CanonicalStatus.PENDING) == (None, None)
    assert lifecycle.target_for_poll(CanonicalStatus.CANCELED) == (PaymentStatus.FAILED, "canceled")


def test_order_cascade_never_downgrades_a_paid_order():
    assert lifecycle.order_status_after(PaymentStatus.SUCCEEDED, OrderPaymentStatus.UNPAID) == OrderPaymentStatus.PAID
    assert lifecycle.order_status_after(PaymentStatus.FAILED, OrderPaymentStatus.UNPAID) == OrderPaymentStatus.FAILED
    assert lifecycle.order_status_after(PaymentStatus.FAILED, OrderPaymentStatus.PAID) is None
    assert lifecycle.order_status_after(PaymentStatus.REFUNDED, OrderPaymentStatus.PAID) is None


def test_refund_completion_threshold():
    assert not lifecycle.refund_completes_payment(10000, 3000)
    assert lifecycle.refund_completes_payment(10000, 10000)
