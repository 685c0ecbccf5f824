import base64
import json

import httpx
import pytest

from conftest import CREDENTIALS, request_json
from paygate.models import (
    AuditLog,
    OrderPaymentStatus,
    Payment,
    PaymentStatus,
    ProcessedWebhookEvent,
    ProcessorType,
)
from paygate.services.signatures import hmac_sha256_hex
from paygate.utils.errors import ProviderError, ProviderTimeoutError

CREDS = CREDENTIALS[ProcessorType.RAZORPAY]
ORDERS_URL = "https://razorpay.test/v1/orders"


def signed(event: dict) -> tuple[bytes, dict[str, str]]:
    body = json.dumps(event).encode()
    return body, {
        "Content-Type": "application/json",
        "X-Razorpay-Signature": hmac_sha256_hex(CREDS["webhook_secret"], body),
    }


def captured_event(order_ref: str, payment_id: str = "pay_29QQoUBi66xm2f", amount: int = 45000) -> dict:
    return {
        "entity": "event",
        "event": "payment.captured",
        "payload": {
            "payment": {
                "entity": {
                    "id": payment_id,
                    "order_id": order_ref,
                    "amount": amount,
                    "currency": "INR",
                    "status": "captured",
                    "method": "card",
                    "card": {"last4": "1111", "network": "Visa", "type": "credit"},
                    "email": "asha@example.com",
                    "contact": "+919876543210",
                }
            }
        },
        "created_at": 1760870000,
    }


def test_create_payment_opens_razorpay_order(service, provider_stub, make_order, make_processor, metric_calls):
    order = make_order(total_cents=45000)
    processor = make_processor(ProcessorType.RAZORPAY)
    provider_stub.add("POST", ORDERS_URL, {"id": "order_EKwxwAgItmmXdp", "status": "created"})

    result = service.create_payment(order.id, processor.id)

    assert result.payment.processor_payment_id == "order_EKwxwAgItmmXdp"
    assert result.client_secret == "order_EKwxwAgItmmXdp"
    assert result.additional_data["key_id"] == CREDS["key_id"]
    assert result.additional_data["prefill"]["contact"] == "9876543210"
    assert result.payment.processor_fee_cents == 900

    request = provider_stub.calls("POST", ORDERS_URL)[0]
    expected_auth = base64.b64encode(f"{CREDS['key_id']}:{CREDS['key_secret']}".encode()).decode()
    assert request.headers["authorization"] == f"Basic {expected_auth}"
    sent = request_json(request)
    assert sent["amount"] == 45000
    assert sent["currency"] == "INR"
    assert sent["receipt"] == order.id
    assert sent["notes"]["order_id"] == order.id
    assert metric_calls == [
        ("razorpay_payment_created", 45000, {"processor": "razorpay", "payment_id": result.payment.id})
    ]


def test_provider_rejection_fails_the_attempt(service, db_session, provider_stub, make_order, make_processor):
    order = make_order()
    processor = make_processor(ProcessorType.RAZORPAY)
    provider_stub.add(
        "POST", ORDERS_URL, (400, {"error": {"code": "BAD_REQUEST_ERROR", "description": "Invalid amount"}})
    )

    with pytest.raises(ProviderError) as exc:
        service.create_payment(order.id, processor.id)

    assert exc.value.code == "RAZORPAY_PAYMENT_FAILED"
    payment = db_session.query(Payment).one()
    assert payment.status == PaymentStatus.FAILED
    assert payment.failure_reason == "Invalid amount"
    db_session.refresh(order)
    assert order.payment_status == OrderPaymentStatus.UNPAID


def test_timeout_without_provider_id_fails_the_attempt(service, provider_stub, make_order, make_processor):
    order = make_order()
    processor = make_processor(ProcessorType.RAZORPAY)
    provider_stub.add("POST", ORDERS_URL, httpx.ReadTimeout, {"id": "order_retry_1", "status": "created"})

    with pytest.raises(ProviderTimeoutError):
        service.create_payment(order.id, processor.id)
    assert service.payments.pending_for_order(order.id) is None

    # Nothing is left in flight, so a fresh attempt goes straight through.
    result = service.create_payment(order.id, processor.id)
    assert result.payment.processor_payment_id == "order_retry_1"
    assert result.payment.metadata_json["attempt"] == 2


@pytest.mark.anyio
async def test_captured_webhook_masks_instrument(client, service, db_session, provider_stub, make_order, make_processor):
    order = make_order()
    processor = make_processor(ProcessorType.RAZORPAY)
    provider_stub.add("POST", ORDERS_URL, {"id": "order_EKwxwAgItmmXdp", "status": "created"})
    payment = service.create_payment(order.id, processor.id).payment

    body, headers = signed(captured_event("order_EKwxwAgItmmXdp"))
    response = await client.post("/webhooks/razorpay", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["event_id"] == "payment.captured:pay_29QQoUBi66xm2f"
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.SUCCEEDED
    assert payment.processor_charge_id == "pay_29QQoUBi66xm2f"
    assert payment.payment_method_details == {
        "method": "card",
        "card_last4": "****1111",
        "card_network": "Visa",
        "card_type": "credit",
        "email": "***@example.com",
        "contact": "***10",
    }
    db_session.refresh(processor)
    assert processor.last_transaction_at is not None


@pytest.mark.anyio
async def test_amount_mismatch_is_recorded(client, service, db_session, provider_stub, make_order, make_processor):
    order = make_order(total_cents=45000)
    processor = make_processor(ProcessorType.RAZORPAY)
    provider_stub.add("POST", ORDERS_URL, {"id": "order_mismatch", "status": "created"})
    payment = service.create_payment(order.id, processor.id).payment

    body, headers = signed(captured_event("order_mismatch", amount=44000))
    response = await client.post("/webhooks/razorpay", content=body, headers=headers)

    assert response.status_code == 200
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.SUCCEEDED
    assert payment.amount_cents == 45000
    assert payment.metadata_json["reported_amount_cents"] == 44000


@pytest.mark.anyio
async def test_failed_after_captured_is_an_anomaly(client, service, db_session, provider_stub, make_order, make_processor):
    order = make_order()
    processor = make_processor(ProcessorType.RAZORPAY)
    provider_stub.add("POST", ORDERS_URL, {"id": "order_anomaly", "status": "created"})
    payment = service.create_payment(order.id, processor.id).payment

    body, headers = signed(captured_event("order_anomaly"))
    assert (await client.post("/webhooks/razorpay", content=body, headers=headers)).status_code == 200

    failed = captured_event("order_anomaly", payment_id="pay_late_failure")
    failed["event"] = "payment.failed"
    failed["payload"]["payment"]["entity"]["error_description"] = "Payment was declined"
    body, headers = signed(failed)
    response = await client.post("/webhooks/razorpay", content=body, headers=headers)

    assert response.status_code == 200
    assert response.json()["processed"] is False
    db_session.refresh(payment)
    db_session.refresh(order)
    assert payment.status == PaymentStatus.SUCCEEDED
    assert order.payment_status == OrderPaymentStatus.PAID
    anomaly = db_session.query(AuditLog).filter_by(entity_id=payment.id, action="PAYMENT_STATUS_ANOMALY").one()
    assert anomaly.data_json["from"] == "succeeded"
    assert anomaly.data_json["to"] == "failed"

    replay = await client.post("/webhooks/razorpay", content=body, headers=headers)

    assert replay.json()["duplicate"] is True
    assert replay.json()["processed"] is False
    assert db_session.query(AuditLog).filter_by(entity_id=payment.id, action="PAYMENT_STATUS_ANOMALY").count() == 1


@pytest.mark.anyio
async def test_missing_signature_is_rejected(client, make_processor):
    make_processor(ProcessorType.RAZORPAY)
    body = json.dumps(captured_event("order_x")).encode()

    response = await client.post("/webhooks/razorpay", content=body)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "RAZORPAY_SIGNATURE_INVALID"


@pytest.mark.anyio
async def test_tampered_body_with_original_signature_is_rejected(
    client, service, db_session, provider_stub, make_order, make_processor
):
    order = make_order()
    processor = make_processor(ProcessorType.RAZORPAY)
    provider_stub.add("POST", ORDERS_URL, {"id": "order_tamper", "status": "created"})
    payment = service.create_payment(order.id, processor.id).payment
    _, headers = signed(captured_event("order_tamper", amount=100))
    tampered = json.dumps(captured_event("order_tamper", amount=45000)).encode()

    response = await client.post("/webhooks/razorpay", content=tampered, headers=headers)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "RAZORPAY_SIGNATURE_INVALID"
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.PENDING
    assert db_session.query(ProcessedWebhookEvent).count() == 0


def test_poll_picks_captured_attempt(service, provider_stub, make_order, make_processor):
    order = make_order()
    processor = make_processor(ProcessorType.RAZORPAY)
    provider_stub.add("POST", ORDERS_URL, {"id": "order_poll", "status": "created"})
    payment = service.create_payment(order.id, processor.id).payment
    provider_stub.add(
        "GET",
        "https://razorpay.test/v1/orders/order_poll/payments",
        {
            "items": [
                {"id": "pay_failed_1", "status": "failed", "amount": 45000},
                {"id": "pay_ok_2", "status": "captured", "amount": 45000, "method": "upi"},
            ]
        },
    )

    synced = service.sync_payment_status(payment.id)

    assert synced.status == PaymentStatus.SUCCEEDED
    assert synced.processor_charge_id == "pay_ok_2"
    assert synced.payment_method == "upi"
