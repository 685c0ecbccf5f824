import pytest

from paygate.models import AuditLog, OrderPaymentStatus, Payment, PaymentStatus, ProcessorStatus, ProcessorType
from paygate.utils.errors import GENERIC_PROVIDER_MESSAGE

RAZORPAY_ORDERS_URL = "https://razorpay.test/v1/orders"


@pytest.mark.anyio
async def test_create_payment_returns_intent(client, make_order, make_processor):
    order = make_order()
    processor = make_processor(ProcessorType.PAYTM)

    response = await client.post(
        "/payments",
        json={"order_id": order.id, "processor_id": processor.id, "description": "Masala chai x3"},
    )

    assert response.status_code == 201
    body = response.json()
    assert body["status"] == "pending"
    assert body["payment_url"] == "https://paytm.test/theia/processTransaction"
    assert body["payment"]["id"] == body["payment_id"]
    assert body["payment"]["amount_cents"] == 45000
    assert body["payment"]["processor_type"] == "paytm"
    assert body["additional_data"]["paytm_params"]["ORDER_ID"] == body["payment"]["processor_payment_id"]


@pytest.mark.anyio
async def test_second_checkout_conflicts_while_pending(client, make_order, make_processor):
    order = make_order()
    processor = make_processor(ProcessorType.PAYTM)
    payload = {"order_id": order.id, "processor_id": processor.id}

    first = await client.post("/payments", json=payload)
    second = await client.post("/payments", json=payload)

    assert first.status_code == 201
    assert second.status_code == 409
    error = second.json()["error"]
    assert error["code"] == "PAYMENT_IN_PROGRESS"
    assert error["details"] == {"payment_id": first.json()["payment_id"]}


@pytest.mark.anyio
async def test_retry_supersedes_unconfirmed_attempt(client, db_session, provider_stub, make_order, make_processor):
    order = make_order()
    processor = make_processor(ProcessorType.PAYTM)
    payload = {"order_id": order.id, "processor_id": processor.id}
    first = (await client.post("/payments", json=payload)).json()
    provider_stub.add("POST", "https://paytm.test/order/status", {"STATUS": "PENDING", "RESPCODE": "402"})

    response = await client.post("/payments", json={**payload, "retry": True})

    assert response.status_code == 201
    retry = response.json()
    assert retry["payment_id"] != first["payment_id"]
    assert retry["payment"]["processor_payment_id"] == f"{first['payment']['processor_payment_id']}_2"
    old = db_session.get(Payment, first["payment_id"])
    db_session.refresh(old)
    assert old.status == PaymentStatus.FAILED
    assert old.failure_reason == "superseded by retry"
    db_session.refresh(order)
    assert order.payment_status == OrderPaymentStatus.UNPAID


@pytest.mark.anyio
async def test_retry_settles_attempt_that_actually_succeeded(client, db_session, provider_stub, make_order, make_processor):
    order = make_order()
    processor = make_processor(ProcessorType.PAYTM)
    payload = {"order_id": order.id, "processor_id": processor.id}
    first = (await client.post("/payments", json=payload)).json()
    provider_stub.add(
        "POST",
        "https://paytm.test/order/status",
        {"STATUS": "TXN_SUCCESS", "TXNID": "2026101911121280011", "TXNAMOUNT": "450.00", "PAYMENTMODE": "UPI"},
    )

    response = await client.post("/payments", json={**payload, "retry": True})

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "ORDER_ALREADY_PAID"
    old = db_session.get(Payment, first["payment_id"])
    db_session.refresh(old)
    assert old.status == PaymentStatus.SUCCEEDED


@pytest.mark.anyio
async def test_paid_order_is_rejected(client, make_order, make_processor):
    order = make_order(payment_status=OrderPaymentStatus.PAID)
    processor = make_processor(ProcessorType.PAYTM)

    response = await client.post("/payments", json={"order_id": order.id, "processor_id": processor.id})

    assert response.status_code == 409
    assert response.json()["error"]["code"] == "ORDER_ALREADY_PAID"


@pytest.mark.anyio
async def test_processor_of_another_business_is_rejected(client, make_order, make_processor):
    order = make_order(business_id="biz-chai-point")
    processor = make_processor(ProcessorType.PAYTM, business_id="biz-dosa-corner")

    response = await client.post("/payments", json={"order_id": order.id, "processor_id": processor.id})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "PROCESSOR_MISMATCH"


@pytest.mark.anyio
async def test_inactive_processor_is_rejected(client, make_order, make_processor):
    order = make_order()
    processor = make_processor(ProcessorType.PAYTM, status=ProcessorStatus.INACTIVE, is_active=False)

    response = await client.post("/payments", json={"order_id": order.id, "processor_id": processor.id})

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "PROCESSOR_INACTIVE"


@pytest.mark.anyio
async def test_unknown_order_returns_error_envelope(client, make_processor):
    processor = make_processor(ProcessorType.PAYTM)

    response = await client.post("/payments", json={"order_id": "missing-order", "processor_id": processor.id})

    assert response.status_code == 404
    assert response.json() == {"error": {"code": "ORDER_NOT_FOUND", "message": "Order not found"}}


@pytest.mark.anyio
async def test_provider_failure_hides_provider_message(client, db_session, provider_stub, make_order, make_processor):
    order = make_order()
    processor = make_processor(ProcessorType.RAZORPAY)
    provider_stub.add(
        "POST",
        RAZORPAY_ORDERS_URL,
        (400, {"error": {"code": "BAD_REQUEST_ERROR", "description": "Authentication key was missing"}}),
    )

    response = await client.post("/payments", json={"order_id": order.id, "processor_id": processor.id})

    assert response.status_code == 500
    assert response.json() == {"error": {"code": "RAZORPAY_PAYMENT_FAILED", "message": GENERIC_PROVIDER_MESSAGE}}
    payment = db_session.query(Payment).one()
    assert payment.failure_reason == "Authentication key was missing"
    audit = db_session.query(AuditLog).filter_by(entity_id=payment.id, action="PAYMENT_STATUS_CHANGED").one()
    assert audit.data_json["provider_response"]["status_code"] == 400


@pytest.mark.anyio
async def test_read_and_sync_payment(client, provider_stub, make_order, make_processor):
    order = make_order()
    processor = make_processor(ProcessorType.PAYTM)
    created = (await client.post("/payments", json={"order_id": order.id, "processor_id": processor.id})).json()
    payment_id = created["payment_id"]

    read = await client.get(f"/payments/{payment_id}")
    assert read.status_code == 200
    assert read.json()["status"] == "pending"

    provider_stub.add(
        "POST",
        "https://paytm.test/order/status",
        {"STATUS": "TXN_FAILURE", "RESPCODE": "227", "RESPMSG": "Insufficient funds", "TXNAMOUNT": "450.00"},
    )
    synced = await client.post(f"/payments/{payment_id}/sync")

    assert synced.status_code == 200
    assert synced.json()["status"] == "failed"
    assert synced.json()["failure_reason"] == "Insufficient funds"


@pytest.mark.anyio
async def test_unknown_payment_is_not_found(client):
    response = await client.get("/payments/does-not-exist")

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "PAYMENT_NOT_FOUND"


@pytest.mark.anyio
async def test_refund_endpoint_honours_idempotency_header(client, provider_stub, make_order, make_processor):
    order = make_order(total_cents=10000)
    processor = make_processor(ProcessorType.RAZORPAY)
    provider_stub.add("POST", RAZORPAY_ORDERS_URL, {"id": "order_api_refund", "status": "created"})
    payment_id = (await client.post("/payments", json={"order_id": order.id, "processor_id": processor.id})).json()[
        "payment_id"
    ]
    provider_stub.add(
        "GET",
        "https://razorpay.test/v1/orders/order_api_refund/payments",
        {"items": [{"id": "pay_api_1", "status": "captured", "amount": 10000, "method": "netbanking"}]},
    )
    assert (await client.post(f"/payments/{payment_id}/sync")).json()["status"] == "succeeded"
    provider_stub.add(
        "POST",
        "https://razorpay.test/v1/payments/pay_api_1/refund",
        {"id": "rfnd_api_1", "amount": 2000, "status": "processed"},
    )
    headers = {"Idempotency-Key": "chai-refund-0001"}

    first = await client.post(f"/payments/{payment_id}/refunds", json={"amount_cents": 2000}, headers=headers)
    second = await client.post(f"/payments/{payment_id}/refunds", json={"amount_cents": 2000}, headers=headers)

    assert first.status_code == second.status_code == 201
    assert first.json()["replayed"] is False
    assert second.json()["replayed"] is True
    assert second.json()["refund"]["id"] == first.json()["refund"]["id"]
    assert second.json()["payment"]["refunded_amount_cents"] == 2000
    assert len(provider_stub.calls("POST", "https://razorpay.test/v1/payments/pay_api_1/refund")) == 1


@pytest.mark.anyio
async def test_refund_amount_must_be_positive(client):
    response = await client.post("/payments/any/refunds", json={"amount_cents": 0})

    assert response.status_code == 422
