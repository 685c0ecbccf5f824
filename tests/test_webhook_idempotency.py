"""Webhook deliveries are applied at most once per (provider, event id)."""
import json
from datetime import timedelta

import pytest

from conftest import paytm_callback
from paygate.models import AuditLog, PaymentStatus, ProcessedWebhookEvent, ProcessorType
from paygate.services.webhook_events import find_processed_event, purge_expired_events
from paygate.utils.time import utcnow


@pytest.fixture
def paytm_payment(service, make_order, make_processor):
    order = make_order()
    processor = make_processor(ProcessorType.PAYTM)
    return service.create_payment(order.id, processor.id).payment


@pytest.mark.anyio
async def test_duplicate_delivery_replays_stored_result(client, db_session, paytm_payment, metric_calls):
    callback = paytm_callback(paytm_payment.processor_payment_id)

    first = await client.post("/webhooks/paytm", json=callback)
    second = await client.post("/webhooks/paytm", json=callback)

    assert first.status_code == second.status_code == 200
    assert first.json()["duplicate"] is False
    assert second.json() == {**first.json(), "duplicate": True}
    assert db_session.query(ProcessedWebhookEvent).count() == 1
    changes = db_session.query(AuditLog).filter_by(entity_id=paytm_payment.id, action="PAYMENT_STATUS_CHANGED")
    assert changes.count() == 1
    assert [name for name, _, _ in metric_calls] == ["paytm_payment_completed"]


@pytest.mark.anyio
async def test_unmatched_payment_is_acknowledged_but_not_recorded(client, db_session, make_processor):
    make_processor(ProcessorType.PAYTM)

    response = await client.post("/webhooks/paytm", json=paytm_callback("MM_doesnotexist"))

    assert response.status_code == 200
    body = response.json()
    assert body["processed"] is False
    assert body["event_type"] == "payment.unknown"
    assert body["payment_id"] is None
    assert db_session.query(ProcessedWebhookEvent).count() == 0


@pytest.mark.anyio
async def test_unknown_provider_status_is_ignored(client, db_session, paytm_payment):
    callback = paytm_callback(paytm_payment.processor_payment_id, status="PENDING")

    response = await client.post("/webhooks/paytm", json=callback)

    assert response.status_code == 200
    assert response.json()["processed"] is False
    db_session.refresh(paytm_payment)
    assert paytm_payment.status == PaymentStatus.PENDING


@pytest.mark.anyio
async def test_unsupported_processor_path(client):
    response = await client.post("/webhooks/paypal", content=b"{}")

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "UNSUPPORTED_PROCESSOR"


@pytest.mark.anyio
async def test_no_processor_configured(client):
    response = await client.post("/webhooks/paytm", json={"ORDERID": "MM_1"})

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "PROCESSOR_NOT_FOUND"


def test_expired_record_no_longer_deduplicates(service, db_session, paytm_payment):
    body = json.dumps(paytm_callback(paytm_payment.processor_payment_id)).encode()
    service.handle_webhook(ProcessorType.PAYTM, body, None)
    event_id = "20261019111212800110168123456789:TXN_SUCCESS"

    stored = db_session.query(ProcessedWebhookEvent).one()
    stored.expires_at = utcnow() - timedelta(minutes=1)
    db_session.commit()

    replay = service.handle_webhook(ProcessorType.PAYTM, body, None)

    # Past retention the delivery is evaluated again; the state machine makes it a no-op.
    assert replay.duplicate is False
    assert replay.processed is True
    rows = db_session.query(ProcessedWebhookEvent).all()
    assert len(rows) == 1
    assert rows[0].event_id == event_id
    assert rows[0].expires_at.replace(tzinfo=None) > utcnow().replace(tzinfo=None)


def test_purge_removes_only_expired_records(service, db_session, paytm_payment):
    service.handle_webhook(
        ProcessorType.PAYTM, json.dumps(paytm_callback(paytm_payment.processor_payment_id)).encode(), None
    )
    assert purge_expired_events(db_session) == 0

    removed = purge_expired_events(db_session, now=utcnow() + timedelta(days=30))

    assert removed == 1
    assert find_processed_event(db_session, "paytm", "anything") is None
    assert db_session.query(ProcessedWebhookEvent).count() == 0
