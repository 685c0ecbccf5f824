from contextlib import contextmanager
from datetime import timedelta

import httpx
import pytest

from paygate.models import PaymentStatus, ProcessorType
from paygate.utils.time import utcnow

STATUS_URL = "https://paytm.test/order/status"


@pytest.fixture
def maintenance(monkeypatch, db_session, provider_stub):
    import scripts.maintenance as maintenance_module
    from paygate.services.payments import PaymentService

    @contextmanager
    def _scope():
        yield db_session

    monkeypatch.setattr(maintenance_module, "session_scope", _scope)
    monkeypatch.setattr(maintenance_module, "setup_logging", lambda level: None)
    monkeypatch.setattr(
        maintenance_module,
        "PaymentService",
        lambda db: PaymentService(db, transport=provider_stub.transport),
    )
    return maintenance_module


def _age(db_session, payment, minutes: int) -> None:
    payment.created_at = utcnow() - timedelta(minutes=minutes)
    db_session.commit()


def test_reconcile_polls_only_stale_pending(service, db_session, provider_stub, make_order, make_processor):
    processor = make_processor(ProcessorType.PAYTM)
    stale = service.create_payment(make_order().id, processor.id).payment
    fresh = service.create_payment(make_order().id, processor.id).payment
    _age(db_session, stale, 45)
    provider_stub.add(
        "POST",
        STATUS_URL,
        {"STATUS": "TXN_SUCCESS", "TXNID": "2026101911121280011", "TXNAMOUNT": "450.00", "PAYMENTMODE": "NB"},
    )

    stats = service.reconcile_stale_pending(older_than_minutes=30)

    assert stats == {"checked": 1, "updated": 1, "errors": 0}
    assert len(provider_stub.calls("POST", STATUS_URL)) == 1
    db_session.refresh(stale)
    db_session.refresh(fresh)
    assert stale.status == PaymentStatus.SUCCEEDED
    assert stale.payment_method == "nb"
    assert fresh.status == PaymentStatus.PENDING


def test_reconcile_counts_provider_errors(service, db_session, provider_stub, make_order, make_processor):
    processor = make_processor(ProcessorType.PAYTM)
    payment = service.create_payment(make_order().id, processor.id).payment
    _age(db_session, payment, 90)
    provider_stub.add("POST", STATUS_URL, httpx.ConnectTimeout)

    stats = service.reconcile_stale_pending(older_than_minutes=30)

    assert stats == {"checked": 1, "updated": 0, "errors": 1}
    db_session.refresh(payment)
    assert payment.status == PaymentStatus.PENDING


def test_cli_reconcile_pending(maintenance, service, db_session, provider_stub, make_order, make_processor, capsys):
    processor = make_processor(ProcessorType.PAYTM)
    payment = service.create_payment(make_order().id, processor.id).payment
    _age(db_session, payment, 120)
    provider_stub.add("POST", STATUS_URL, {"STATUS": "PENDING"})

    exit_code = maintenance.main(["reconcile-pending", "--older-than", "60"])

    assert exit_code == 0
    assert capsys.readouterr().out.strip() == "checked=1 updated=0 errors=0"


def test_cli_purge_webhook_events(maintenance, capsys):
    exit_code = maintenance.main(["purge-webhook-events"])

    assert exit_code == 0
    assert capsys.readouterr().out.strip() == "purged=0"
