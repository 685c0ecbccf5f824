import pytest


@pytest.mark.anyio("asyncio")
async def test_healthcheck(monkeypatch, client):
    from paygate.routers import health as health_module

    monkeypatch.setattr(health_module, "_db_status", lambda: "ok")

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "ok"
    assert payload["db_ok"] is True
    assert payload["env"] == "test"
    assert payload["providers"] == ["paytm", "phonepe", "razorpay", "stripe"]
    assert isinstance(payload["metrics_enabled"], bool)
    assert isinstance(payload["prometheus_enabled"], bool)


@pytest.mark.anyio("asyncio")
async def test_health_degrades_on_db_failure(monkeypatch, client):
    class BrokenEngine:
        def connect(self):  # pragma: no cover - simple stub
            raise RuntimeError("DB down")

    monkeypatch.setattr("paygate.routers.health.get_engine", lambda: BrokenEngine())

    response = await client.get("/health")
    assert response.status_code == 200
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["db_status"] == "error"
    assert payload["db_ok"] is False


@pytest.mark.anyio("asyncio")
async def test_metrics_endpoint_exposes_payment_counters(client):
    from paygate.services.metrics import log_metric

    log_metric("paytm_payment_created", 45000, {"processor": "paytm", "payment_id": "p-1"})

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert 'paygate_payment_events_total{event="paytm_payment_created",processor="paytm"}' in response.text
