"""Test configuration."""
import json
import os
from collections.abc import AsyncIterator, Callable, Iterator
from decimal import Decimal
from typing import Any

import httpx
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

# --- Default env for the whole session
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PAYGATE_ENV", "test")
os.environ.setdefault("BACKEND_URL", "https://api.shop.test")
os.environ.setdefault("FRONTEND_URL", "https://shop.test")
os.environ.setdefault("RAZORPAY_API_URL", "https://razorpay.test")
os.environ.setdefault("PHONEPE_API_URL", "https://phonepe.test")
os.environ.setdefault("PAYTM_API_URL", "https://paytm.test")
os.environ.setdefault("METRICS_ENABLED", "true")

from paygate.config import Settings, get_settings  # noqa: E402
from paygate.db import get_db  # noqa: E402
from paygate.dependencies import get_provider_transport  # noqa: E402
from paygate.main import app  # noqa: E402
from paygate.models import (  # noqa: E402
    Base,
    Order,
    OrderPaymentStatus,
    PaymentProcessor,
    ProcessorStatus,
    ProcessorType,
)
from paygate.services.payments import PaymentService  # noqa: E402
from paygate.services.signatures import SortedParamsSigner  # noqa: E402

CREDENTIALS: dict[ProcessorType, dict[str, str]] = {
    ProcessorType.RAZORPAY: {
        "key_id": "rzp_test_1DP5mmOlF5G5ag",
        "key_secret": "thisisrazorpaysecret",
        "webhook_secret": "rzp_webhook_secret",
    },
    ProcessorType.PHONEPE: {
        "merchant_id": "PGTESTPAYUAT",
        "salt_key": "099eb0cd-02cf-4e2a-8aca-3e6c6aff0399",
        "salt_index": "1",
    },
    ProcessorType.PAYTM: {
        "merchant_id": "PAYTMMID0001",
        "merchant_key": "kbzk1DSbJiV_O3p5",
        "website": "WEBSTAGING",
    },
    ProcessorType.STRIPE: {
        "secret_key": "sk_test_51Hq0exampleKey",
        "publishable_key": "pk_test_51Hq0exampleKey",
        "webhook_secret": "whsec_test_secret",
    },
}


class ProviderStub:
    """Scripted provider endpoints served through ``httpx.MockTransport``."""

    def __init__(self) -> None:
        self.routes: dict[tuple[str, str, str], list[Any]] = {}
        self.requests: list[httpx.Request] = []

    def add(self, method: str, url: str, *responses: Any) -> None:
        """Queue responses for ``method url``; the last one repeats.

        A response is a JSON body, a ``(status_code, body)`` pair or an
        ``httpx`` transport exception class raised as a network failure.
        """

        parsed = httpx.URL(url)
        self.routes[(method.upper(), parsed.host, parsed.path)] = list(responses)

    def calls(self, method: str, url: str) -> list[httpx.Request]:
        parsed = httpx.URL(url)
        return [
            request
            for request in self.requests
            if request.method == method.upper()
            and request.url.host == parsed.host
            and request.url.path == parsed.path
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.routes.get((request.method, request.url.host, request.url.path))
        if not queue:
            return httpx.Response(404, json={"error": {"description": f"no stub for {request.url}"}})
        response = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(response, type) and issubclass(response, Exception):
            raise response("stubbed network failure", request=request)
        if isinstance(response, tuple):
            status_code, body = response
        else:
            status_code, body = 200, response
        return httpx.Response(status_code, json=body)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def request_json(request: httpx.Request) -> dict[str, Any]:
    return json.loads(request.content)


def paytm_callback(order_ref: str, status: str = "TXN_SUCCESS", **overrides: str) -> dict[str, str]:
    """A Paytm callback for ``order_ref`` carrying a valid ``CHECKSUMHASH``."""

    params = {
        "MID": CREDENTIALS[ProcessorType.PAYTM]["merchant_id"],
        "ORDERID": order_ref,
        "TXNID": "20261019111212800110168123456789",
        "TXNAMOUNT": "450.00",
        "STATUS": status,
        "RESPCODE": "01" if status == "TXN_SUCCESS" else "227",
        "RESPMSG": "Txn Success" if status == "TXN_SUCCESS" else "Bank declined the transaction",
        "PAYMENTMODE": "UPI",
        "GATEWAYNAME": "PPBLC",
        "BANKNAME": "",
    }
    params.update(overrides)
    params["CHECKSUMHASH"] = SortedParamsSigner().sign(params, CREDENTIALS[ProcessorType.PAYTM]["merchant_key"])
    return params


@pytest.fixture
def settings() -> Settings:
    return get_settings()


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine) -> Iterator[Session]:
    TestingSessionLocal = sessionmaker(
        bind=engine, autoflush=False, autocommit=False, future=True, expire_on_commit=False
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def provider_stub() -> ProviderStub:
    return ProviderStub()


@pytest.fixture(autouse=True)
def override_dependencies(db_session: Session, provider_stub: ProviderStub) -> Iterator[None]:
    def _get_db() -> Iterator[Session]:
        yield db_session

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_provider_transport] = lambda: provider_stub.transport
    yield
    app.dependency_overrides.pop(get_db, None)
    app.dependency_overrides.pop(get_provider_transport, None)


@pytest.fixture
def service(db_session: Session, settings: Settings, provider_stub: ProviderStub) -> PaymentService:
    return PaymentService(db_session, settings, transport=provider_stub.transport)


@pytest.fixture
async def client() -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def metric_calls(monkeypatch) -> list[tuple[str, int, dict]]:
    """Capture metrics emitted by the payment service."""

    calls: list[tuple[str, int, dict]] = []

    def _record(event: str, value: int, tags: dict | None = None) -> None:
        calls.append((event, value, dict(tags or {})))

    monkeypatch.setattr("paygate.services.payments.log_metric", _record)
    return calls


@pytest.fixture
def make_order(db_session: Session) -> Callable[..., Order]:
    def _factory(
        *,
        business_id: str = "biz-chai-point",
        total_cents: int = 45000,
        currency: str = "INR",
        payment_status: OrderPaymentStatus = OrderPaymentStatus.UNPAID,
        **fields: Any,
    ) -> Order:
        fields.setdefault("business_name", "Chai Point")
        fields.setdefault("customer_name", "Asha Rao")
        fields.setdefault("customer_phone", "+91 98765 43210")
        fields.setdefault("customer_email", "asha@example.com")
        order = Order(
            business_id=business_id,
            total_cents=total_cents,
            currency=currency,
            payment_status=payment_status,
            **fields,
        )
        db_session.add(order)
        db_session.commit()
        return order

    return _factory


@pytest.fixture
def make_processor(db_session: Session) -> Callable[..., PaymentProcessor]:
    def _factory(
        processor_type: ProcessorType = ProcessorType.PAYTM,
        *,
        business_id: str = "biz-chai-point",
        credentials: dict[str, str] | None = None,
        fee_percentage: Decimal | None = None,
        fixed_fee_cents: int = 0,
        status: ProcessorStatus = ProcessorStatus.ACTIVE,
        is_active: bool = True,
        priority: int = 1,
    ) -> PaymentProcessor:
        processor = PaymentProcessor(
            business_id=business_id,
            processor_type=processor_type,
            credentials=dict(CREDENTIALS[processor_type] if credentials is None else credentials),
            fee_percentage=fee_percentage,
            fixed_fee_cents=fixed_fee_cents,
            status=status,
            is_active=is_active,
            priority=priority,
        )
        db_session.add(processor)
        db_session.commit()
        return processor

    return _factory
