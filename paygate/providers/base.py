"""Common contract implemented by every payment provider adapter.

Adapters translate between our records and one provider's wire protocol.
They never open database sessions or write rows: the orchestrator in
:mod:`paygate.services.payments` owns persistence and hands adapters the
order, processor and payment objects they need.
"""
from __future__ import annotations

import enum
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, ClassVar, Mapping

import httpx

from paygate.config import Settings, get_settings
from paygate.models import Order, Payment, PaymentProcessor, ProcessorType
from paygate.services import fees
from paygate.services.credentials import CredentialsVerificationResult, structural_error
from paygate.utils.errors import ProviderError, ProviderTimeoutError, SignatureError, ValidationError
from paygate.utils.masking import compact_identifier

logger = logging.getLogger(__name__)


class WebhookEventType(str, enum.Enum):
    """Normalized webhook vocabulary shared by all providers."""

    PAYMENT_SUCCEEDED = "payment.succeeded"
    PAYMENT_FAILED = "payment.failed"
    REFUND_COMPLETED = "refund.completed"
    PAYMENT_UNKNOWN = "payment.unknown"


class CanonicalStatus(str, enum.Enum):
    """Provider status mapped onto our four polling outcomes."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"


@dataclass
class CreatePaymentOptions:
    description: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    redirect_url: str | None = None
    callback_url: str | None = None
    # 1-based attempt number for this order; keeps merchant references unique across retries.
    attempt: int = 1


@dataclass
class ProviderIntent:
    """What the provider handed back for a new payment intent."""

    processor_payment_id: str
    client_secret: str | None = None
    payment_url: str | None = None
    additional_data: dict[str, Any] = field(default_factory=dict)
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookEvent:
    """A verified, provider-neutral webhook event."""

    event_type: WebhookEventType
    event_id: str
    processor_payment_id: str | None
    provider_event: str = ""
    processor_charge_id: str | None = None
    payment_method: str | None = None
    payment_method_details: dict[str, Any] | None = None
    failure_reason: str | None = None
    amount_cents: int | None = None
    refund_id: str | None = None
    refund_amount_cents: int | None = None
    # Some providers report the running refunded total rather than a delta.
    refund_total_cents: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderRefund:
    refund_id: str
    amount_cents: int
    status: str  # "succeeded" | "pending" | "failed"
    raw: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProviderStatus:
    status: CanonicalStatus
    amount_cents: int | None = None
    processor_charge_id: str | None = None
    payment_method: str | None = None
    failure_reason: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class PaymentProcessorPort(ABC):
    """Base adapter with the shared HTTP, fee and credential plumbing."""

    processor_type: ClassVar[ProcessorType]
    default_fee_percentage: ClassVar[Decimal]
    # Header carrying the webhook signature; ``None`` when it travels in the body.
    signature_header: ClassVar[str | None] = None
    # Required credential keys mapped to their minimum length.
    required_credentials: ClassVar[Mapping[str, int]] = {}
    # Whether the intent id comes from the provider (unknown until it answers).
    provider_assigns_payment_id: ClassVar[bool] = True

    def __init__(self, settings: Settings | None = None, *, transport: httpx.BaseTransport | None = None) -> None:
        self.settings = settings or get_settings()
        self._transport = transport

    # --- contract ---------------------------------------------------------

    @abstractmethod
    def create_intent(
        self, order: Order, processor: PaymentProcessor, options: CreatePaymentOptions
    ) -> ProviderIntent:
        """Create the provider-side intent for ``order``."""

    @abstractmethod
    def parse_webhook(
        self, raw_body: bytes, signature: str | None, processor: PaymentProcessor
    ) -> WebhookEvent:
        """Verify authenticity of ``raw_body`` and normalize it."""

    @abstractmethod
    def create_refund(
        self,
        payment: Payment,
        amount_cents: int,
        processor: PaymentProcessor,
        *,
        reference: str,
        reason: str | None = None,
    ) -> ProviderRefund:
        """Refund ``amount_cents`` of ``payment`` using ``reference`` as idempotency key."""

    @abstractmethod
    def get_payment_status(self, processor_payment_id: str, processor: PaymentProcessor) -> ProviderStatus:
        """Poll the provider for the current state of an intent."""

    @abstractmethod
    def verify_credentials(self, credentials: Mapping[str, Any]) -> CredentialsVerificationResult:
        """Check credentials without side effects on the merchant account."""

    # --- shared helpers ---------------------------------------------------

    @property
    def code_prefix(self) -> str:
        return self.processor_type.value.upper()

    def calculate_fee(self, amount_cents: int, processor: PaymentProcessor) -> int:
        rate = processor.fee_percentage
        if rate is None:
            rate = self.default_fee_percentage
        return fees.calculate_fee(amount_cents, rate, processor.fixed_fee_cents or 0)

    def merchant_reference(self, order: Order, attempt: int = 1) -> str:
        """Merchant-side transaction id: ``MM_`` plus the separator-free order id."""

        base = f"MM_{compact_identifier(order.id, 20)}"
        return base if attempt <= 1 else f"{base}_{attempt}"

    def webhook_url(self, processor: PaymentProcessor) -> str:
        return f"{self.settings.BACKEND_URL}/webhooks/{self.processor_type.value}/{processor.id}"

    def credentials(self, processor: PaymentProcessor) -> dict[str, Any]:
        """Return the processor credentials or raise before any network call."""

        creds = dict(processor.credentials or {})
        error = structural_error(creds, {key: 0 for key in self.required_credentials})
        if error:
            raise ValidationError(f"{self.processor_type.value}: {error}", code="MISSING_CREDENTIALS")
        return creds

    def signature_error(self, message: str = "Invalid webhook signature") -> SignatureError:
        logger.warning(
            "Webhook signature verification failed",
            extra={"processor_type": self.processor_type.value},
        )
        return SignatureError(message, code=f"{self.code_prefix}_SIGNATURE_INVALID")

    def invalid_payload(self, message: str) -> ValidationError:
        return ValidationError(message, code=f"{self.code_prefix}_WEBHOOK_INVALID")

    def _client(self, base_url: str) -> httpx.Client:
        return httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(self.settings.PROVIDER_TIMEOUT_SECONDS),
            transport=self._transport,
        )

    def _request(
        self,
        operation: str,
        method: str,
        base_url: str,
        path: str,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Call the provider and return its JSON object body.

        ``operation`` (``PAYMENT``, ``REFUND``, ``STATUS``, ``VERIFY``) names
        the stable error code, e.g. ``RAZORPAY_PAYMENT_FAILED``.
        """

        code = f"{self.code_prefix}_{operation}_FAILED"
        try:
            with self._client(base_url) as client:
                response = client.request(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning(
                "Provider call timed out",
                extra={"processor_type": self.processor_type.value, "operation": operation},
            )
            raise ProviderTimeoutError(
                f"{self.processor_type.value} {operation.lower()} call timed out",
                code=f"{self.code_prefix}_TIMEOUT",
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(
                f"{self.processor_type.value} {operation.lower()} call failed: {exc}",
                code=code,
            ) from exc

        try:
            body = response.json()
        except ValueError:
            body = None

        if response.is_error or not isinstance(body, dict):
            logger.warning(
                "Provider call rejected",
                extra={
                    "processor_type": self.processor_type.value,
                    "operation": operation,
                    "status_code": response.status_code,
                },
            )
            raise ProviderError(
                self._error_message(body) or f"Unexpected {self.processor_type.value} response",
                code=code,
                response={"status_code": response.status_code, "body": body if body is not None else response.text[:500]},
            )
        return body

    def _error_message(self, body: Any) -> str | None:
        if isinstance(body, dict):
            error = body.get("error")
            if isinstance(error, dict):
                return error.get("description") or error.get("message")
            return body.get("message") or body.get("RESPMSG")
        return None


__all__ = [
    "WebhookEventType",
    "CanonicalStatus",
    "CreatePaymentOptions",
    "ProviderIntent",
    "WebhookEvent",
    "ProviderRefund",
    "ProviderStatus",
    "PaymentProcessorPort",
]
