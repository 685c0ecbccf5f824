"""Stripe adapter built on the Stripe Python SDK.

API calls go through the SDK with a per-call ``api_key`` (one Stripe account
per business). Webhook signatures and their timestamp tolerance are checked by
``stripe.Webhook.construct_event``.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping

import stripe

from paygate.models import Order, Payment, PaymentProcessor, ProcessorType
from paygate.providers.base import (
    CanonicalStatus,
    CreatePaymentOptions,
    PaymentProcessorPort,
    ProviderIntent,
    ProviderRefund,
    ProviderStatus,
    WebhookEvent,
    WebhookEventType,
)
from paygate.services.credentials import CredentialsVerificationResult
from paygate.utils.errors import ProviderError, ProviderTimeoutError, ValidationError

logger = logging.getLogger(__name__)

STRIPE_REFUND_REASONS = {"duplicate", "fraudulent", "requested_by_customer"}
_REFUND_STATUS = {
    "succeeded": "succeeded",
    "pending": "pending",
    "requires_action": "pending",
    "failed": "failed",
    "canceled": "failed",
}

_configured_timeout: float | None = None


def _configure_http_client(timeout: float) -> None:
    """Bound every SDK request by ``timeout`` seconds."""

    global _configured_timeout
    if _configured_timeout == timeout:
        return
    stripe.default_http_client = stripe.RequestsClient(timeout=timeout)
    _configured_timeout = timeout


def _get(obj: Any, key: str, default: Any = None) -> Any:
    if obj is None:
        return default
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _id_of(value: Any) -> str | None:
    """Stripe fields may be an id string or an expanded object."""

    if value is None or isinstance(value, str):
        return value
    return _get(value, "id")


class StripeAdapter(PaymentProcessorPort):
    processor_type = ProcessorType.STRIPE
    default_fee_percentage = Decimal("2.90")
    signature_header = "Stripe-Signature"
    required_credentials = {"secret_key": 10}
    provider_assigns_payment_id = True

    def __init__(self, settings=None, *, transport=None) -> None:
        super().__init__(settings, transport=transport)
        _configure_http_client(self.settings.PROVIDER_TIMEOUT_SECONDS)

    def _wrap(self, operation: str, exc: Exception) -> ProviderError:
        if isinstance(exc, stripe.APIConnectionError):
            logger.warning("Stripe call timed out or failed to connect", extra={"operation": operation})
            return ProviderTimeoutError(f"stripe {operation.lower()} call timed out", code="STRIPE_TIMEOUT")
        return ProviderError(
            str(getattr(exc, "user_message", None) or exc) or "Stripe request failed",
            code=f"STRIPE_{operation}_FAILED",
            response={"http_status": getattr(exc, "http_status", None), "code": getattr(exc, "code", None)},
        )

    def create_intent(
        self, order: Order, processor: PaymentProcessor, options: CreatePaymentOptions
    ) -> ProviderIntent:
        creds = self.credentials(processor)
        metadata = {"order_id": order.id, "business_id": order.business_id}
        metadata.update({str(k): str(v) for k, v in options.metadata.items()})
        try:
            intent = stripe.PaymentIntent.create(
                api_key=creds["secret_key"],
                amount=order.total_cents,
                currency=order.currency.lower(),
                description=options.description or f"Order {order.id}",
                metadata=metadata,
                automatic_payment_methods={"enabled": True},
                idempotency_key=f"pi:{order.id}:{options.attempt}",
            )
        except stripe.StripeError as exc:
            raise self._wrap("PAYMENT", exc) from exc

        intent_id = _get(intent, "id")
        if not intent_id:
            raise ProviderError("Stripe returned a PaymentIntent without id", code="STRIPE_PAYMENT_FAILED")
        return ProviderIntent(
            processor_payment_id=intent_id,
            client_secret=_get(intent, "client_secret"),
            additional_data={"publishable_key": creds.get("publishable_key")},
            metadata={"stripe_payment_intent_id": intent_id, "stripe_status": _get(intent, "status")},
        )

    def parse_webhook(self, raw_body: bytes, signature: str | None, processor: PaymentProcessor) -> WebhookEvent:
        secret = (processor.credentials or {}).get("webhook_secret")
        if not secret:
            raise ValidationError("Stripe webhook_secret is not configured", code="MISSING_CREDENTIALS")
        if not signature:
            raise self.signature_error("Missing Stripe-Signature header")

        try:
            event = stripe.Webhook.construct_event(
                raw_body,
                signature,
                secret,
                tolerance=self.settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
            )
        except stripe.SignatureVerificationError as exc:
            raise self.signature_error("Invalid Stripe signature") from exc
        except ValueError as exc:
            raise self.invalid_payload("Stripe webhook body is not valid JSON") from exc

        event_id = event.get("id")
        if not event_id:
            raise self.invalid_payload("Stripe webhook without event id")

        name = str(event.get("type") or "")
        obj = (event.get("data") or {}).get("object") or {}

        if name == "payment_intent.succeeded":
            method_types = obj.get("payment_method_types") or []
            return WebhookEvent(
                event_type=WebhookEventType.PAYMENT_SUCCEEDED,
                event_id=event_id,
                processor_payment_id=obj.get("id"),
                provider_event=name,
                processor_charge_id=_id_of(obj.get("latest_charge")),
                payment_method=method_types[0] if method_types else None,
                amount_cents=obj.get("amount_received"),
                metadata={"stripe_event_id": event_id},
            )
        if name in {"payment_intent.payment_failed", "payment_intent.canceled"}:
            if name == "payment_intent.canceled":
                reason = "canceled" + (f": {obj['cancellation_reason']}" if obj.get("cancellation_reason") else "")
            else:
                reason = (obj.get("last_payment_error") or {}).get("message") or "Payment failed"
            return WebhookEvent(
                event_type=WebhookEventType.PAYMENT_FAILED,
                event_id=event_id,
                processor_payment_id=obj.get("id"),
                provider_event=name,
                failure_reason=reason,
                metadata={"stripe_event_id": event_id},
            )
        if name == "charge.refunded":
            refunds = (obj.get("refunds") or {}).get("data") or []
            latest = refunds[0] if refunds else {}
            return WebhookEvent(
                event_type=WebhookEventType.REFUND_COMPLETED,
                event_id=event_id,
                processor_payment_id=_id_of(obj.get("payment_intent")),
                provider_event=name,
                processor_charge_id=obj.get("id"),
                refund_id=latest.get("id"),
                refund_amount_cents=latest.get("amount"),
                refund_total_cents=obj.get("amount_refunded"),
                metadata={"stripe_event_id": event_id},
            )

        logger.info("Unhandled Stripe event", extra={"provider_event": name})
        return WebhookEvent(
            event_type=WebhookEventType.PAYMENT_UNKNOWN,
            event_id=event_id,
            processor_payment_id=None,
            provider_event=name,
        )

    def create_refund(
        self,
        payment: Payment,
        amount_cents: int,
        processor: PaymentProcessor,
        *,
        reference: str,
        reason: str | None = None,
    ) -> ProviderRefund:
        creds = self.credentials(processor)
        params: dict[str, Any] = {
            "api_key": creds["secret_key"],
            "amount": amount_cents,
            "metadata": {"payment_id": payment.id, "reference": reference},
            "idempotency_key": reference,
        }
        if payment.processor_charge_id:
            params["charge"] = payment.processor_charge_id
        else:
            params["payment_intent"] = payment.processor_payment_id
        if reason in STRIPE_REFUND_REASONS:
            params["reason"] = reason
        try:
            refund = stripe.Refund.create(**params)
        except stripe.StripeError as exc:
            raise self._wrap("REFUND", exc) from exc
        return ProviderRefund(
            refund_id=_get(refund, "id") or reference,
            amount_cents=int(_get(refund, "amount", amount_cents)),
            status=_REFUND_STATUS.get(str(_get(refund, "status")), "pending"),
            raw={"id": _get(refund, "id"), "status": _get(refund, "status")},
        )

    def get_payment_status(self, processor_payment_id: str, processor: PaymentProcessor) -> ProviderStatus:
        creds = self.credentials(processor)
        try:
            intent = stripe.PaymentIntent.retrieve(processor_payment_id, api_key=creds["secret_key"])
        except stripe.StripeError as exc:
            raise self._wrap("STATUS", exc) from exc

        status = str(_get(intent, "status"))
        amount = _get(intent, "amount_received") or _get(intent, "amount")
        metadata = {"stripe_status": status}
        if status in {"succeeded", "requires_capture"}:
            method_types = _get(intent, "payment_method_types") or []
            return ProviderStatus(
                status=CanonicalStatus.SUCCEEDED,
                amount_cents=amount,
                processor_charge_id=_id_of(_get(intent, "latest_charge")),
                payment_method=method_types[0] if method_types else None,
                metadata=metadata,
            )
        if status == "canceled":
            return ProviderStatus(status=CanonicalStatus.CANCELED, amount_cents=amount, metadata=metadata)
        last_error = _get(intent, "last_payment_error")
        if status == "requires_payment_method" and last_error:
            return ProviderStatus(
                status=CanonicalStatus.FAILED,
                amount_cents=amount,
                failure_reason=_get(last_error, "message") or "Payment failed",
                metadata=metadata,
            )
        return ProviderStatus(status=CanonicalStatus.PENDING, amount_cents=amount, metadata=metadata)

    def verify_credentials(self, credentials: Mapping[str, Any]) -> CredentialsVerificationResult:
        try:
            stripe.Balance.retrieve(api_key=credentials["secret_key"])
        except stripe.AuthenticationError:
            return CredentialsVerificationResult(is_valid=False, error="Invalid Stripe credentials")
        except stripe.StripeError:
            logger.warning("Stripe credential check failed", exc_info=True)
            return CredentialsVerificationResult(is_valid=False, error="Stripe credential check failed")
        return CredentialsVerificationResult(
            is_valid=True,
            merchant_info={"verified": True, "strategy": "live", "livemode": str(credentials["secret_key"]).startswith("sk_live")},
        )


__all__ = ["StripeAdapter", "STRIPE_REFUND_REASONS"]
