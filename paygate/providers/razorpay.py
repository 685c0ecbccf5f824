"""Razorpay adapter: REST orders API with HTTP basic auth and HMAC-signed webhooks."""
from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Mapping

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
from paygate.services.signatures import verify_hmac_sha256
from paygate.utils.errors import ProviderError, ProviderTimeoutError, ValidationError
from paygate.utils.masking import mask_payment_method_details, normalize_phone, truncate

logger = logging.getLogger(__name__)

RECEIPT_MAX_LENGTH = 40
NOTES_MAX_KEYS = 15
NOTE_VALUE_MAX_LENGTH = 256

_PAYMENT_EVENTS = {
    "payment.authorized": WebhookEventType.PAYMENT_SUCCEEDED,
    "payment.captured": WebhookEventType.PAYMENT_SUCCEEDED,
    "payment.failed": WebhookEventType.PAYMENT_FAILED,
}
_REFUND_EVENTS = {"refund.created", "refund.processed"}
_REFUND_STATUS = {"processed": "succeeded", "pending": "pending", "failed": "failed"}


def _entity(payload: Mapping[str, Any], name: str) -> dict[str, Any]:
    wrapper = payload.get(name) or {}
    entity = wrapper.get("entity") if isinstance(wrapper, Mapping) else None
    return dict(entity) if isinstance(entity, Mapping) else {}


def _method_details(entity: Mapping[str, Any]) -> dict[str, Any]:
    details: dict[str, Any] = {"method": entity.get("method")}
    card = entity.get("card")
    if isinstance(card, Mapping):
        details.update(
            {
                "card_last4": card.get("last4"),
                "card_network": card.get("network"),
                "card_type": card.get("type"),
            }
        )
    for key in ("vpa", "wallet", "bank", "email", "contact"):
        if entity.get(key):
            details[key] = entity[key]
    return mask_payment_method_details({k: v for k, v in details.items() if v is not None}) or {}


class RazorpayAdapter(PaymentProcessorPort):
    processor_type = ProcessorType.RAZORPAY
    default_fee_percentage = Decimal("2.00")
    signature_header = "X-Razorpay-Signature"
    required_credentials = {"key_id": 8, "key_secret": 8}
    provider_assigns_payment_id = True

    @property
    def base_url(self) -> str:
        return self.settings.RAZORPAY_API_URL

    def _auth(self, creds: Mapping[str, Any]) -> tuple[str, str]:
        return str(creds["key_id"]), str(creds["key_secret"])

    def _notes(self, order: Order, options: CreatePaymentOptions) -> dict[str, str]:
        notes = {
            "order_id": order.id,
            "business_id": order.business_id,
            "business_name": order.business_name or "",
        }
        for key, value in options.metadata.items():
            if len(notes) >= NOTES_MAX_KEYS:
                break
            notes.setdefault(str(key), str(value))
        return {key: truncate(value, NOTE_VALUE_MAX_LENGTH) for key, value in notes.items()}

    def create_intent(
        self, order: Order, processor: PaymentProcessor, options: CreatePaymentOptions
    ) -> ProviderIntent:
        creds = self.credentials(processor)
        receipt = truncate(order.id, RECEIPT_MAX_LENGTH)
        body = {
            "amount": order.total_cents,
            "currency": order.currency.upper(),
            "receipt": receipt,
            "notes": self._notes(order, options),
        }
        data = self._request("PAYMENT", "POST", self.base_url, "/v1/orders", json=body, auth=self._auth(creds))
        razorpay_order_id = data.get("id")
        if not razorpay_order_id:
            raise ProviderError("Razorpay order response has no id", code="RAZORPAY_PAYMENT_FAILED", response=data)

        description = options.description or f"Order {order.id[:8]}"
        return ProviderIntent(
            processor_payment_id=razorpay_order_id,
            client_secret=razorpay_order_id,
            additional_data={
                "key_id": creds["key_id"],
                "order_id": razorpay_order_id,
                "amount": order.total_cents,
                "currency": order.currency.upper(),
                "name": order.business_name or "",
                "description": description,
                "callback_url": options.callback_url or self.webhook_url(processor),
                "prefill": {
                    "name": order.customer_name or "",
                    "contact": normalize_phone(order.customer_phone) or "",
                    "email": order.customer_email or "",
                },
            },
            metadata={"razorpay_order_id": razorpay_order_id, "receipt": receipt, "razorpay_status": data.get("status")},
        )

    def parse_webhook(self, raw_body: bytes, signature: str | None, processor: PaymentProcessor) -> WebhookEvent:
        secret = (processor.credentials or {}).get("webhook_secret")
        if not secret:
            raise ValidationError("Razorpay webhook_secret is not configured", code="MISSING_CREDENTIALS")
        if not verify_hmac_sha256(secret, raw_body, signature):
            raise self.signature_error("Invalid Razorpay webhook signature")

        try:
            event = json.loads(raw_body)
        except ValueError as exc:
            raise self.invalid_payload("Razorpay webhook body is not valid JSON") from exc
        if not isinstance(event, dict):
            raise self.invalid_payload("Razorpay webhook body is not an object")

        name = str(event.get("event") or "")
        payload = event.get("payload") or {}
        payment_entity = _entity(payload, "payment")

        if name in _PAYMENT_EVENTS:
            charge_id = payment_entity.get("id")
            if not charge_id:
                raise self.invalid_payload("Razorpay payment event without payment id")
            event_type = _PAYMENT_EVENTS[name]
            failure_reason = None
            if event_type is WebhookEventType.PAYMENT_FAILED:
                failure_reason = (
                    payment_entity.get("error_description") or payment_entity.get("error_reason") or "Payment failed"
                )
            return WebhookEvent(
                event_type=event_type,
                event_id=f"{name}:{charge_id}",
                processor_payment_id=payment_entity.get("order_id"),
                provider_event=name,
                processor_charge_id=charge_id,
                payment_method=payment_entity.get("method"),
                payment_method_details=_method_details(payment_entity),
                failure_reason=failure_reason,
                amount_cents=payment_entity.get("amount"),
                metadata={"razorpay_payment_id": charge_id, "razorpay_event": name},
            )

        if name in _REFUND_EVENTS:
            refund = _entity(payload, "refund")
            refund_id = refund.get("id")
            if not refund_id:
                raise self.invalid_payload("Razorpay refund event without refund id")
            return WebhookEvent(
                event_type=WebhookEventType.REFUND_COMPLETED,
                event_id=f"{name}:{refund_id}",
                processor_payment_id=payment_entity.get("order_id"),
                provider_event=name,
                processor_charge_id=refund.get("payment_id"),
                refund_id=refund_id,
                refund_amount_cents=refund.get("amount"),
                metadata={"razorpay_refund_id": refund_id, "razorpay_event": name},
            )

        logger.info("Unhandled Razorpay event", extra={"provider_event": name})
        return WebhookEvent(
            event_type=WebhookEventType.PAYMENT_UNKNOWN,
            event_id=f"{name}:{event.get('created_at', '')}",
            processor_payment_id=payment_entity.get("order_id"),
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
        # Refunds are issued against the captured payment, not the order.
        if not payment.processor_charge_id:
            raise ValidationError("Payment has no captured Razorpay payment id", code="PAYMENT_NOT_CAPTURED")
        body = {
            "amount": amount_cents,
            "receipt": reference,
            "notes": {"reason": truncate(reason or "Seller initiated refund", NOTE_VALUE_MAX_LENGTH), "payment_id": payment.id},
        }
        data = self._request(
            "REFUND",
            "POST",
            self.base_url,
            f"/v1/payments/{payment.processor_charge_id}/refund",
            json=body,
            auth=self._auth(creds),
        )
        refund_id = data.get("id")
        if not refund_id:
            raise ProviderError("Razorpay refund response has no id", code="RAZORPAY_REFUND_FAILED", response=data)
        return ProviderRefund(
            refund_id=refund_id,
            amount_cents=int(data.get("amount", amount_cents)),
            status=_REFUND_STATUS.get(str(data.get("status")), "pending"),
            raw=data,
        )

    def get_payment_status(self, processor_payment_id: str, processor: PaymentProcessor) -> ProviderStatus:
        creds = self.credentials(processor)
        data = self._request(
            "STATUS",
            "GET",
            self.base_url,
            f"/v1/orders/{processor_payment_id}/payments",
            auth=self._auth(creds),
        )
        items = [item for item in data.get("items") or [] if isinstance(item, Mapping)]
        captured = next(
            (item for item in items if item.get("status") in {"captured", "authorized", "refunded"}), None
        )
        if captured is not None:
            return ProviderStatus(
                status=CanonicalStatus.SUCCEEDED,
                amount_cents=captured.get("amount"),
                processor_charge_id=captured.get("id"),
                payment_method=captured.get("method"),
                metadata={"razorpay_status": captured.get("status")},
            )
        if items and all(item.get("status") == "failed" for item in items):
            last = items[-1]
            return ProviderStatus(
                status=CanonicalStatus.FAILED,
                amount_cents=last.get("amount"),
                failure_reason=last.get("error_description") or "Payment failed",
                metadata={"razorpay_status": "failed", "attempts": len(items)},
            )
        return ProviderStatus(status=CanonicalStatus.PENDING, metadata={"attempts": len(items)})

    def verify_credentials(self, credentials: Mapping[str, Any]) -> CredentialsVerificationResult:
        try:
            self._request(
                "VERIFY",
                "GET",
                self.base_url,
                "/v1/payments",
                params={"count": 1},
                auth=self._auth(credentials),
            )
        except ProviderTimeoutError:
            return CredentialsVerificationResult(is_valid=False, error="Razorpay could not be reached")
        except ProviderError as exc:
            status_code = (exc.response or {}).get("status_code")
            if status_code in (401, 403):
                return CredentialsVerificationResult(is_valid=False, error="Invalid Razorpay credentials")
            return CredentialsVerificationResult(is_valid=False, error="Razorpay credential check failed")
        return CredentialsVerificationResult(
            is_valid=True,
            merchant_info={"key_id": credentials["key_id"], "verified": True, "strategy": "live"},
        )


__all__ = ["RazorpayAdapter"]
