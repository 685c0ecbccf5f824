"""PhonePe adapter: base64 JSON envelopes signed with ``X-VERIFY`` (salted SHA-256)."""
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
from paygate.services.credentials import CredentialsVerificationResult, verify_structure
from paygate.services.signatures import EnvelopeSigner, decode_envelope, encode_envelope, x_verify
from paygate.utils.errors import ProviderError
from paygate.utils.masking import compact_identifier, mask_payment_method_details, normalize_phone

logger = logging.getLogger(__name__)

PAY_PATH = "/pg/v1/pay"
REFUND_PATH = "/pg/v1/refund"
MERCHANT_USER_ID_MAX_LENGTH = 32

SUCCESS_CODE = "PAYMENT_SUCCESS"
PENDING_CODES = {"PAYMENT_PENDING", "PAYMENT_INITIATED"}
FAILURE_CODES = {
    "PAYMENT_ERROR",
    "PAYMENT_DECLINED",
    "TIMED_OUT",
    "AUTHORIZATION_FAILED",
    "TRANSACTION_NOT_FOUND",
    "BAD_REQUEST",
}
_REFUND_STATES = {"COMPLETED": "succeeded", "PENDING": "pending", "FAILED": "failed"}


def _instrument_details(instrument: Mapping[str, Any]) -> dict[str, Any]:
    details = {
        key: instrument.get(key)
        for key in ("type", "cardType", "bankId", "utr", "pgTransactionId", "vpa")
        if instrument.get(key)
    }
    return mask_payment_method_details(details) or {}


class PhonePeAdapter(PaymentProcessorPort):
    processor_type = ProcessorType.PHONEPE
    default_fee_percentage = Decimal("1.18")
    signature_header = "X-VERIFY"
    required_credentials = {"merchant_id": 5, "salt_key": 10, "salt_index": 1}
    provider_assigns_payment_id = False

    @property
    def base_url(self) -> str:
        return self.settings.PHONEPE_API_URL

    def _signed_post(self, operation: str, path: str, request: Mapping[str, Any], creds: Mapping[str, Any]) -> dict:
        payload = encode_envelope(request)
        signer = EnvelopeSigner(path=path, salt_index=str(creds["salt_index"]))
        return self._request(
            operation,
            "POST",
            self.base_url,
            path,
            json={"request": payload},
            headers={"X-VERIFY": signer.sign(payload, str(creds["salt_key"]))},
        )

    def create_intent(
        self, order: Order, processor: PaymentProcessor, options: CreatePaymentOptions
    ) -> ProviderIntent:
        creds = self.credentials(processor)
        merchant_transaction_id = self.merchant_reference(order, options.attempt)
        request: dict[str, Any] = {
            "merchantId": creds["merchant_id"],
            "merchantTransactionId": merchant_transaction_id,
            "merchantUserId": compact_identifier(order.business_id, MERCHANT_USER_ID_MAX_LENGTH),
            "amount": order.total_cents,
            "redirectUrl": options.redirect_url or f"{self.settings.FRONTEND_URL}/payment/callback",
            "redirectMode": "POST",
            "callbackUrl": options.callback_url or self.webhook_url(processor),
            "paymentInstrument": {"type": "PAY_PAGE"},
        }
        mobile = normalize_phone(order.customer_phone)
        if mobile:
            request["mobileNumber"] = mobile

        data = self._signed_post("PAYMENT", PAY_PATH, request, creds)
        if not data.get("success"):
            raise ProviderError(
                data.get("message") or "PhonePe payment creation failed",
                code="PHONEPE_PAYMENT_FAILED",
                response=data,
            )
        body = data.get("data") or {}
        redirect = ((body.get("instrumentResponse") or {}).get("redirectInfo") or {}).get("url")
        if not redirect:
            raise ProviderError("PhonePe response has no redirect url", code="PHONEPE_PAYMENT_FAILED", response=data)

        return ProviderIntent(
            processor_payment_id=merchant_transaction_id,
            payment_url=redirect,
            additional_data={"merchant_transaction_id": merchant_transaction_id},
            metadata={
                "merchant_transaction_id": merchant_transaction_id,
                "phonepe_transaction_id": body.get("transactionId"),
                "phonepe_code": data.get("code"),
            },
        )

    def parse_webhook(self, raw_body: bytes, signature: str | None, processor: PaymentProcessor) -> WebhookEvent:
        creds = self.credentials(processor)
        # The signed value is the base64 string inside the body, so the outer
        # JSON has to be read before the check; nothing is trusted until it passes.
        try:
            envelope = json.loads(raw_body)
            encoded = envelope["response"]
        except (ValueError, KeyError, TypeError) as exc:
            raise self.signature_error("Malformed PhonePe callback envelope") from exc
        if not isinstance(encoded, str):
            raise self.signature_error("Malformed PhonePe callback envelope")

        signer = EnvelopeSigner(path="", salt_index=str(creds["salt_index"]))
        if not signer.verify(encoded, str(creds["salt_key"]), signature):
            raise self.signature_error("Invalid PhonePe X-VERIFY signature")

        try:
            data = decode_envelope(encoded)
        except ValueError as exc:
            raise self.invalid_payload("PhonePe callback payload is not valid base64 JSON") from exc

        code = str(data.get("code") or "")
        body = data.get("data") or {}
        merchant_transaction_id = body.get("merchantTransactionId")
        provider_txn = body.get("transactionId")
        if not merchant_transaction_id:
            raise self.invalid_payload("PhonePe callback without merchantTransactionId")

        if code == SUCCESS_CODE:
            event_type = WebhookEventType.PAYMENT_SUCCEEDED
        elif code in FAILURE_CODES or body.get("state") == "FAILED":
            event_type = WebhookEventType.PAYMENT_FAILED
        else:
            event_type = WebhookEventType.PAYMENT_UNKNOWN

        instrument = body.get("paymentInstrument") or {}
        method = str(instrument.get("type") or "").lower() or None
        return WebhookEvent(
            event_type=event_type,
            event_id=f"{provider_txn or merchant_transaction_id}:{code}",
            processor_payment_id=merchant_transaction_id,
            provider_event=code,
            processor_charge_id=provider_txn,
            payment_method=method,
            payment_method_details=_instrument_details(instrument) if instrument else None,
            failure_reason=(data.get("message") or code) if event_type is WebhookEventType.PAYMENT_FAILED else None,
            amount_cents=body.get("amount"),
            metadata={"phonepe_transaction_id": provider_txn, "phonepe_code": code, "phonepe_state": body.get("state")},
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
        request = {
            "merchantId": creds["merchant_id"],
            "merchantUserId": compact_identifier(payment.business_id, MERCHANT_USER_ID_MAX_LENGTH),
            "merchantTransactionId": reference,
            "originalTransactionId": payment.processor_charge_id or payment.processor_payment_id,
            "amount": amount_cents,
            "callbackUrl": self.webhook_url(processor),
        }
        data = self._signed_post("REFUND", REFUND_PATH, request, creds)
        if not data.get("success"):
            raise ProviderError(
                data.get("message") or "PhonePe refund failed", code="PHONEPE_REFUND_FAILED", response=data
            )
        body = data.get("data") or {}
        state = str(body.get("state") or ("COMPLETED" if data.get("code") == SUCCESS_CODE else "PENDING"))
        return ProviderRefund(
            refund_id=body.get("transactionId") or reference,
            amount_cents=int(body.get("amount", amount_cents)),
            status=_REFUND_STATES.get(state, "pending"),
            raw=data,
        )

    def get_payment_status(self, processor_payment_id: str, processor: PaymentProcessor) -> ProviderStatus:
        creds = self.credentials(processor)
        path = f"/pg/v1/status/{creds['merchant_id']}/{processor_payment_id}"
        data = self._request(
            "STATUS",
            "GET",
            self.base_url,
            path,
            headers={
                "X-VERIFY": x_verify(path, str(creds["salt_key"]), creds["salt_index"]),
                "X-MERCHANT-ID": str(creds["merchant_id"]),
            },
        )
        code = str(data.get("code") or "")
        body = data.get("data") or {}
        metadata = {"phonepe_code": code, "phonepe_state": body.get("state")}
        if code == SUCCESS_CODE:
            instrument = body.get("paymentInstrument") or {}
            return ProviderStatus(
                status=CanonicalStatus.SUCCEEDED,
                amount_cents=body.get("amount"),
                processor_charge_id=body.get("transactionId"),
                payment_method=str(instrument.get("type") or "").lower() or None,
                metadata=metadata,
            )
        if code in FAILURE_CODES:
            return ProviderStatus(
                status=CanonicalStatus.FAILED,
                amount_cents=body.get("amount"),
                failure_reason=data.get("message") or code,
                metadata=metadata,
            )
        return ProviderStatus(status=CanonicalStatus.PENDING, amount_cents=body.get("amount"), metadata=metadata)

    def verify_credentials(self, credentials: Mapping[str, Any]) -> CredentialsVerificationResult:
        # PhonePe has no side-effect-free authenticated read, so only the shape is checked.
        if not str(credentials.get("salt_index", "")).strip().isdigit():
            return CredentialsVerificationResult(is_valid=False, error="Invalid credential format: salt_index")
        return verify_structure(credentials, self.required_credentials, identity_key="merchant_id")


__all__ = ["PhonePeAdapter", "PAY_PATH", "REFUND_PATH"]
