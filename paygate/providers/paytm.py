"""Paytm adapter: redirect flow signed with a sorted-parameter SHA-256 checksum."""
from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Mapping
from urllib.parse import parse_qsl

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
from paygate.services.fees import from_major_units, to_major_units
from paygate.services.signatures import SortedParamsSigner
from paygate.utils.errors import ProviderError
from paygate.utils.masking import normalize_phone, truncate

logger = logging.getLogger(__name__)

CHECKSUM_FIELD = "CHECKSUMHASH"
CUST_ID_MAX_LENGTH = 64

_SIGNER = SortedParamsSigner()
_STATUS_MAP = {
    "TXN_SUCCESS": CanonicalStatus.SUCCEEDED,
    "TXN_FAILURE": CanonicalStatus.FAILED,
    "PENDING": CanonicalStatus.PENDING,
    "OPEN": CanonicalStatus.PENDING,
}


def _parse_callback(raw_body: bytes) -> dict[str, str]:
    """Accept both the JSON and the form-encoded callback styles."""

    text = raw_body.decode("utf-8")
    if text.lstrip().startswith("{"):
        data = json.loads(text)
        if not isinstance(data, dict):
            raise ValueError("callback is not an object")
        return {str(key): "" if value is None else str(value) for key, value in data.items()}
    return dict(parse_qsl(text, keep_blank_values=True, strict_parsing=True))


class PaytmAdapter(PaymentProcessorPort):
    processor_type = ProcessorType.PAYTM
    default_fee_percentage = Decimal("2.36")
    signature_header = None
    required_credentials = {"merchant_id": 5, "merchant_key": 10, "website": 1}
    provider_assigns_payment_id = False

    @property
    def base_url(self) -> str:
        return self.settings.PAYTM_API_URL

    def _signed(self, params: Mapping[str, str], merchant_key: str) -> dict[str, str]:
        signed = dict(params)
        signed[CHECKSUM_FIELD] = _SIGNER.sign(params, merchant_key)
        return signed

    def create_intent(
        self, order: Order, processor: PaymentProcessor, options: CreatePaymentOptions
    ) -> ProviderIntent:
        creds = self.credentials(processor)
        paytm_order_id = self.merchant_reference(order, options.attempt)
        params = {
            "MID": str(creds["merchant_id"]),
            "WEBSITE": str(creds["website"]),
            "INDUSTRY_TYPE_ID": str(creds.get("industry_type") or "Retail"),
            "CHANNEL_ID": "WEB",
            "ORDER_ID": paytm_order_id,
            "CUST_ID": truncate(order.business_id, CUST_ID_MAX_LENGTH),
            "MOBILE_NO": normalize_phone(order.customer_phone) or "",
            "EMAIL": order.customer_email or "",
            "TXN_AMOUNT": to_major_units(order.total_cents),
            "CALLBACK_URL": options.callback_url or self.webhook_url(processor),
        }
        signed = self._signed(params, str(creds["merchant_key"]))
        return ProviderIntent(
            processor_payment_id=paytm_order_id,
            payment_url=f"{self.base_url}/theia/processTransaction",
            additional_data={"paytm_params": signed},
            metadata={"paytm_order_id": paytm_order_id, "paytm_params": signed},
        )

    def parse_webhook(self, raw_body: bytes, signature: str | None, processor: PaymentProcessor) -> WebhookEvent:
        creds = self.credentials(processor)
        try:
            params = _parse_callback(raw_body)
        except ValueError as exc:
            raise self.signature_error("Malformed Paytm callback") from exc

        received = params.pop(CHECKSUM_FIELD, None) or signature
        if not _SIGNER.verify(params, str(creds["merchant_key"]), received):
            raise self.signature_error("Invalid Paytm checksum")

        order_id = params.get("ORDERID")
        txn_id = params.get("TXNID") or ""
        status = params.get("STATUS") or ""
        if not order_id:
            raise self.invalid_payload("Paytm callback without ORDERID")

        if status == "TXN_SUCCESS":
            event_type = WebhookEventType.PAYMENT_SUCCEEDED
        elif status == "TXN_FAILURE":
            event_type = WebhookEventType.PAYMENT_FAILED
        else:
            event_type = WebhookEventType.PAYMENT_UNKNOWN

        amount = from_major_units(params["TXNAMOUNT"]) if params.get("TXNAMOUNT") else None
        mode = params.get("PAYMENTMODE")
        return WebhookEvent(
            event_type=event_type,
            event_id=f"{txn_id or order_id}:{status}",
            processor_payment_id=order_id,
            provider_event=status,
            processor_charge_id=txn_id or None,
            payment_method=mode.lower() if mode else "unknown",
            payment_method_details={"mode": mode, "gateway": params.get("GATEWAYNAME"), "bank": params.get("BANKNAME")}
            if mode
            else None,
            failure_reason=(params.get("RESPMSG") or "Transaction failed")
            if event_type is WebhookEventType.PAYMENT_FAILED
            else None,
            amount_cents=amount,
            metadata={
                "paytm_txn_id": txn_id,
                "paytm_response_code": params.get("RESPCODE"),
                "paytm_response_message": params.get("RESPMSG"),
            },
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
        params = {
            "MID": str(creds["merchant_id"]),
            "ORDERID": payment.processor_payment_id or "",
            "TXNID": payment.processor_charge_id or "",
            "REFID": reference,
            "REFUNDAMOUNT": to_major_units(amount_cents),
            "TXNTYPE": "REFUND",
        }
        data = self._request(
            "REFUND", "POST", self.base_url, "/refund/apply", json=self._signed(params, str(creds["merchant_key"]))
        )
        status = data.get("STATUS")
        if status == "TXN_FAILURE":
            raise ProviderError(data.get("RESPMSG") or "Paytm refund failed", code="PAYTM_REFUND_FAILED", response=data)
        return ProviderRefund(
            refund_id=str(data.get("REFUNDID") or reference),
            amount_cents=from_major_units(data["REFUNDAMOUNT"]) if data.get("REFUNDAMOUNT") else amount_cents,
            status="succeeded" if status == "TXN_SUCCESS" else "pending",
            raw=data,
        )

    def get_payment_status(self, processor_payment_id: str, processor: PaymentProcessor) -> ProviderStatus:
        creds = self.credentials(processor)
        params = {"MID": str(creds["merchant_id"]), "ORDERID": processor_payment_id}
        data = self._request(
            "STATUS", "POST", self.base_url, "/order/status", json=self._signed(params, str(creds["merchant_key"]))
        )
        status = _STATUS_MAP.get(str(data.get("STATUS")), CanonicalStatus.PENDING)
        mode = data.get("PAYMENTMODE")
        return ProviderStatus(
            status=status,
            amount_cents=from_major_units(data["TXNAMOUNT"]) if data.get("TXNAMOUNT") else None,
            processor_charge_id=data.get("TXNID") or None,
            payment_method=mode.lower() if mode else None,
            failure_reason=data.get("RESPMSG") if status is CanonicalStatus.FAILED else None,
            metadata={"paytm_status": data.get("STATUS"), "paytm_response_code": data.get("RESPCODE")},
        )

    def verify_credentials(self, credentials: Mapping[str, Any]) -> CredentialsVerificationResult:
        return verify_structure(credentials, self.required_credentials, identity_key="merchant_id")


__all__ = ["PaytmAdapter", "CHECKSUM_FIELD"]
