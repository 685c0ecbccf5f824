"""Dispatch table from :class:`ProcessorType` to adapter class."""
from __future__ import annotations

import httpx

from paygate.config import Settings
from paygate.models import ProcessorType
from paygate.providers.base import PaymentProcessorPort
from paygate.providers.paytm import PaytmAdapter
from paygate.providers.phonepe import PhonePeAdapter
from paygate.providers.razorpay import RazorpayAdapter
from paygate.providers.stripe import StripeAdapter
from paygate.utils.errors import ValidationError

ADAPTERS: dict[ProcessorType, type[PaymentProcessorPort]] = {
    ProcessorType.RAZORPAY: RazorpayAdapter,
    ProcessorType.PHONEPE: PhonePeAdapter,
    ProcessorType.PAYTM: PaytmAdapter,
    ProcessorType.STRIPE: StripeAdapter,
}

_missing = set(ProcessorType) - set(ADAPTERS)
if _missing:  # pragma: no cover - guards against adding an enum member without an adapter
    raise RuntimeError(f"No adapter registered for: {sorted(m.value for m in _missing)}")


def resolve_processor_type(value: ProcessorType | str) -> ProcessorType:
    """Parse a processor type from a path segment or payload field."""

    try:
        return ProcessorType(value)
    except ValueError as exc:
        raise ValidationError(f"Unsupported processor type: {value}", code="UNSUPPORTED_PROCESSOR") from exc


def get_adapter(
    processor_type: ProcessorType | str,
    settings: Settings | None = None,
    *,
    transport: httpx.BaseTransport | None = None,
) -> PaymentProcessorPort:
    adapter_cls = ADAPTERS[resolve_processor_type(processor_type)]
    return adapter_cls(settings, transport=transport)


__all__ = ["ADAPTERS", "get_adapter", "resolve_processor_type"]
