"""Helpers for masking payment instrument data and sanitizing identifiers sent to providers."""
from __future__ import annotations

import re
from typing import Any, Mapping, Sequence

MASKED_PLACEHOLDER = "***masked***"

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_NON_DIGIT = re.compile(r"\D")

# Keys whose values are never kept, not even partially.
FULL_MASK_KEYS = {"cvv", "cvc", "pin", "expiry", "exp_month", "exp_year", "card_holder", "name_on_card"}

CARD_KEYS = {"card_number", "number", "pan", "last4", "card_last4", "account_number", "bank_account"}

CONTACT_KEYS = {"email", "customer_email"}


def normalize_phone(value: str | None) -> str | None:
    """Keep only the last 10 digits of a phone number, or ``None`` when there are none."""

    if not value:
        return None
    digits = _NON_DIGIT.sub("", str(value))
    return digits[-10:] or None


def compact_identifier(value: Any, max_length: int) -> str:
    """Strip separators and anything outside ``[A-Za-z0-9]``, then truncate."""

    return _NON_ALNUM.sub("", str(value))[:max_length]


def truncate(value: Any, max_length: int) -> str:
    return str(value)[:max_length]


def _mask_digits(value: Any) -> str:
    digits = _NON_DIGIT.sub("", "" if value is None else str(value))
    if not digits:
        return "***"
    return f"****{digits[-4:]}"


def _mask_vpa(value: Any) -> str:
    text = "" if value is None else str(value)
    if "@" not in text:
        return "***"
    handle, bank = text.split("@", 1)
    head = handle[:1] if handle else ""
    return f"{head}***@{bank}"


def _mask_email(value: Any) -> str:
    text = "" if value is None else str(value)
    if "@" not in text:
        return "***@***"
    _, domain = text.split("@", 1)
    return f"***@{domain or '***'}"


def _mask_phone(value: Any) -> str:
    digits = _NON_DIGIT.sub("", "" if value is None else str(value))
    if not digits:
        return "***"
    return f"***{digits[-2:]}"


def _mask_leaf(key: str, value: Any) -> Any:
    if isinstance(value, bool) or value is None:
        return value

    lower = key.lower()
    if lower in FULL_MASK_KEYS:
        return MASKED_PLACEHOLDER
    if lower in CARD_KEYS:
        return _mask_digits(value)
    if lower == "vpa" or lower.endswith("_vpa"):
        return _mask_vpa(value)
    if lower in CONTACT_KEYS or lower.endswith("_email"):
        return _mask_email(value)
    if "phone" in lower or "mobile" in lower or lower == "contact":
        return _mask_phone(value)
    return value


def _mask_mapping(data: Mapping[str, Any]) -> dict[str, Any]:
    masked: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, Mapping):
            masked[key] = _mask_mapping(value)
        elif isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray)):
            masked[key] = [
                _mask_mapping(item) if isinstance(item, Mapping) else _mask_leaf(key, item)
                for item in value
            ]
        else:
            masked[key] = _mask_leaf(key, value)
    return masked


def mask_payment_method_details(details: Mapping[str, Any] | None) -> dict[str, Any] | None:
    """Return a copy of instrument details with card, UPI and contact data masked."""

    if details is None:
        return None
    return _mask_mapping(details)


__all__ = [
    "MASKED_PLACEHOLDER",
    "normalize_phone",
    "compact_identifier",
    "truncate",
    "mask_payment_method_details",
]
