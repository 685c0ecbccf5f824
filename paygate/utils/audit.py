"""Audit logging helper utilities."""
from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.orm import Session

from paygate.models.audit import AuditLog
from paygate.utils.time import utcnow

SECRET_KEYS = {
    "key_secret",
    "salt_key",
    "merchant_key",
    "webhook_secret",
    "secret_key",
    "api_key",
    "password",
}

SENSITIVE_KEYS = SECRET_KEYS | {
    "card_number",
    "email",
    "customer_email",
    "customer_phone",
    "phone",
    "contact",
    "vpa",
    "mobile_no",
    "mobilenumber",
}


def _mask_value(key: str, value: Any) -> Any:
    if value is None:
        return None

    if key in SECRET_KEYS:
        return "***"

    if key == "card_number":
        stripped = str(value).replace(" ", "")
        return f"***{stripped[-4:]}" if len(stripped) > 4 else "***"

    if key in {"email", "customer_email"}:
        text = str(value)
        if "@" in text:
            _, domain = text.split("@", 1)
            return f"***@{domain}"
        return "***"

    if key == "vpa":
        text = str(value)
        return f"***@{text.split('@', 1)[1]}" if "@" in text else "***"

    # phone-like values
    digits = "".join(ch for ch in str(value) if ch.isdigit())
    return f"***{digits[-2:]}" if digits else "***"


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with secrets and obvious PII masked.

    Keys are matched case-insensitively so provider-native names such as
    ``MOBILE_NO`` or ``EMAIL`` are caught alongside our own.
    """

    if isinstance(data, Mapping):
        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            lowered = str(key).lower()
            masked_value = _mask_value(lowered, value) if lowered in SENSITIVE_KEYS else value
            sanitized[key] = sanitize_payload_for_audit(masked_value)
        return sanitized

    if isinstance(data, (list, tuple)):
        return [sanitize_payload_for_audit(item) for item in data]

    return data


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: str | None,
    data: dict | None = None,
) -> None:
    """Persist an audit entry in the shared AuditLog table (flushed with the caller's transaction)."""

    db.add(
        AuditLog(
            actor=actor,
            action=action,
            entity=entity,
            entity_id=entity_id or "",
            data_json=sanitize_payload_for_audit(data or {}),
            at=utcnow(),
        )
    )


__all__ = ["SECRET_KEYS", "sanitize_payload_for_audit", "log_audit"]
