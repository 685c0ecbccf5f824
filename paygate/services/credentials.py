"""Credential checks run when a business connects or re-verifies a processor."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Mapping

if TYPE_CHECKING:  # pragma: no cover - hints only
    from paygate.providers.base import PaymentProcessorPort

logger = logging.getLogger(__name__)


@dataclass
class CredentialsVerificationResult:
    is_valid: bool
    error: str | None = None
    merchant_info: dict[str, Any] = field(default_factory=dict)


def structural_error(credentials: Mapping[str, Any] | None, requirements: Mapping[str, int]) -> str | None:
    """Return a message for the first missing or too-short key, or ``None``.

    ``requirements`` maps each required key to its minimum length; ``0``
    only requires presence.
    """

    credentials = credentials or {}
    missing = [key for key in requirements if not str(credentials.get(key) or "").strip()]
    if missing:
        return f"Missing required credentials: {', '.join(missing)}"
    for key, min_length in requirements.items():
        if len(str(credentials[key]).strip()) < min_length:
            return f"Invalid credential format: {key}"
    return None


def verify_structure(
    credentials: Mapping[str, Any] | None,
    requirements: Mapping[str, int],
    *,
    identity_key: str | None = None,
) -> CredentialsVerificationResult:
    """Structural strategy: presence and minimum length only, no network."""

    error = structural_error(credentials, requirements)
    if error:
        return CredentialsVerificationResult(is_valid=False, error=error)
    info: dict[str, Any] = {"verified": True, "strategy": "structural"}
    if identity_key and credentials:
        info[identity_key] = credentials.get(identity_key)
    return CredentialsVerificationResult(is_valid=True, merchant_info=info)


def verify_processor_credentials(
    adapter: "PaymentProcessorPort", credentials: Mapping[str, Any] | None
) -> CredentialsVerificationResult:
    """Run the structural gate, then the adapter's own (possibly live) check."""

    error = structural_error(credentials, adapter.required_credentials)
    if error:
        logger.info(
            "Processor credentials rejected",
            extra={"processor_type": adapter.processor_type.value, "reason": error},
        )
        return CredentialsVerificationResult(is_valid=False, error=error)
    result = adapter.verify_credentials(dict(credentials or {}))
    logger.info(
        "Processor credentials verified",
        extra={"processor_type": adapter.processor_type.value, "is_valid": result.is_valid},
    )
    return result


__all__ = [
    "CredentialsVerificationResult",
    "structural_error",
    "verify_structure",
    "verify_processor_credentials",
]
