"""Error taxonomy and standardized error payloads."""
from __future__ import annotations

from typing import Any

GENERIC_PROVIDER_MESSAGE = "Payment could not be processed, please retry."


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class PaymentLayerError(Exception):
    """Base class for every error raised by the payment layer.

    ``status_code`` and ``code`` are what the API surfaces; ``details`` is
    only rendered for errors whose message is safe to show to a caller.
    """

    status_code: int = 500
    code: str = "PAYMENT_ERROR"
    public: bool = True

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_response(self) -> dict[str, Any]:
        if not self.public:
            return error_response(self.code, GENERIC_PROVIDER_MESSAGE)
        return error_response(self.code, self.message, self.details or None)


class ValidationError(PaymentLayerError):
    """Missing or malformed request fields or credentials."""

    status_code = 400
    code = "VALIDATION_ERROR"


class SignatureError(PaymentLayerError):
    """Webhook authenticity check failed."""

    status_code = 400
    code = "SIGNATURE_INVALID"


class NotFoundError(PaymentLayerError):
    status_code = 404
    code = "NOT_FOUND"


class ConflictError(PaymentLayerError):
    status_code = 409
    code = "CONFLICT"


class ProviderError(PaymentLayerError):
    """The upstream provider failed or answered with an unexpected shape.

    The raw provider response is attached for audit and never rendered to
    API callers.
    """

    status_code = 500
    code = "PROVIDER_ERROR"
    public = False

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        response: Any = None,
    ) -> None:
        super().__init__(message, code=code, status_code=status_code)
        self.response = response


class ProviderTimeoutError(ProviderError):
    """Network-level timeout talking to a provider; safe to retry with the same idempotency key."""

    status_code = 504
    code = "PROVIDER_TIMEOUT"


__all__ = [
    "GENERIC_PROVIDER_MESSAGE",
    "error_response",
    "PaymentLayerError",
    "ValidationError",
    "SignatureError",
    "NotFoundError",
    "ConflictError",
    "ProviderError",
    "ProviderTimeoutError",
]
