"""Checkout, payment lookup, polling and refund endpoints."""
from fastapi import APIRouter, Depends, Header, status

from paygate.dependencies import get_payment_service
from paygate.providers.base import CreatePaymentOptions
from paygate.schemas.payment import (
    PaymentCreate,
    PaymentIntentResponse,
    PaymentRead,
    RefundCreate,
    RefundRead,
    RefundResponse,
)
from paygate.services.idempotency import normalize_key
from paygate.services.payments import PaymentService

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("", response_model=PaymentIntentResponse, status_code=status.HTTP_201_CREATED)
def create_payment(payload: PaymentCreate, service: PaymentService = Depends(get_payment_service)):
    """Open a payment intent for an order with the named processor."""

    options = CreatePaymentOptions(
        description=payload.description,
        metadata=payload.metadata,
        redirect_url=payload.redirect_url,
        callback_url=payload.callback_url,
    )
    result = service.create_payment(payload.order_id, payload.processor_id, options, retry=payload.retry)
    return PaymentIntentResponse(
        payment_id=result.payment_id,
        status=result.payment.status,
        client_secret=result.client_secret,
        payment_url=result.payment_url,
        additional_data=result.additional_data,
        payment=PaymentRead.model_validate(result.payment),
    )


@router.get("/{payment_id}", response_model=PaymentRead)
def read_payment(payment_id: str, service: PaymentService = Depends(get_payment_service)):
    return service.get_payment(payment_id)


@router.post("/{payment_id}/sync", response_model=PaymentRead)
def sync_payment(payment_id: str, service: PaymentService = Depends(get_payment_service)):
    """Poll the provider when a webhook is late or lost."""

    return service.sync_payment_status(payment_id)


@router.post("/{payment_id}/refunds", response_model=RefundResponse, status_code=status.HTTP_201_CREATED)
def create_refund(
    payment_id: str,
    payload: RefundCreate,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    service: PaymentService = Depends(get_payment_service),
):
    result = service.create_refund(
        payment_id,
        payload.amount_cents,
        reason=payload.reason,
        idempotency_key=normalize_key(idempotency_key, payload.idempotency_key),
    )
    return RefundResponse(
        refund=RefundRead.model_validate(result.refund),
        payment=PaymentRead.model_validate(result.payment),
        replayed=result.replayed,
    )


__all__ = ["router"]
