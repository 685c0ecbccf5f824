"""Provider webhook endpoints.

The raw body is handed to the adapter untouched; every signature scheme is
computed over the exact bytes the provider sent.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request, status

from paygate.providers.registry import resolve_processor_type
from paygate.dependencies import get_payment_service
from paygate.schemas.webhook import WebhookResponse
from paygate.services.payments import PaymentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _receive(
    request: Request,
    service: PaymentService,
    processor_type: str,
    processor_id: str | None,
) -> WebhookResponse:
    ptype = resolve_processor_type(processor_type)
    raw_body = await request.body()
    header = service.adapter_for(ptype).signature_header
    signature = request.headers.get(header) if header else None
    logger.info(
        "Webhook received",
        extra={"processor_type": ptype.value, "processor_id": processor_id, "size": len(raw_body)},
    )
    result = service.handle_webhook(ptype, raw_body, signature, processor_id=processor_id)
    return WebhookResponse(**result.as_dict(), duplicate=result.duplicate)


@router.post("/{processor_type}", response_model=WebhookResponse, status_code=status.HTTP_200_OK)
async def receive_webhook(
    processor_type: str,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
) -> WebhookResponse:
    return await _receive(request, service, processor_type, None)


@router.post("/{processor_type}/{processor_id}", response_model=WebhookResponse, status_code=status.HTTP_200_OK)
async def receive_processor_webhook(
    processor_type: str,
    processor_id: str,
    request: Request,
    service: PaymentService = Depends(get_payment_service),
) -> WebhookResponse:
    return await _receive(request, service, processor_type, processor_id)


__all__ = ["router"]
