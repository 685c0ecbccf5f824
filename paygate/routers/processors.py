"""Processor onboarding endpoints."""
import httpx
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from paygate.db import get_db
from paygate.dependencies import get_provider_transport
from paygate.models import PaymentProcessor
from paygate.providers.registry import get_adapter
from paygate.schemas.processor import ProcessorCreate, ProcessorRead, ProcessorVerifyResponse
from paygate.services import processors as processors_service

router = APIRouter(prefix="/processors", tags=["processors"])


def _read(processor: PaymentProcessor) -> ProcessorRead:
    webhook_url = get_adapter(processor.processor_type).webhook_url(processor)
    return ProcessorRead.from_processor(processor, webhook_url)


@router.post("", response_model=ProcessorRead, status_code=status.HTTP_201_CREATED)
def connect_processor(
    payload: ProcessorCreate,
    db: Session = Depends(get_db),
    transport: httpx.BaseTransport | None = Depends(get_provider_transport),
):
    """Verify credentials and store the processor; failed checks are stored as ``failed``."""

    processor = processors_service.connect_processor(
        db,
        business_id=payload.business_id,
        processor_type=payload.processor_type,
        credentials=payload.credentials,
        fee_percentage=payload.fee_percentage,
        fixed_fee_cents=payload.fixed_fee_cents,
        priority=payload.priority,
        settlement_schedule=payload.settlement_schedule,
        min_payout_threshold_cents=payload.min_payout_threshold_cents,
        metadata=payload.metadata,
        transport=transport,
    )
    return _read(processor)


@router.get("", response_model=list[ProcessorRead])
def list_processors(business_id: str = Query(...), db: Session = Depends(get_db)):
    return [_read(processor) for processor in processors_service.list_processors(db, business_id)]


@router.post("/{processor_id}/verify", response_model=ProcessorVerifyResponse)
def verify_processor(
    processor_id: str,
    db: Session = Depends(get_db),
    transport: httpx.BaseTransport | None = Depends(get_provider_transport),
):
    processor, result = processors_service.verify_processor(db, processor_id, transport=transport)
    return ProcessorVerifyResponse(is_valid=result.is_valid, error=result.error, processor=_read(processor))


@router.post("/{processor_id}/disconnect", response_model=ProcessorRead)
def disconnect_processor(processor_id: str, db: Session = Depends(get_db)):
    return _read(processors_service.disconnect_processor(db, processor_id))


__all__ = ["router"]
