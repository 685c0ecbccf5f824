"""Processor onboarding: connect, re-verify, disconnect and list."""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Mapping

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from paygate.config import Settings, get_settings
from paygate.models import PaymentProcessor, ProcessorStatus, ProcessorType
from paygate.providers.registry import get_adapter
from paygate.services import fees
from paygate.services.credentials import CredentialsVerificationResult, verify_processor_credentials
from paygate.services.repositories import ProcessorRepository
from paygate.utils.audit import log_audit
from paygate.utils.time import utcnow

logger = logging.getLogger(__name__)


def _apply_verification(processor: PaymentProcessor, result: CredentialsVerificationResult) -> None:
    if result.is_valid:
        processor.status = ProcessorStatus.ACTIVE
        processor.is_active = True
        processor.verified_at = utcnow()
        processor.connection_error = None
        processor.metadata_json = {**(processor.metadata_json or {}), "merchant_info": result.merchant_info}
    else:
        processor.status = ProcessorStatus.FAILED
        processor.is_active = False
        processor.connection_error = result.error


def _verify(
    processor_type: ProcessorType,
    credentials: Mapping[str, Any],
    settings: Settings | None,
    transport: httpx.BaseTransport | None,
) -> CredentialsVerificationResult:
    adapter = get_adapter(processor_type, settings, transport=transport)
    return verify_processor_credentials(adapter, credentials)


def connect_processor(
    db: Session,
    *,
    business_id: str,
    processor_type: ProcessorType,
    credentials: Mapping[str, Any],
    fee_percentage: Decimal | None = None,
    fixed_fee_cents: int = 0,
    priority: int = 999,
    settlement_schedule: str = "weekly",
    min_payout_threshold_cents: int = 50000,
    metadata: Mapping[str, Any] | None = None,
    settings: Settings | None = None,
    transport: httpx.BaseTransport | None = None,
) -> PaymentProcessor:
    """Verify credentials and store the processor, reconnecting an existing one of the same type."""

    if fee_percentage is not None:
        fee_percentage = fees.to_decimal_rate(fee_percentage)
    settings = settings or get_settings()
    result = _verify(processor_type, credentials, settings, transport)

    processor = db.scalars(
        select(PaymentProcessor).where(
            PaymentProcessor.business_id == business_id,
            PaymentProcessor.processor_type == processor_type,
        )
    ).first()
    if processor is None:
        processor = PaymentProcessor(business_id=business_id, processor_type=processor_type)
        db.add(processor)

    processor.credentials = dict(credentials)
    processor.fee_percentage = fee_percentage
    processor.fixed_fee_cents = fixed_fee_cents
    processor.priority = priority
    processor.settlement_schedule = settlement_schedule
    processor.min_payout_threshold_cents = min_payout_threshold_cents
    processor.metadata_json = dict(metadata or {})
    _apply_verification(processor, result)
    db.flush()

    log_audit(
        db,
        actor="api",
        action="PROCESSOR_CONNECTED",
        entity="PaymentProcessor",
        entity_id=processor.id,
        data={
            "business_id": business_id,
            "processor_type": processor_type.value,
            "is_valid": result.is_valid,
            "error": result.error,
        },
    )
    db.commit()
    db.refresh(processor)
    logger.info(
        "Processor connected",
        extra={
            "processor_id": processor.id,
            "processor_type": processor_type.value,
            "status": processor.status.value,
        },
    )
    return processor


def verify_processor(
    db: Session,
    processor_id: str,
    *,
    settings: Settings | None = None,
    transport: httpx.BaseTransport | None = None,
) -> tuple[PaymentProcessor, CredentialsVerificationResult]:
    processor = ProcessorRepository(db).get(processor_id)
    result = _verify(processor.processor_type, processor.credentials or {}, settings, transport)
    if processor.status == ProcessorStatus.INACTIVE and result.is_valid:
        # A disconnected processor stays disconnected; only the check time moves.
        processor.verified_at = utcnow()
        processor.connection_error = None
    else:
        _apply_verification(processor, result)
    db.commit()
    db.refresh(processor)
    logger.info(
        "Processor re-verified",
        extra={"processor_id": processor.id, "is_valid": result.is_valid},
    )
    return processor, result


def disconnect_processor(db: Session, processor_id: str) -> PaymentProcessor:
    """Stop new checkouts; webhooks for in-flight payments are still accepted."""

    processor = ProcessorRepository(db).get(processor_id)
    processor.status = ProcessorStatus.INACTIVE
    processor.is_active = False
    log_audit(
        db,
        actor="api",
        action="PROCESSOR_DISCONNECTED",
        entity="PaymentProcessor",
        entity_id=processor.id,
        data={"business_id": processor.business_id, "processor_type": processor.processor_type.value},
    )
    db.commit()
    db.refresh(processor)
    logger.info("Processor disconnected", extra={"processor_id": processor.id})
    return processor


def list_processors(db: Session, business_id: str) -> list[PaymentProcessor]:
    return ProcessorRepository(db).for_business(business_id)


__all__ = ["connect_processor", "verify_processor", "disconnect_processor", "list_processors"]
