"""Schemas for payment processor onboarding."""
from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, Field

from paygate.models import PaymentProcessor, ProcessorStatus, ProcessorType
from paygate.utils.audit import sanitize_payload_for_audit


class ProcessorCreate(BaseModel):
    business_id: str
    processor_type: ProcessorType
    credentials: dict[str, Any]
    fee_percentage: Decimal | None = Field(default=None, ge=Decimal("0"), le=Decimal("100"), decimal_places=2)
    fixed_fee_cents: int = Field(default=0, ge=0)
    priority: int = Field(default=999, ge=0)
    settlement_schedule: Literal["daily", "weekly", "monthly"] = "weekly"
    min_payout_threshold_cents: int = Field(default=50000, ge=0)
    metadata: dict[str, Any] | None = None


class ProcessorRead(BaseModel):
    """Processor as exposed by the API; secret credential values are masked."""

    id: str
    business_id: str
    processor_type: ProcessorType
    status: ProcessorStatus
    is_active: bool
    priority: int
    fee_percentage: Decimal | None
    fixed_fee_cents: int
    settlement_schedule: str
    min_payout_threshold_cents: int
    credentials: dict[str, Any]
    webhook_url: str
    verified_at: datetime | None
    connection_error: str | None
    last_transaction_at: datetime | None
    created_at: datetime

    @classmethod
    def from_processor(cls, processor: PaymentProcessor, webhook_url: str) -> "ProcessorRead":
        return cls(
            id=processor.id,
            business_id=processor.business_id,
            processor_type=processor.processor_type,
            status=processor.status,
            is_active=processor.is_active,
            priority=processor.priority,
            fee_percentage=processor.fee_percentage,
            fixed_fee_cents=processor.fixed_fee_cents,
            settlement_schedule=processor.settlement_schedule,
            min_payout_threshold_cents=processor.min_payout_threshold_cents,
            credentials=sanitize_payload_for_audit(processor.credentials or {}),
            webhook_url=webhook_url,
            verified_at=processor.verified_at,
            connection_error=processor.connection_error,
            last_transaction_at=processor.last_transaction_at,
            created_at=processor.created_at,
        )


class ProcessorVerifyResponse(BaseModel):
    is_valid: bool
    error: str | None = None
    processor: ProcessorRead
