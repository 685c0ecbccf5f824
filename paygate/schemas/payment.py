"""Schemas for payments and refunds."""
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from paygate.models import PaymentStatus, ProcessorType, RefundStatus


class PaymentCreate(BaseModel):
    order_id: str
    processor_id: str
    description: str | None = Field(default=None, max_length=255)
    metadata: dict[str, str] = Field(default_factory=dict)
    redirect_url: str | None = None
    callback_url: str | None = None
    retry: bool = False


class PaymentRead(BaseModel):
    id: str
    order_id: str
    business_id: str
    payment_processor_id: str
    processor_type: ProcessorType
    processor_payment_id: str | None
    processor_charge_id: str | None
    amount_cents: int
    currency: str
    processor_fee_cents: int
    net_amount_cents: int
    status: PaymentStatus
    payment_method: str | None
    payment_method_details: dict[str, Any] | None
    failure_reason: str | None
    refunded_amount_cents: int
    refund_details: dict[str, Any] | None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class PaymentIntentResponse(BaseModel):
    payment_id: str
    status: PaymentStatus
    client_secret: str | None = None
    payment_url: str | None = None
    additional_data: dict[str, Any] = Field(default_factory=dict)
    payment: PaymentRead


class RefundCreate(BaseModel):
    amount_cents: int | None = Field(default=None, gt=0)
    reason: str | None = Field(default=None, max_length=255)
    idempotency_key: str | None = Field(default=None, max_length=128)


class RefundRead(BaseModel):
    id: str
    payment_id: str
    reference: str
    amount_cents: int
    reason: str | None
    status: RefundStatus
    processor_refund_id: str | None
    created_at: datetime
    completed_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class RefundResponse(BaseModel):
    refund: RefundRead
    payment: PaymentRead
    replayed: bool = False
