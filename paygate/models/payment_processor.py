"""Per-business payment processor configuration."""
import enum
from datetime import datetime
from decimal import Decimal

from sqlalchemy import Boolean, DateTime, Enum as SqlEnum, Index, Integer, JSON, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class ProcessorType(str, enum.Enum):
    """Closed set of supported payment providers."""

    RAZORPAY = "razorpay"
    PHONEPE = "phonepe"
    PAYTM = "paytm"
    STRIPE = "stripe"


class ProcessorStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING_VERIFICATION = "pending_verification"
    FAILED = "failed"


def _values(members):
    return [m.value for m in members]


class PaymentProcessor(Base):
    """Credentials and fee policy for one provider account of one business.

    Rows are read-only while payments run against them; only processor
    management (connect, verify, disconnect) and webhook bookkeeping
    (``last_transaction_at``) write here.
    """

    __tablename__ = "payment_processors"
    __table_args__ = (
        Index("ix_payment_processors_business_type", "business_id", "processor_type"),
        Index("ix_payment_processors_business_priority", "business_id", "priority"),
    )

    business_id: Mapped[str] = mapped_column(String(36), nullable=False)
    processor_type: Mapped[ProcessorType] = mapped_column(
        SqlEnum(ProcessorType, native_enum=False, length=16, values_callable=_values), nullable=False
    )
    status: Mapped[ProcessorStatus] = mapped_column(
        SqlEnum(ProcessorStatus, native_enum=False, length=32, values_callable=_values),
        nullable=False,
        default=ProcessorStatus.PENDING_VERIFICATION,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=999)
    credentials: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    fee_percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    fixed_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    settlement_schedule: Mapped[str] = mapped_column(String(16), nullable=False, default="weekly")
    min_payout_threshold_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=50000)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    connection_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_transaction_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
