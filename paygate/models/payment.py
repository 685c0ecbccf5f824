"""Payment model definitions."""
import enum

from sqlalchemy import (
    CheckConstraint,
    Enum as SqlEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base
from .payment_processor import ProcessorType


class PaymentStatus(str, enum.Enum):
    """Lifecycle of a payment attempt. ``failed`` and ``refunded`` are terminal."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


def _values(members):
    return [m.value for m in members]


class Payment(Base):
    """One attempt to collect an order's amount through one processor.

    JSON columns are replaced wholesale on update; in-place mutation is not
    tracked by the ORM.
    """

    __tablename__ = "payments"
    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_payments_amount_positive"),
        CheckConstraint("net_amount_cents = amount_cents - processor_fee_cents", name="ck_payments_net_amount"),
        CheckConstraint("refunded_amount_cents >= 0", name="ck_payments_refunded_non_negative"),
        UniqueConstraint("processor_type", "processor_payment_id", name="uq_payments_processor_ref"),
        # At most one attempt in flight per order.
        Index(
            "uq_payments_order_pending",
            "order_id",
            unique=True,
            sqlite_where=text("status = 'pending'"),
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_payments_status_created", "status", "created_at"),
        Index("ix_payments_charge_id", "processor_type", "processor_charge_id"),
    )

    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), nullable=False, index=True)
    business_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    payment_processor_id: Mapped[str] = mapped_column(ForeignKey("payment_processors.id"), nullable=False)
    processor_type: Mapped[ProcessorType] = mapped_column(
        SqlEnum(ProcessorType, native_enum=False, length=16, values_callable=_values), nullable=False
    )
    processor_payment_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    processor_charge_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    processor_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    net_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        SqlEnum(PaymentStatus, native_enum=False, length=16, values_callable=_values),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    payment_method_details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    refunded_amount_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    refund_details: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    order = relationship("Order")
    processor = relationship("PaymentProcessor")
    refunds = relationship("PaymentRefund", back_populates="payment", order_by="PaymentRefund.created_at")

    @property
    def refundable_cents(self) -> int:
        return self.amount_cents - (self.refunded_amount_cents or 0)
