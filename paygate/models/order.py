"""Order model as seen by the payment layer."""
import enum

from sqlalchemy import CheckConstraint, Enum as SqlEnum, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class OrderPaymentStatus(str, enum.Enum):
    """Payment status of an order; the only order field this layer writes."""

    UNPAID = "unpaid"
    PAID = "paid"
    FAILED = "failed"


class Order(Base):
    """Marketplace order. Financial facts are immutable once a payment exists."""

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total_cents > 0", name="ck_orders_total_positive"),
        Index("ix_orders_business_id", "business_id"),
    )

    business_id: Mapped[str] = mapped_column(String(36), nullable=False)
    business_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    total_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="INR")
    customer_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_status: Mapped[OrderPaymentStatus] = mapped_column(
        SqlEnum(
            OrderPaymentStatus,
            native_enum=False,
            length=16,
            values_callable=lambda members: [m.value for m in members],
        ),
        nullable=False,
        default=OrderPaymentStatus.UNPAID,
    )
