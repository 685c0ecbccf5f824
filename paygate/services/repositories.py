"""Query helpers for orders, processors and payments."""
from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from paygate.models import Order, Payment, PaymentProcessor, PaymentRefund, PaymentStatus, ProcessorType
from paygate.utils.errors import NotFoundError


def _supports_row_locks(db: Session) -> bool:
    return db.get_bind().dialect.name != "sqlite"


class OrderRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, order_id: str) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")
        return order


class ProcessorRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, processor_id: str) -> PaymentProcessor:
        processor = self.db.get(PaymentProcessor, processor_id)
        if processor is None:
            raise NotFoundError("Payment processor not found", code="PROCESSOR_NOT_FOUND")
        return processor

    def first_active(self, processor_type: ProcessorType) -> PaymentProcessor | None:
        stmt = (
            select(PaymentProcessor)
            .where(PaymentProcessor.processor_type == processor_type, PaymentProcessor.is_active.is_(True))
            .order_by(PaymentProcessor.priority, PaymentProcessor.created_at)
            .limit(1)
        )
        return self.db.scalars(stmt).first()

    def for_business(self, business_id: str) -> list[PaymentProcessor]:
        stmt = (
            select(PaymentProcessor)
            .where(PaymentProcessor.business_id == business_id)
            .order_by(PaymentProcessor.priority, PaymentProcessor.created_at)
        )
        return list(self.db.scalars(stmt))


class PaymentRepository:
    def __init__(self, db: Session) -> None:
        self.db = db

    def get(self, payment_id: str) -> Payment:
        payment = self.db.get(Payment, payment_id)
        if payment is None:
            raise NotFoundError("Payment not found", code="PAYMENT_NOT_FOUND")
        return payment

    def get_for_update(self, payment_id: str) -> Payment:
        """Reload the row, locking it where the backend supports ``FOR UPDATE``."""

        stmt = select(Payment).where(Payment.id == payment_id).execution_options(populate_existing=True)
        if _supports_row_locks(self.db):
            stmt = stmt.with_for_update()
        payment = self.db.scalars(stmt).one_or_none()
        if payment is None:
            raise NotFoundError("Payment not found", code="PAYMENT_NOT_FOUND")
        return payment

    def find_by_processor_ref(self, processor_type: ProcessorType, processor_payment_id: str | None) -> Payment | None:
        if not processor_payment_id:
            return None
        stmt = select(Payment).where(
            Payment.processor_type == processor_type,
            Payment.processor_payment_id == processor_payment_id,
        )
        return self.db.scalars(stmt).one_or_none()

    def find_by_charge_id(self, processor_type: ProcessorType, charge_id: str | None) -> Payment | None:
        if not charge_id:
            return None
        stmt = (
            select(Payment)
            .where(Payment.processor_type == processor_type, Payment.processor_charge_id == charge_id)
            .limit(1)
        )
        return self.db.scalars(stmt).first()

    def pending_for_order(self, order_id: str) -> Payment | None:
        stmt = select(Payment).where(Payment.order_id == order_id, Payment.status == PaymentStatus.PENDING)
        return self.db.scalars(stmt).first()

    def count_for_order(self, order_id: str) -> int:
        return self.db.scalar(select(func.count(Payment.id)).where(Payment.order_id == order_id)) or 0

    def stale_pending(self, older_than, *, limit: int = 100) -> list[Payment]:
        stmt = (
            select(Payment)
            .where(Payment.status == PaymentStatus.PENDING, Payment.created_at <= older_than)
            .order_by(Payment.created_at)
            .limit(limit)
        )
        return list(self.db.scalars(stmt))

    def refund_count(self, payment_id: str) -> int:
        return self.db.scalar(
            select(func.count(PaymentRefund.id)).where(PaymentRefund.payment_id == payment_id)
        ) or 0


__all__ = ["OrderRepository", "ProcessorRepository", "PaymentRepository"]
