"""Payment lifecycle orchestration.

:class:`PaymentService` is the only writer of ``Payment`` rows. It owns the
session: adapters are asked to talk to the provider, and every outcome is
applied here through the state machine in :mod:`paygate.services.lifecycle`.
Metrics are emitted only after the transaction that applied a transition has
committed.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Mapping, TypeVar

import httpx
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from paygate.config import Settings, get_settings
from paygate.models import (
    OrderPaymentStatus,
    Payment,
    PaymentProcessor,
    PaymentRefund,
    PaymentStatus,
    ProcessorStatus,
    ProcessorType,
    RefundStatus,
)
from paygate.providers.base import CreatePaymentOptions, PaymentProcessorPort, WebhookEvent, WebhookEventType
from paygate.providers.registry import get_adapter, resolve_processor_type
from paygate.services import lifecycle
from paygate.services.idempotency import get_existing_by_key
from paygate.services.metrics import log_metric
from paygate.services.repositories import OrderRepository, PaymentRepository, ProcessorRepository
from paygate.services.webhook_events import find_processed_event, record_event
from paygate.utils.audit import log_audit, sanitize_payload_for_audit
from paygate.utils.errors import (
    ConflictError,
    NotFoundError,
    PaymentLayerError,
    ProviderError,
    ProviderTimeoutError,
    ValidationError,
)
from paygate.utils.masking import compact_identifier, mask_payment_method_details, truncate
from paygate.utils.time import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

STALE_RETRY_LIMIT = 3
FAILURE_REASON_MAX_LENGTH = 500
PROVIDER_TIMEOUT_REASON = "PROVIDER_TIMEOUT"
SUPERSEDED_REASON = "superseded by retry"


@dataclass
class PaymentIntentResult:
    payment: Payment
    client_secret: str | None = None
    payment_url: str | None = None
    additional_data: dict[str, Any] = field(default_factory=dict)

    @property
    def payment_id(self) -> str:
        return self.payment.id


@dataclass
class WebhookResult:
    processed: bool
    event_type: str
    event_id: str
    payment_id: str | None = None
    duplicate: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "event_type": self.event_type,
            "event_id": self.event_id,
            "payment_id": self.payment_id,
        }

    @classmethod
    def from_stored(cls, stored: Mapping[str, Any]) -> "WebhookResult":
        return cls(
            processed=bool(stored.get("processed")),
            event_type=str(stored.get("event_type") or WebhookEventType.PAYMENT_UNKNOWN.value),
            event_id=str(stored.get("event_id") or ""),
            payment_id=stored.get("payment_id"),
            duplicate=True,
        )


@dataclass
class RefundResult:
    refund: PaymentRefund
    payment: Payment
    replayed: bool = False


# (metric name, value) pairs collected during a transaction, emitted after commit.
Effects = list[tuple[str, int]]


class PaymentService:
    def __init__(
        self,
        db: Session,
        settings: Settings | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        adapters: Mapping[ProcessorType, PaymentProcessorPort] | None = None,
    ) -> None:
        self.db = db
        self.settings = settings or get_settings()
        self._transport = transport
        self._adapters: dict[ProcessorType, PaymentProcessorPort] = dict(adapters or {})
        self.orders = OrderRepository(db)
        self.processors = ProcessorRepository(db)
        self.payments = PaymentRepository(db)

    def adapter_for(self, processor_type: ProcessorType) -> PaymentProcessorPort:
        if processor_type not in self._adapters:
            self._adapters[processor_type] = get_adapter(processor_type, self.settings, transport=self._transport)
        return self._adapters[processor_type]

    def get_payment(self, payment_id: str) -> Payment:
        return self.payments.get(payment_id)

    # --- checkout ---------------------------------------------------------

    def create_payment(
        self,
        order_id: str,
        processor_id: str,
        options: CreatePaymentOptions | None = None,
        *,
        retry: bool = False,
    ) -> PaymentIntentResult:
        """Open a provider intent for an order and persist it as ``pending``."""

        order = self.orders.get(order_id)
        processor = self.processors.get(processor_id)
        if processor.business_id != order.business_id:
            raise ValidationError("Processor does not belong to the order's business", code="PROCESSOR_MISMATCH")
        if not processor.is_active or processor.status != ProcessorStatus.ACTIVE:
            raise ValidationError("Payment processor is not active", code="PROCESSOR_INACTIVE")
        if order.payment_status == OrderPaymentStatus.PAID:
            raise ConflictError("Order is already paid", code="ORDER_ALREADY_PAID")

        existing = self.payments.pending_for_order(order.id)
        if existing is not None:
            if not retry:
                raise ConflictError(
                    "A payment for this order is already in progress",
                    code="PAYMENT_IN_PROGRESS",
                    details={"payment_id": existing.id},
                )
            self._supersede_pending(existing)
            self.db.refresh(order)
            if order.payment_status == OrderPaymentStatus.PAID:
                raise ConflictError("Order is already paid", code="ORDER_ALREADY_PAID")

        adapter = self.adapter_for(processor.processor_type)
        options = options or CreatePaymentOptions()
        options.attempt = self.payments.count_for_order(order.id) + 1

        fee = adapter.calculate_fee(order.total_cents, processor)
        if fee > order.total_cents:
            raise ValidationError("Processor fee exceeds the payment amount", code="INVALID_FEE")

        payment = Payment(
            order_id=order.id,
            business_id=order.business_id,
            payment_processor_id=processor.id,
            processor_type=processor.processor_type,
            processor_payment_id=None
            if adapter.provider_assigns_payment_id
            else adapter.merchant_reference(order, options.attempt),
            amount_cents=order.total_cents,
            currency=order.currency,
            processor_fee_cents=fee,
            net_amount_cents=order.total_cents - fee,
            status=PaymentStatus.PENDING,
            metadata_json={"attempt": options.attempt},
        )
        order.payment_status = OrderPaymentStatus.UNPAID
        self.db.add(payment)
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            logger.warning("Concurrent checkout rejected", extra={"order_id": order.id})
            raise ConflictError(
                "A payment for this order is already in progress", code="PAYMENT_IN_PROGRESS"
            ) from exc

        try:
            intent = adapter.create_intent(order, processor, options)
        except ProviderTimeoutError as exc:
            if adapter.provider_assigns_payment_id:
                self._fail_creation(payment, PROVIDER_TIMEOUT_REASON, exc)
            else:
                # The reference is ours, so a later poll can still find the intent.
                payment.metadata_json = {**(payment.metadata_json or {}), "intent_unconfirmed": True}
                log_audit(
                    self.db,
                    actor="system",
                    action="PAYMENT_CREATED",
                    entity="Payment",
                    entity_id=payment.id,
                    data={"order_id": order.id, "intent_unconfirmed": True, "error_code": exc.code},
                )
                self.db.commit()
                logger.warning(
                    "Payment intent creation timed out; awaiting reconciliation",
                    extra={"payment_id": payment.id, "processor_type": processor.processor_type.value},
                )
            raise
        except PaymentLayerError as exc:
            self._fail_creation(payment, exc.message, exc)
            raise

        payment.processor_payment_id = intent.processor_payment_id
        payment.metadata_json = {
            **(payment.metadata_json or {}),
            **sanitize_payload_for_audit(intent.metadata),
        }
        log_audit(
            self.db,
            actor="system",
            action="PAYMENT_CREATED",
            entity="Payment",
            entity_id=payment.id,
            data={
                "order_id": order.id,
                "processor_type": processor.processor_type.value,
                "processor_payment_id": intent.processor_payment_id,
                "amount_cents": payment.amount_cents,
                "processor_fee_cents": fee,
                "attempt": options.attempt,
            },
        )
        self.db.commit()
        self._emit([(f"{processor.processor_type.value}_payment_created", payment.amount_cents)], payment)
        logger.info(
            "Payment created",
            extra={
                "payment_id": payment.id,
                "order_id": order.id,
                "processor_type": processor.processor_type.value,
            },
        )
        return PaymentIntentResult(
            payment=payment,
            client_secret=intent.client_secret,
            payment_url=intent.payment_url,
            additional_data=intent.additional_data,
        )

    def _fail_creation(self, payment: Payment, reason: str, exc: PaymentLayerError) -> None:
        payment.status = PaymentStatus.FAILED
        payment.failure_reason = truncate(reason, FAILURE_REASON_MAX_LENGTH)
        payment.metadata_json = {**(payment.metadata_json or {}), "error_code": exc.code}
        log_audit(
            self.db,
            actor="system",
            action="PAYMENT_STATUS_CHANGED",
            entity="Payment",
            entity_id=payment.id,
            data={
                "from": PaymentStatus.PENDING.value,
                "to": PaymentStatus.FAILED.value,
                "source": "create",
                "error_code": exc.code,
                "provider_response": getattr(exc, "response", None),
            },
        )
        self.db.commit()
        self._emit([(f"{payment.processor_type.value}_payment_failed", payment.amount_cents)], payment)
        logger.warning(
            "Payment creation failed",
            extra={"payment_id": payment.id, "error_code": exc.code},
        )

    def _supersede_pending(self, payment: Payment) -> None:
        """Settle a stale pending attempt before a retry takes its place."""

        try:
            payment = self.sync_payment_status(payment.id)
        except ProviderError as exc:
            raise ConflictError(
                "Previous payment attempt could not be confirmed, retry later",
                code="PAYMENT_IN_PROGRESS",
                details={"payment_id": payment.id},
            ) from exc
        if payment.status != PaymentStatus.PENDING:
            return

        def _abandon(row: Payment, effects: Effects) -> None:
            self._transition(
                row,
                PaymentStatus.FAILED,
                actor="system",
                source="retry",
                effects=effects,
                failure_reason=SUPERSEDED_REASON,
            )

        self._run_locked(payment.id, _abandon)

    # --- webhooks ---------------------------------------------------------

    def handle_webhook(
        self,
        processor_type: ProcessorType | str,
        raw_body: bytes,
        signature: str | None,
        *,
        processor_id: str | None = None,
    ) -> WebhookResult:
        """Verify, deduplicate and apply one provider callback."""

        ptype = resolve_processor_type(processor_type)
        processor = self._webhook_processor(ptype, processor_id)
        adapter = self.adapter_for(ptype)
        event = adapter.parse_webhook(raw_body, signature, processor)
        provider = ptype.value

        stored = find_processed_event(self.db, provider, event.event_id)
        if stored is not None:
            replay = WebhookResult.from_stored(stored.result_json)
            self.db.rollback()
            return replay

        if event.event_type is WebhookEventType.PAYMENT_UNKNOWN:
            self.db.commit()
            logger.info(
                "Webhook event ignored",
                extra={"processor_type": provider, "event_id": event.event_id, "provider_event": event.provider_event},
            )
            return WebhookResult(processed=False, event_type=event.event_type.value, event_id=event.event_id)

        payment = self._match_payment(ptype, event)
        if payment is None:
            self.db.commit()
            logger.info(
                "Webhook for unknown payment",
                extra={
                    "processor_type": provider,
                    "event_id": event.event_id,
                    "processor_payment_id": event.processor_payment_id,
                },
            )
            return WebhookResult(
                processed=False, event_type=WebhookEventType.PAYMENT_UNKNOWN.value, event_id=event.event_id
            )

        def _apply(row: Payment, effects: Effects) -> WebhookResult:
            anomaly = False
            if event.event_type is WebhookEventType.REFUND_COMPLETED:
                self._apply_refund_event(row, event, effects)
            else:
                target = lifecycle.target_for_event(event.event_type)
                anomaly = lifecycle.is_anomaly(row.status, target)
                self._transition(
                    row,
                    target,
                    actor=f"{provider}_webhook",
                    source="webhook",
                    effects=effects,
                    event=event,
                    failure_reason=event.failure_reason,
                )
            result = WebhookResult(
                processed=not anomaly,
                event_type=event.event_type.value,
                event_id=event.event_id,
                payment_id=row.id,
            )
            record_event(
                self.db,
                provider=provider,
                event=event,
                payment_id=row.id,
                result=result.as_dict(),
                settings=self.settings,
            )
            now = utcnow()
            processor.last_transaction_at = now
            processor.verified_at = now
            return result

        try:
            result = self._run_locked(payment.id, _apply)
        except IntegrityError:
            self.db.rollback()
            stored = find_processed_event(self.db, provider, event.event_id)
            if stored is None:
                raise
            logger.info("Concurrent duplicate webhook", extra={"processor_type": provider, "event_id": event.event_id})
            return WebhookResult.from_stored(stored.result_json)

        logger.info(
            "Webhook processed",
            extra={
                "processor_type": provider,
                "event_id": event.event_id,
                "event_type": event.event_type.value,
                "payment_id": result.payment_id,
            },
        )
        return result

    def _webhook_processor(self, processor_type: ProcessorType, processor_id: str | None) -> PaymentProcessor:
        if processor_id:
            processor = self.processors.get(processor_id)
            if processor.processor_type != processor_type:
                raise NotFoundError("Payment processor not found", code="PROCESSOR_NOT_FOUND")
            return processor
        processor = self.processors.first_active(processor_type)
        if processor is None:
            raise NotFoundError(f"No active {processor_type.value} processor", code="PROCESSOR_NOT_FOUND")
        return processor

    def _match_payment(self, processor_type: ProcessorType, event: WebhookEvent) -> Payment | None:
        payment = self.payments.find_by_processor_ref(processor_type, event.processor_payment_id)
        if payment is None and event.event_type is WebhookEventType.REFUND_COMPLETED:
            payment = self.payments.find_by_charge_id(processor_type, event.processor_charge_id)
        return payment

    # --- refunds ----------------------------------------------------------

    def create_refund(
        self,
        payment_id: str,
        amount_cents: int | None = None,
        *,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> RefundResult:
        """Refund all or part of a succeeded payment.

        The refund row and its reference are committed before the provider is
        called. A retry of a request that timed out reuses that row, and with
        it the reference the provider deduplicates on.
        """

        existing = get_existing_by_key(self.db, PaymentRefund, idempotency_key)
        if existing is not None:
            if existing.payment_id != payment_id:
                raise ConflictError("Idempotency key already used for another payment", code="IDEMPOTENCY_KEY_REUSED")
            if not self._awaiting_provider(existing):
                return RefundResult(refund=existing, payment=existing.payment, replayed=True)

        payment = self.payments.get(payment_id)
        if payment.status != PaymentStatus.SUCCEEDED:
            raise ValidationError(
                f"Payment in status {payment.status.value} cannot be refunded", code="PAYMENT_NOT_REFUNDABLE"
            )

        refund = existing or self._unconfirmed_refund(payment, amount_cents)
        if refund is None:
            amount = payment.refundable_cents if amount_cents is None else amount_cents
            if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
                raise ValidationError("Refund amount must be a positive integer", code="INVALID_AMOUNT")
            if amount > payment.refundable_cents:
                raise ValidationError(
                    "Refund amount exceeds the refundable balance",
                    code="REFUND_EXCEEDS_AMOUNT",
                    details={"refundable_cents": payment.refundable_cents},
                )
            refund = PaymentRefund(
                payment_id=payment.id,
                reference=self._refund_reference(payment),
                idempotency_key=idempotency_key,
                amount_cents=amount,
                reason=truncate(reason, 255) if reason else None,
                status=RefundStatus.PENDING,
            )
            self.db.add(refund)
            log_audit(
                self.db,
                actor="api",
                action="REFUND_REQUESTED",
                entity="Payment",
                entity_id=payment.id,
                data={"reference": refund.reference, "amount_cents": amount, "reason": reason},
            )
            try:
                self.db.commit()
            except IntegrityError as exc:
                self.db.rollback()
                raise ConflictError("A refund for this request is already in progress", code="REFUND_IN_PROGRESS") from exc
        else:
            logger.info("Retrying unconfirmed refund", extra={"payment_id": payment.id, "reference": refund.reference})

        adapter = self.adapter_for(payment.processor_type)
        try:
            provider_refund = adapter.create_refund(
                payment,
                refund.amount_cents,
                payment.processor,
                reference=refund.reference,
                reason=refund.reason,
            )
        except ProviderTimeoutError:
            logger.warning(
                "Refund call timed out; refund left pending",
                extra={"payment_id": payment.id, "reference": refund.reference},
            )
            raise
        except PaymentLayerError as exc:
            self._fail_refund(refund, exc.message, exc.code, getattr(exc, "response", None))
            raise

        if provider_refund.status == "failed":
            self._fail_refund(refund, "Provider rejected the refund", None, provider_refund.raw)
            raise ProviderError(
                "Provider rejected the refund",
                code=f"{adapter.code_prefix}_REFUND_FAILED",
                response=provider_refund.raw,
            )

        refund_id = refund.id

        def _account(row: Payment, effects: Effects) -> PaymentRefund:
            refund_row = self.db.get(PaymentRefund, refund_id)
            refund_row.processor_refund_id = provider_refund.refund_id
            if provider_refund.status == "succeeded":
                refund_row.status = RefundStatus.SUCCEEDED
                refund_row.completed_at = utcnow()
            self._record_refund_total(
                row,
                row.refunded_amount_cents + refund_row.amount_cents,
                refund_id=provider_refund.refund_id,
                amount_cents=refund_row.amount_cents,
                reason=refund_row.reason,
                actor="api",
                effects=effects,
            )
            effects.append((f"{row.processor_type.value}_refund_created", refund_row.amount_cents))
            return refund_row

        refund = self._run_locked(payment.id, _account)
        payment = self.payments.get(payment.id)
        logger.info(
            "Refund created",
            extra={"payment_id": payment.id, "reference": refund.reference, "amount_cents": refund.amount_cents},
        )
        return RefundResult(refund=refund, payment=payment)

    @staticmethod
    def _awaiting_provider(refund: PaymentRefund) -> bool:
        return refund.status == RefundStatus.PENDING and not refund.processor_refund_id

    def _unconfirmed_refund(self, payment: Payment, amount_cents: int | None) -> PaymentRefund | None:
        """Return a timed-out refund this request is retrying, or refuse a second one in flight."""

        stmt = select(PaymentRefund).where(
            PaymentRefund.payment_id == payment.id,
            PaymentRefund.status == RefundStatus.PENDING,
            PaymentRefund.processor_refund_id.is_(None),
        )
        pending = self.db.scalars(stmt).first()
        if pending is None:
            return None
        requested = payment.refundable_cents if amount_cents is None else amount_cents
        if requested != pending.amount_cents:
            raise ConflictError(
                "Another refund for this payment is awaiting confirmation",
                code="REFUND_IN_PROGRESS",
                details={"reference": pending.reference},
            )
        return pending

    def _refund_reference(self, payment: Payment) -> str:
        sequence = self.payments.refund_count(payment.id) + 1
        return f"RF{compact_identifier(payment.id, 20)}{sequence:02d}"

    def _fail_refund(self, refund: PaymentRefund, reason: str, code: str | None, response: Any) -> None:
        refund.status = RefundStatus.FAILED
        refund.failure_reason = truncate(reason, FAILURE_REASON_MAX_LENGTH)
        log_audit(
            self.db,
            actor="api",
            action="REFUND_FAILED",
            entity="Payment",
            entity_id=refund.payment_id,
            data={"reference": refund.reference, "error_code": code, "provider_response": response},
        )
        self.db.commit()
        logger.warning("Refund failed", extra={"payment_id": refund.payment_id, "error_code": code})

    def _apply_refund_event(self, payment: Payment, event: WebhookEvent, effects: Effects) -> bool:
        if payment.status not in (PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED):
            logger.warning(
                "Refund event for a payment that never succeeded",
                extra={"payment_id": payment.id, "status": payment.status.value, "event_id": event.event_id},
            )
            return False

        refund = self._refund_for_event(payment, event)
        external = False
        if refund is not None:
            # A refund with a provider id was counted when the provider accepted it.
            delta = 0 if refund.processor_refund_id else refund.amount_cents
            if refund.status != RefundStatus.SUCCEEDED:
                refund.processor_refund_id = refund.processor_refund_id or event.refund_id
                refund.status = RefundStatus.SUCCEEDED
                refund.completed_at = utcnow()
        else:
            if event.refund_total_cents is not None:
                delta = event.refund_total_cents - payment.refunded_amount_cents
            else:
                delta = event.refund_amount_cents or 0
            if delta > 0:
                external = True
                refund = PaymentRefund(
                    payment_id=payment.id,
                    reference=self._refund_reference(payment),
                    amount_cents=delta,
                    reason="provider initiated",
                    status=RefundStatus.SUCCEEDED,
                    processor_refund_id=event.refund_id,
                    completed_at=utcnow(),
                )
                self.db.add(refund)

        previous = payment.refunded_amount_cents
        total = previous + delta
        if event.refund_total_cents is not None:
            total = max(total, event.refund_total_cents)
        total = min(total, payment.amount_cents)
        if total == previous:
            return False

        self._record_refund_total(
            payment,
            total,
            refund_id=event.refund_id,
            amount_cents=total - previous,
            reason=refund.reason if refund is not None else None,
            actor=f"{payment.processor_type.value}_webhook",
            effects=effects,
        )
        if external:
            effects.append((f"{payment.processor_type.value}_refund_created", total - previous))
        return True

    def _refund_for_event(self, payment: Payment, event: WebhookEvent) -> PaymentRefund | None:
        if event.refund_id:
            refund = self.db.scalars(
                select(PaymentRefund).where(
                    PaymentRefund.payment_id == payment.id,
                    PaymentRefund.processor_refund_id == event.refund_id,
                )
            ).first()
            if refund is not None:
                return refund
        if event.refund_amount_cents:
            return self.db.scalars(
                select(PaymentRefund).where(
                    PaymentRefund.payment_id == payment.id,
                    PaymentRefund.status == RefundStatus.PENDING,
                    PaymentRefund.processor_refund_id.is_(None),
                    PaymentRefund.amount_cents == event.refund_amount_cents,
                )
            ).first()
        return None

    def _record_refund_total(
        self,
        payment: Payment,
        total_cents: int,
        *,
        refund_id: str | None,
        amount_cents: int,
        reason: str | None,
        actor: str,
        effects: Effects,
    ) -> None:
        payment.refunded_amount_cents = total_cents
        payment.refund_details = {
            "refund_id": refund_id,
            "refund_amount_cents": amount_cents,
            "refund_reason": reason,
            "refunded_at": utcnow().isoformat(),
            "total_refunded_cents": total_cents,
        }
        log_audit(
            self.db,
            actor=actor,
            action="REFUND_COMPLETED",
            entity="Payment",
            entity_id=payment.id,
            data={"refund_id": refund_id, "amount_cents": amount_cents, "total_refunded_cents": total_cents},
        )
        if lifecycle.refund_completes_payment(payment.amount_cents, total_cents):
            self._transition(payment, PaymentStatus.REFUNDED, actor=actor, source="refund", effects=effects)

    # --- polling ----------------------------------------------------------

    def sync_payment_status(self, payment_id: str) -> Payment:
        """Poll the provider for a pending payment and apply what it reports."""

        payment = self.payments.get(payment_id)
        if payment.status != PaymentStatus.PENDING or not payment.processor_payment_id:
            return payment

        adapter = self.adapter_for(payment.processor_type)
        polled = adapter.get_payment_status(payment.processor_payment_id, payment.processor)
        target, reason_override = lifecycle.target_for_poll(polled.status)
        if target is None:
            logger.info("Payment still pending at provider", extra={"payment_id": payment.id})
            return payment

        def _apply(row: Payment, effects: Effects) -> Payment:
            self._transition(
                row,
                target,
                actor="reconciliation",
                source="poll",
                effects=effects,
                failure_reason=reason_override or polled.failure_reason,
                charge_id=polled.processor_charge_id,
                payment_method=polled.payment_method,
                metadata=polled.metadata,
            )
            return row

        return self._run_locked(payment.id, _apply)

    def reconcile_stale_pending(self, *, older_than_minutes: int = 30, limit: int = 100) -> dict[str, int]:
        """Poll every pending payment older than the cutoff; used by the maintenance job."""

        cutoff = utcnow() - timedelta(minutes=older_than_minutes)
        stats = {"checked": 0, "updated": 0, "errors": 0}
        for payment in self.payments.stale_pending(cutoff, limit=limit):
            stats["checked"] += 1
            try:
                synced = self.sync_payment_status(payment.id)
            except PaymentLayerError as exc:
                self.db.rollback()
                stats["errors"] += 1
                logger.warning(
                    "Reconciliation poll failed",
                    extra={"payment_id": payment.id, "error_code": exc.code},
                )
                continue
            if synced.status != PaymentStatus.PENDING:
                stats["updated"] += 1
        logger.info("Stale pending reconciliation finished", extra=stats)
        return stats

    # --- state machine application ---------------------------------------

    def _transition(
        self,
        payment: Payment,
        target: PaymentStatus,
        *,
        actor: str,
        source: str,
        effects: Effects,
        event: WebhookEvent | None = None,
        failure_reason: str | None = None,
        charge_id: str | None = None,
        payment_method: str | None = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> bool:
        current = payment.status
        outcome = lifecycle.evaluate_transition(current, target)
        event_id = event.event_id if event else None
        if outcome is lifecycle.TransitionOutcome.NOOP:
            logger.info("Payment already in target status", extra={"payment_id": payment.id, "status": target.value})
            return False
        if outcome is lifecycle.TransitionOutcome.REJECTED:
            if lifecycle.is_anomaly(current, target):
                logger.error(
                    "Payment status anomaly",
                    extra={"payment_id": payment.id, "from": current.value, "to": target.value, "event_id": event_id},
                )
                log_audit(
                    self.db,
                    actor=actor,
                    action="PAYMENT_STATUS_ANOMALY",
                    entity="Payment",
                    entity_id=payment.id,
                    data={
                        "from": current.value,
                        "to": target.value,
                        "source": source,
                        "event_id": event_id,
                        "failure_reason": failure_reason,
                    },
                )
            else:
                logger.warning(
                    "Payment transition rejected",
                    extra={"payment_id": payment.id, "from": current.value, "to": target.value},
                )
            return False

        payment.status = target
        extra_metadata: dict[str, Any] = dict(metadata or {})
        if event is not None:
            charge_id = charge_id or event.processor_charge_id
            payment_method = payment_method or event.payment_method
            extra_metadata.update(event.metadata)
            if target == PaymentStatus.SUCCEEDED and event.payment_method_details:
                payment.payment_method_details = mask_payment_method_details(event.payment_method_details)
            if (
                target == PaymentStatus.SUCCEEDED
                and event.amount_cents is not None
                and event.amount_cents != payment.amount_cents
            ):
                logger.warning(
                    "Provider reported a different amount",
                    extra={"payment_id": payment.id, "reported_cents": event.amount_cents},
                )
                extra_metadata["reported_amount_cents"] = event.amount_cents

        if target == PaymentStatus.SUCCEEDED:
            if charge_id:
                payment.processor_charge_id = charge_id
            if payment_method:
                payment.payment_method = payment_method
            payment.failure_reason = None
        elif target == PaymentStatus.FAILED:
            payment.failure_reason = truncate(failure_reason or "Payment failed", FAILURE_REASON_MAX_LENGTH)

        if extra_metadata:
            payment.metadata_json = {
                **(payment.metadata_json or {}),
                **sanitize_payload_for_audit(extra_metadata),
            }

        order = payment.order
        order_status = lifecycle.order_status_after(target, order.payment_status)
        if order_status is not None:
            order.payment_status = order_status

        log_audit(
            self.db,
            actor=actor,
            action="PAYMENT_STATUS_CHANGED",
            entity="Payment",
            entity_id=payment.id,
            data={"from": current.value, "to": target.value, "source": source, "event_id": event_id},
        )
        prefix = payment.processor_type.value
        if target == PaymentStatus.SUCCEEDED:
            effects.append((f"{prefix}_payment_completed", payment.amount_cents))
        elif target == PaymentStatus.FAILED:
            effects.append((f"{prefix}_payment_failed", payment.amount_cents))
        logger.info(
            "Payment status changed",
            extra={"payment_id": payment.id, "from": current.value, "to": target.value, "source": source},
        )
        return True

    def _run_locked(self, payment_id: str, mutate: Callable[[Payment, Effects], T]) -> T:
        """Apply ``mutate`` to a freshly locked row and commit, retrying on version conflicts."""

        for attempt in range(1, STALE_RETRY_LIMIT + 1):
            effects: Effects = []
            try:
                payment = self.payments.get_for_update(payment_id)
                outcome = mutate(payment, effects)
                self.db.commit()
            except StaleDataError:
                self.db.rollback()
                logger.warning(
                    "Concurrent payment update detected; retrying",
                    extra={"payment_id": payment_id, "attempt": attempt},
                )
                continue
            self._emit(effects, payment)
            return outcome
        raise ConflictError("Payment is being updated concurrently, retry later", code="PAYMENT_BUSY")

    def _emit(self, effects: Effects, payment: Payment) -> None:
        for name, value in effects:
            log_metric(name, value, {"processor": payment.processor_type.value, "payment_id": payment.id})


__all__ = [
    "PaymentService",
    "PaymentIntentResult",
    "WebhookResult",
    "RefundResult",
]
