"""Persisted deduplication of provider webhook deliveries."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from paygate.config import Settings, get_settings
from paygate.models import ProcessedWebhookEvent
from paygate.providers.base import WebhookEvent
from paygate.utils.time import days_from_now, ensure_aware, utcnow

logger = logging.getLogger(__name__)


def find_processed_event(
    db: Session, provider: str, event_id: str, *, now: datetime | None = None
) -> ProcessedWebhookEvent | None:
    """Return the stored delivery for ``(provider, event_id)`` if still retained.

    An expired row is removed on sight so the event id can be recorded again
    in the caller's transaction.
    """

    row = db.scalars(
        select(ProcessedWebhookEvent)
        .where(ProcessedWebhookEvent.provider == provider, ProcessedWebhookEvent.event_id == event_id)
        .execution_options(populate_existing=True)
    ).one_or_none()
    if row is None:
        return None
    if ensure_aware(row.expires_at) <= (now or utcnow()):
        logger.info("Expired webhook dedup record ignored", extra={"provider": provider, "event_id": event_id})
        db.delete(row)
        db.flush()
        return None
    logger.info("Duplicate webhook delivery", extra={"provider": provider, "event_id": event_id})
    return row


def record_event(
    db: Session,
    *,
    provider: str,
    event: WebhookEvent,
    payment_id: str | None,
    result: dict[str, Any],
    settings: Settings | None = None,
) -> ProcessedWebhookEvent:
    """Stage the dedup row in the caller's transaction.

    The flush surfaces a concurrent duplicate as ``IntegrityError`` before the
    caller commits its state change.
    """

    settings = settings or get_settings()
    now = utcnow()
    row = ProcessedWebhookEvent(
        provider=provider,
        event_id=event.event_id,
        event_type=event.event_type.value,
        processor_payment_id=event.processor_payment_id,
        payment_id=payment_id,
        result_json=result,
        received_at=now,
        processed_at=now,
        expires_at=days_from_now(settings.WEBHOOK_DEDUP_RETENTION_DAYS, now=now),
    )
    db.add(row)
    db.flush()
    return row


def purge_expired_events(db: Session, *, now: datetime | None = None) -> int:
    """Delete dedup rows past their retention; returns the number removed."""

    result = db.execute(
        delete(ProcessedWebhookEvent)
        .where(ProcessedWebhookEvent.expires_at <= (now or utcnow()))
        .execution_options(synchronize_session="fetch")
    )
    db.commit()
    removed = result.rowcount or 0
    logger.info("Expired webhook dedup records purged", extra={"count": removed})
    return removed


__all__ = ["find_processed_event", "record_event", "purge_expired_events"]
