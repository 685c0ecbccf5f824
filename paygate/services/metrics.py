"""Fire-and-forget metrics sink for payment events."""
from __future__ import annotations

import logging
from typing import Any, Mapping

from prometheus_client import Counter

from paygate.config import get_settings

logger = logging.getLogger(__name__)

PAYMENT_EVENTS = Counter(
    "paygate_payment_events_total",
    "Payment lifecycle events by name and processor.",
    ["event", "processor"],
)
PAYMENT_AMOUNT = Counter(
    "paygate_payment_amount_minor_units_total",
    "Sum of amounts (minor units) attached to payment lifecycle events.",
    ["event", "processor"],
)


def log_metric(event: str, value: int | float, tags: Mapping[str, Any] | None = None) -> None:
    """Record a metric; never raises.

    ``processor`` in ``tags`` becomes a Prometheus label, the remaining tags
    only go to the structured log line to keep label cardinality bounded.
    """

    try:
        if not get_settings().METRICS_ENABLED:
            return
        tags = dict(tags or {})
        processor = str(tags.get("processor", "unknown"))
        PAYMENT_EVENTS.labels(event=event, processor=processor).inc()
        if value:
            PAYMENT_AMOUNT.labels(event=event, processor=processor).inc(value)
        logger.info("metric", extra={"metric": event, "value": value, "tags": tags})
    except Exception:  # noqa: BLE001 - metrics must never break the payment path
        logger.warning("Failed to record metric", extra={"metric": event}, exc_info=True)


__all__ = ["log_metric", "PAYMENT_EVENTS", "PAYMENT_AMOUNT"]
