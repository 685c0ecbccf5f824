"""Shared FastAPI dependencies."""
from __future__ import annotations

import httpx
from fastapi import Depends
from sqlalchemy.orm import Session

from paygate.db import get_db
from paygate.services.payments import PaymentService


def get_provider_transport() -> httpx.BaseTransport | None:
    """Outbound transport for provider HTTP calls; ``None`` uses httpx's default."""

    return None


def get_payment_service(
    db: Session = Depends(get_db),
    transport: httpx.BaseTransport | None = Depends(get_provider_transport),
) -> PaymentService:
    return PaymentService(db, transport=transport)


__all__ = ["get_provider_transport", "get_payment_service"]
