"""Health check endpoint."""
from __future__ import annotations

import logging

from fastapi import APIRouter
from sqlalchemy import text

from paygate.config import get_settings
from paygate.db import get_engine
from paygate.providers.registry import ADAPTERS

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _db_status() -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


@router.get("", summary="Health check")
def healthcheck() -> dict[str, object]:
    settings = get_settings()
    db_status = _db_status()
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "env": settings.app_env,
        "db_ok": db_status == "ok",
        "db_status": db_status,
        "providers": sorted(processor_type.value for processor_type in ADAPTERS),
        "metrics_enabled": bool(settings.METRICS_ENABLED),
        "prometheus_enabled": bool(settings.PROMETHEUS_ENABLED),
    }
