"""API routers for the payment integration layer."""
from fastapi import APIRouter

from . import health, payments, processors, webhooks


def get_api_router() -> APIRouter:
    """Return the root API router."""

    api_router = APIRouter()
    api_router.include_router(health.router)
    api_router.include_router(payments.router)
    api_router.include_router(processors.router)
    api_router.include_router(webhooks.router)
    return api_router
