"""Webhook acknowledgement schema."""
from pydantic import BaseModel


class WebhookResponse(BaseModel):
    processed: bool
    event_type: str
    event_id: str
    payment_id: str | None = None
    duplicate: bool = False
