"""Seed a demo order and sandbox processor for local development."""
from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

from paygate import db  # noqa: E402
from paygate import models  # noqa: E402
from paygate.config import get_settings  # noqa: E402


def main() -> None:
    settings = get_settings()
    print(f"Using database: {settings.database_url}")

    db.create_all()
    with db.session_scope() as session:
        business_id = "demo-business"
        processor = models.PaymentProcessor(
            business_id=business_id,
            processor_type=models.ProcessorType.PAYTM,
            status=models.ProcessorStatus.ACTIVE,
            is_active=True,
            priority=1,
            credentials={
                "merchant_id": os.getenv("PAYTM_MERCHANT_ID", "DEMO_MID_001"),
                "merchant_key": os.getenv("PAYTM_MERCHANT_KEY", "demo_merchant_key_0001"),
                "website": "WEBSTAGING",
            },
        )
        order = models.Order(
            business_id=business_id,
            business_name="Demo Store",
            total_cents=45000,
            currency="INR",
            customer_name="Demo Customer",
            customer_phone="+91 98765 43210",
            customer_email="customer@example.com",
        )
        session.add_all([processor, order])
        session.commit()
        print(f"Seed data inserted: order={order.id} processor={processor.id}")


if __name__ == "__main__":
    main()
