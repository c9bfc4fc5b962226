"""
Stripe webhook route.

Receives Stripe event deliveries and hands them to the webhook processor.
"""
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from donation_ledger.database import get_db
from donation_ledger.schemas.imports import WebhookResponse
from donation_ledger.services.adapters import StripeWebhookProcessor

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/stripe", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
) -> dict:
    """
    Handle a Stripe webhook delivery.

    A bad signature is answered with 400 so Stripe does not count the
    delivery as received. Payments that fail to import are still
    acknowledged; the failure is reported in the response body.
    """
    payload = await request.body()

    processor = StripeWebhookProcessor(db)
    result = processor.process(payload, stripe_signature)

    if result.import_result is not None and not result.import_result.success:
        logger.warning(
            "stripe_webhook_import_failed",
            event_id=result.event_id,
            error=result.import_result.error,
            error_kind=result.import_result.error_kind,
        )

    return result.to_dict()
