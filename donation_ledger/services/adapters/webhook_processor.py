"""
Stripe webhook processor.

Verifies a Stripe webhook delivery and turns the events the ledger cares
about into PaymentImporter calls or sponsorship updates.

Events handled:
- charge.succeeded: one-off payment
- invoice.payment_succeeded / invoice.paid: subscription payment
- customer.subscription.deleted: ends the subscription's sponsorships
"""
import json
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Any, Dict, Optional

import stripe
import structlog
from sqlalchemy.orm import Session

from donation_ledger.config import get_settings
from donation_ledger.exceptions import (
    WebhookNotConfiguredError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from donation_ledger.models import Sponsorship
from donation_ledger.services.payment_importer import PaymentImporter
from donation_ledger.services.payment_record import SUCCEEDED_STATUS, ImportResult, PaymentRecord

logger = structlog.get_logger(__name__)

CHARGE_SUCCEEDED = "charge.succeeded"
INVOICE_PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
INVOICE_PAID = "invoice.paid"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

ACTION_IMPORTED = "imported"
ACTION_DEFERRED = "deferred_to_invoice"
ACTION_SPONSORSHIPS_ENDED = "sponsorships_ended"
ACTION_IGNORED = "ignored"


@dataclass
class WebhookResult:
    """What a webhook delivery did."""

    event_type: str
    action: str
    event_id: Optional[str] = None
    import_result: Optional[ImportResult] = None
    sponsorships_ended: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "action": self.action,
            "import_result": self.import_result.to_dict() if self.import_result else None,
            "sponsorships_ended": self.sponsorships_ended,
        }


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _object_id(value: Any) -> Optional[str]:
    """Stripe fields may hold an id or an expanded object."""
    if isinstance(value, dict):
        return _text(value.get("id"))
    return _text(value)


class StripeWebhookProcessor:
    """Processes verified Stripe webhook deliveries."""

    def __init__(
        self,
        db: Session,
        importer: Optional[PaymentImporter] = None,
        webhook_secret: Optional[str] = None,
        tolerance: Optional[int] = None,
    ):
        settings = get_settings()
        self.db = db
        self._importer = importer or PaymentImporter(db)
        self._secret = webhook_secret or settings.stripe_webhook_secret
        self._tolerance = settings.stripe_webhook_tolerance if tolerance is None else tolerance

    def process(self, payload: bytes, signature_header: Optional[str]) -> WebhookResult:
        """
        Verify and process one webhook delivery.

        Args:
            payload: Raw request body, exactly as received.
            signature_header: Value of the Stripe-Signature header.

        Returns:
            WebhookResult describing what was done.

        Raises:
            WebhookNotConfiguredError: If no signing secret is configured.
            WebhookSignatureError: If the signature does not verify.
            WebhookPayloadError: If the body is not a Stripe event.
        """
        event = self.verify(payload, signature_header)
        return self.handle_event(event)

    def verify(self, payload: bytes, signature_header: Optional[str]) -> Dict[str, Any]:
        """Check the signature and decode the event."""
        if not self._secret:
            logger.warning("stripe_webhook_secret_not_configured")
            raise WebhookNotConfiguredError()
        if not signature_header:
            logger.warning("stripe_webhook_signature_missing")
            raise WebhookSignatureError("Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError:
            raise WebhookPayloadError("Webhook body is not UTF-8")

        try:
            stripe.WebhookSignature.verify_header(body, signature_header, self._secret, self._tolerance)
        except stripe.SignatureVerificationError as e:
            logger.warning("invalid_stripe_signature", error=str(e))
            raise WebhookSignatureError()

        try:
            event = json.loads(body)
        except ValueError:
            raise WebhookPayloadError("Webhook body is not valid JSON")

        if not isinstance(event, dict) or not event.get("type"):
            raise WebhookPayloadError("Webhook body is not a Stripe event")
        data = event.get("data")
        if not isinstance(data, dict) or not isinstance(data.get("object"), dict):
            raise WebhookPayloadError("Webhook event has no data object", details={"type": event.get("type")})
        return event

    def handle_event(self, event: Dict[str, Any]) -> WebhookResult:
        """Dispatch a verified event."""
        event_type = event["type"]
        event_id = event.get("id")
        obj = event["data"]["object"]

        logger.info("stripe_webhook_received", event_type=event_type, event_id=event_id)

        if event_type == CHARGE_SUCCEEDED:
            if _object_id(obj.get("invoice")):
                logger.info("stripe_charge_deferred_to_invoice", charge_id=obj.get("id"))
                return WebhookResult(event_type=event_type, action=ACTION_DEFERRED, event_id=event_id)
            record = self.charge_to_record(obj)
        elif event_type in (INVOICE_PAYMENT_SUCCEEDED, INVOICE_PAID):
            record = self.invoice_to_record(obj)
        elif event_type == SUBSCRIPTION_DELETED:
            ended = self.end_sponsorships(obj)
            return WebhookResult(
                event_type=event_type,
                action=ACTION_SPONSORSHIPS_ENDED,
                event_id=event_id,
                sponsorships_ended=ended,
            )
        else:
            logger.debug("stripe_webhook_ignored", event_type=event_type)
            return WebhookResult(event_type=event_type, action=ACTION_IGNORED, event_id=event_id)

        import_result = self._importer.import_record(record)
        return WebhookResult(
            event_type=event_type,
            action=ACTION_IMPORTED,
            event_id=event_id,
            import_result=import_result,
        )

    def charge_to_record(self, charge: Dict[str, Any]) -> PaymentRecord:
        billing = charge.get("billing_details") or {}
        return PaymentRecord(
            amount_cents=charge.get("amount"),
            occurred_at=_timestamp(charge.get("created")) or datetime.now(timezone.utc),
            charge_id=_text(charge.get("id")),
            transaction_status=_text(charge.get("status")) or "",
            payer_name=_text(billing.get("name")),
            payer_email=_text(billing.get("email")) or _text(charge.get("receipt_email")),
            description_text=_text(charge.get("description")),
            customer_id=_object_id(charge.get("customer")),
            invoice_id=_object_id(charge.get("invoice")),
            metadata=dict(charge.get("metadata") or {}),
            source="webhook",
        )

    def invoice_to_record(self, invoice: Dict[str, Any]) -> PaymentRecord:
        invoice_id = _text(invoice.get("id"))
        status = _text(invoice.get("status")) or ""
        if status == "paid":
            status = SUCCEEDED_STATUS

        transitions = invoice.get("status_transitions") or {}
        occurred_at = (
            _timestamp(transitions.get("paid_at"))
            or _timestamp(invoice.get("created"))
            or datetime.now(timezone.utc)
        )

        metadata = {}
        subscription_details = invoice.get("subscription_details") or {}
        metadata.update(subscription_details.get("metadata") or {})
        metadata.update(invoice.get("metadata") or {})

        return PaymentRecord(
            amount_cents=invoice.get("amount_paid"),
            occurred_at=occurred_at,
            charge_id=_object_id(invoice.get("charge")) or invoice_id,
            transaction_status=status,
            payer_name=_text(invoice.get("customer_name")),
            payer_email=_text(invoice.get("customer_email")),
            description_text=self._invoice_description(invoice),
            customer_id=_object_id(invoice.get("customer")),
            subscription_id=_object_id(invoice.get("subscription")),
            invoice_id=invoice_id,
            metadata=metadata,
            source="webhook",
        )

    @staticmethod
    def _invoice_description(invoice: Dict[str, Any]) -> Optional[str]:
        lines = (invoice.get("lines") or {}).get("data") or []
        if lines:
            line = lines[0]
            for key in ("price", "plan"):
                nickname = _text((line.get(key) or {}).get("nickname"))
                if nickname:
                    return nickname
            description = _text(line.get("description"))
            if description:
                return description
        return _text(invoice.get("description"))

    def end_sponsorships(self, subscription: Dict[str, Any]) -> int:
        """End every active sponsorship funded by a cancelled subscription."""
        subscription_id = _text(subscription.get("id"))
        if not subscription_id:
            raise WebhookPayloadError("Subscription event has no id")

        ended_at = _timestamp(subscription.get("ended_at")) or _timestamp(subscription.get("canceled_at"))
        end_date = ended_at.date() if ended_at else date.today()

        try:
            sponsorships = (
                self.db.query(Sponsorship)
                .filter(
                    Sponsorship.stripe_subscription_id == subscription_id,
                    Sponsorship.end_date.is_(None),
                )
                .all()
            )
            for sponsorship in sponsorships:
                sponsorship.end_date = end_date
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error("failed_to_end_sponsorships", subscription_id=subscription_id, error=str(e))
            raise

        logger.info(
            "sponsorships_ended",
            subscription_id=subscription_id,
            count=len(sponsorships),
            end_date=end_date.isoformat(),
        )
        return len(sponsorships)
