"""
Tests for the Stripe webhook processor.
"""
import time
from datetime import date

import pytest

from donation_ledger.exceptions import (
    WebhookNotConfiguredError,
    WebhookPayloadError,
    WebhookSignatureError,
)
from donation_ledger.models import Child, Donation, Donor, Project, ProjectType, Sponsorship
from donation_ledger.services.adapters.webhook_processor import StripeWebhookProcessor

SECRET = "whsec_unit"

PAID_AT = 1717243200  # 2024-06-01 12:00:00 UTC


def _charge(**overrides):
    charge = {
        "id": "ch_1",
        "object": "charge",
        "amount": 2500,
        "created": PAID_AT,
        "status": "succeeded",
        "description": "Donation for Campaign 12",
        "customer": "cus_1",
        "invoice": None,
        "billing_details": {"name": "Jane Doe", "email": "jane@example.com"},
        "metadata": {},
    }
    charge.update(overrides)
    return charge


def _invoice(**overrides):
    invoice = {
        "id": "in_1",
        "object": "invoice",
        "amount_paid": 10000,
        "charge": "ch_inv",
        "created": PAID_AT - 3600,
        "status": "paid",
        "status_transitions": {"paid_at": PAID_AT},
        "customer": "cus_1",
        "customer_name": "Jane Doe",
        "customer_email": "jane@example.com",
        "subscription": "sub_1",
        "lines": {"data": [{
            "description": "1 × Sponsorship (at $100.00 / month)",
            "price": {"nickname": "Monthly Sponsorship Donation for Sangwan"},
        }]},
        "metadata": {},
    }
    invoice.update(overrides)
    return invoice


@pytest.fixture
def processor(db_session):
    return StripeWebhookProcessor(db_session, webhook_secret=SECRET, tolerance=300)


class TestVerification:
    """Signature and payload checks."""

    def test_valid_signature(self, processor, stripe_delivery):
        body, header = stripe_delivery("ping", {"id": "x"}, secret=SECRET)

        event = processor.verify(body, header)

        assert event["type"] == "ping"

    def test_wrong_secret_rejected(self, db_session, processor, stripe_delivery):
        body, header = stripe_delivery("charge.succeeded", _charge(), secret="whsec_other")

        with pytest.raises(WebhookSignatureError):
            processor.process(body, header)
        assert db_session.query(Donation).count() == 0

    def test_tampered_body_rejected(self, processor, stripe_delivery):
        body, header = stripe_delivery("charge.succeeded", _charge(), secret=SECRET)

        with pytest.raises(WebhookSignatureError):
            processor.process(body.replace(b"2500", b"9999"), header)

    def test_missing_header_rejected(self, processor, stripe_delivery):
        body, _ = stripe_delivery("charge.succeeded", _charge(), secret=SECRET)

        with pytest.raises(WebhookSignatureError):
            processor.process(body, None)

    def test_stale_timestamp_rejected(self, processor, sign):
        payload = '{"type": "ping", "data": {"object": {}}}'
        header = sign(payload, SECRET, timestamp=int(time.time()) - 3600)

        with pytest.raises(WebhookSignatureError):
            processor.process(payload.encode(), header)

    def test_not_configured(self, db_session, monkeypatch, stripe_delivery):
        from donation_ledger.config import get_settings

        monkeypatch.setattr(get_settings(), "stripe_webhook_secret", None)
        processor = StripeWebhookProcessor(db_session)
        body, header = stripe_delivery("ping", {}, secret=SECRET)

        with pytest.raises(WebhookNotConfiguredError):
            processor.process(body, header)

    def test_non_json_body(self, processor, sign):
        payload = "not json"

        with pytest.raises(WebhookPayloadError):
            processor.process(payload.encode(), sign(payload, SECRET))

    def test_event_without_object(self, processor, sign):
        payload = '{"type": "charge.succeeded", "data": {}}'

        with pytest.raises(WebhookPayloadError):
            processor.process(payload.encode(), sign(payload, SECRET))


class TestChargeEvents:
    """charge.succeeded deliveries."""

    def test_imports_charge(self, db_session, processor, stripe_delivery):
        result = processor.process(*stripe_delivery("charge.succeeded", _charge(), secret=SECRET))

        assert result.action == "imported"
        assert result.import_result.success is True
        donation = db_session.query(Donation).one()
        assert donation.amount == 2500
        assert donation.stripe_charge_id == "ch_1"
        assert donation.date == date(2024, 6, 1)
        assert donation.project.title == "Campaign 12"
        assert donation.donor.email == "jane@example.com"

    def test_redelivery_is_idempotent(self, db_session, processor, stripe_delivery):
        delivery = stripe_delivery("charge.succeeded", _charge(), secret=SECRET)
        processor.process(*delivery)

        result = processor.process(*delivery)

        assert result.import_result.skipped is True
        assert result.import_result.reason == "already_imported"
        assert db_session.query(Donation).count() == 1

    def test_receipt_email_fallback(self, db_session, processor, stripe_delivery):
        charge = _charge(billing_details={"name": None, "email": None}, receipt_email="r@example.com")

        processor.process(*stripe_delivery("charge.succeeded", charge, secret=SECRET))

        donor = db_session.query(Donor).one()
        assert donor.email == "r@example.com"
        assert donor.name == "Anonymous"

    def test_invoice_charge_deferred(self, db_session, processor, stripe_delivery):
        result = processor.process(*stripe_delivery("charge.succeeded", _charge(invoice="in_1"), secret=SECRET))

        assert result.action == "deferred_to_invoice"
        assert result.import_result is None
        assert db_session.query(Donation).count() == 0

    def test_metadata_project(self, db_session, processor, stripe_delivery):
        project = Project(title="Clean Water", project_type=ProjectType.CAMPAIGN)
        db_session.add(project)
        db_session.commit()
        charge = _charge(metadata={"project_id": str(project.id)})

        processor.process(*stripe_delivery("charge.succeeded", charge, secret=SECRET))

        assert db_session.query(Donation).one().project_id == project.id

    def test_invalid_amount_reported_not_raised(self, db_session, processor, stripe_delivery):
        result = processor.process(*stripe_delivery("charge.succeeded", _charge(amount=None), secret=SECRET))

        assert result.action == "imported"
        assert result.import_result.success is False
        assert result.import_result.error_kind == "validation"


class TestInvoiceEvents:
    """invoice.paid / invoice.payment_succeeded deliveries."""

    @pytest.mark.parametrize("event_type", ["invoice.paid", "invoice.payment_succeeded"])
    def test_imports_sponsorship(self, db_session, processor, stripe_delivery, event_type):
        result = processor.process(*stripe_delivery(event_type, _invoice(), secret=SECRET))

        assert result.import_result.success is True
        donation = db_session.query(Donation).one()
        assert donation.stripe_charge_id == "ch_inv"
        assert donation.stripe_invoice_id == "in_1"
        assert donation.stripe_subscription_id == "sub_1"
        assert donation.child.name == "Sangwan"
        assert db_session.query(Sponsorship).one().stripe_subscription_id == "sub_1"

    def test_charge_then_invoice_books_once(self, db_session, processor, stripe_delivery):
        processor.process(*stripe_delivery("charge.succeeded", _charge(id="ch_inv", invoice="in_1"), secret=SECRET))
        processor.process(*stripe_delivery("invoice.paid", _invoice(), "evt_2", secret=SECRET))
        result = processor.process(*stripe_delivery("invoice.payment_succeeded", _invoice(), "evt_3", secret=SECRET))

        assert result.import_result.reason == "already_imported"
        assert db_session.query(Donation).count() == 1

    def test_line_description_when_no_nickname(self, db_session, processor, stripe_delivery):
        invoice = _invoice(lines={"data": [{"description": "Donation for Campaign 5", "price": {"nickname": None}}]})

        processor.process(*stripe_delivery("invoice.paid", invoice, secret=SECRET))

        assert db_session.query(Donation).one().project.title == "Campaign 5"

    def test_charge_id_falls_back_to_invoice_id(self, db_session, processor, stripe_delivery):
        processor.process(*stripe_delivery("invoice.paid", _invoice(charge=None), secret=SECRET))

        assert db_session.query(Donation).one().stripe_charge_id == "in_1"

    def test_unpaid_invoice_skipped(self, db_session, processor, stripe_delivery):
        result = processor.process(*stripe_delivery("invoice.paid", _invoice(status="open"), secret=SECRET))

        assert result.import_result.skipped is True
        assert result.import_result.reason == "not_succeeded"

    def test_subscription_metadata_child(self, db_session, processor, stripe_delivery):
        child = Child(name="Pim")
        db_session.add(child)
        db_session.commit()
        invoice = _invoice(subscription_details={"metadata": {"child_id": str(child.id)}})

        processor.process(*stripe_delivery("invoice.paid", invoice, secret=SECRET))

        assert db_session.query(Donation).one().child_id == child.id


class TestSubscriptionCancelled:
    """customer.subscription.deleted deliveries."""

    def _sponsorship(self, db_session, subscription_id, end_date=None):
        donor = Donor(name="Jane")
        child = Child(name=f"Child {subscription_id}")
        project = Project(title=f"Sponsor {child.name}", project_type=ProjectType.SPONSORSHIP)
        sponsorship = Sponsorship(
            donor=donor,
            child=child,
            project=project,
            monthly_amount=1000,
            stripe_subscription_id=subscription_id,
            end_date=end_date,
        )
        db_session.add(sponsorship)
        db_session.commit()
        return sponsorship

    def test_ends_matching_sponsorships(self, db_session, processor, stripe_delivery):
        first = self._sponsorship(db_session, "sub_9")
        second = self._sponsorship(db_session, "sub_9")
        other = self._sponsorship(db_session, "sub_other")
        already_ended = self._sponsorship(db_session, "sub_9", end_date=date(2023, 1, 1))

        result = processor.process(*stripe_delivery(
            "customer.subscription.deleted",
            {"id": "sub_9", "object": "subscription", "ended_at": PAID_AT},
            secret=SECRET,
        ))

        assert result.action == "sponsorships_ended"
        assert result.sponsorships_ended == 2
        assert first.end_date == date(2024, 6, 1)
        assert second.end_date == date(2024, 6, 1)
        assert other.end_date is None
        assert already_ended.end_date == date(2023, 1, 1)
        assert db_session.query(Donation).count() == 0

    def test_unknown_subscription(self, processor, stripe_delivery):
        result = processor.process(*stripe_delivery(
            "customer.subscription.deleted", {"id": "sub_none"}, secret=SECRET,
        ))

        assert result.sponsorships_ended == 0


class TestOtherEvents:
    """Events the ledger does not act on."""

    def test_ignored(self, db_session, processor, stripe_delivery):
        result = processor.process(*stripe_delivery("customer.created", {"id": "cus_1"}, secret=SECRET))

        assert result.action == "ignored"
        assert result.to_dict()["import_result"] is None
        assert db_session.query(Donor).count() == 0
