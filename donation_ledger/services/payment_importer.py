"""
Payment record importer.

Books one canonical PaymentRecord into the ledger:
1. Skip records whose payment did not succeed
2. Validate required fields
3. Skip charges that were already imported
4. In one transaction: claim the charge id, resolve the donor, work out
   where the money goes, create the donation(s)
5. Return an ImportResult; nothing is raised past import_record()
"""
import uuid
from typing import List, Optional

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from donation_ledger.config import get_settings
from donation_ledger.exceptions import (
    DatabaseError,
    DonationLedgerError,
    InvariantViolationError,
    ValidationError,
)
from donation_ledger.models import (
    Child,
    Donation,
    DonationStatus,
    Donor,
    Project,
    StripeInvoice,
)
from donation_ledger.models.types import as_naive_utc
from donation_ledger.services.description_classifier import (
    DescriptionClassifier,
    SponsorshipIntent,
    get_description_classifier,
)
from donation_ledger.services.donor_resolver import DonorIdentity, DonorResolver
from donation_ledger.services.entity_materializer import EntityMaterializer, SponsorshipTarget
from donation_ledger.services.payment_record import (
    SKIP_ALREADY_IMPORTED,
    SKIP_NOT_SUCCEEDED,
    ImportResult,
    PaymentRecord,
)

logger = structlog.get_logger(__name__)

DUPLICATE_CHILD_REASON = "Duplicate child in same invoice"


def split_amount(total_cents: int, parts: int, policy: str) -> List[int]:
    """
    Per-child amounts for a payment that funds several children.

    "full" gives every child the whole payment (historical behaviour);
    "proportional" divides it, handing the remainder cents to the first
    children so the parts add up to the total. A total smaller than the
    number of children leaves zero shares at the end.
    """
    if parts <= 0:
        return []
    if policy == "proportional":
        base, remainder = divmod(total_cents, parts)
        return [base + (1 if index < remainder else 0) for index in range(parts)]
    return [total_cents] * parts


class PaymentImporter:
    """Imports canonical payment records into the donation ledger."""

    def __init__(
        self,
        db: Session,
        classifier: Optional[DescriptionClassifier] = None,
        split_policy: Optional[str] = None,
    ):
        self.db = db
        self._classifier = classifier or get_description_classifier()
        self._split_policy = split_policy or get_settings().sponsorship_split_policy
        self._donor_resolver = DonorResolver(db)
        self._materializer = EntityMaterializer(db)

    def import_record(self, record: PaymentRecord) -> ImportResult:
        """
        Import one payment record.

        Args:
            record: Canonical payment record from any source adapter.

        Returns:
            ImportResult; success with donations, a skip, or a captured failure.
        """
        log = logger.bind(charge_id=record.charge_id, source=record.source)

        if not record.succeeded:
            log.info("payment_skipped", reason=SKIP_NOT_SUCCEEDED, status=record.transaction_status)
            return ImportResult.skip(SKIP_NOT_SUCCEEDED)

        try:
            self._validate(record)
        except ValidationError as e:
            log.warning("payment_invalid", error=e.message, details=e.details)
            return ImportResult.failure(e.message, "validation", e.error_code)

        try:
            if self._already_imported(record.charge_id):
                log.info("payment_skipped", reason=SKIP_ALREADY_IMPORTED)
                return ImportResult.skip(SKIP_ALREADY_IMPORTED)

            donations = self._import(record)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            return self._integrity_outcome(record, e, log)
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error("payment_import_database_error", error_type=type(e).__name__, error=str(e))
            return ImportResult.failure(f"Database error: {type(e).__name__}", "unexpected", DatabaseError.error_code)
        except (ValidationError, InvariantViolationError) as e:
            self.db.rollback()
            log.warning("payment_import_rejected", error=e.message, details=e.details)
            return ImportResult.failure(e.message, "validation", e.error_code)
        except DonationLedgerError as e:
            self.db.rollback()
            log.error("payment_import_failed", error_code=e.error_code, error=e.message, details=e.details)
            return ImportResult.failure(e.message, "unexpected", e.error_code)
        except Exception as e:
            self.db.rollback()
            log.exception("payment_import_crashed", error_type=type(e).__name__)
            return ImportResult.failure(f"Unexpected error: {type(e).__name__}: {e}", "unexpected")

        log.info(
            "payment_imported",
            donations=len(donations),
            amount_cents=record.amount_cents,
        )
        return ImportResult.imported(donations)

    def _validate(self, record: PaymentRecord) -> None:
        if not (record.charge_id or "").strip():
            raise ValidationError("Charge id is required", field="charge_id")
        amount = record.amount_cents
        if isinstance(amount, bool) or not isinstance(amount, int):
            raise ValidationError("Amount must be an integer number of cents", field="amount_cents")
        if amount <= 0:
            raise ValidationError(
                "Amount must be positive",
                field="amount_cents",
                details={"amount_cents": amount},
            )
        if record.occurred_at is None:
            raise ValidationError("Payment date is required", field="occurred_at")

    def _integrity_outcome(self, record: PaymentRecord, error: IntegrityError, log) -> ImportResult:
        try:
            claimed = self._already_imported(record.charge_id)
        except SQLAlchemyError as e:
            self.db.rollback()
            log.error("payment_import_database_error", error_type=type(e).__name__, error=str(e))
            return ImportResult.failure(f"Database error: {type(e).__name__}", "unexpected", DatabaseError.error_code)

        if claimed:
            # Lost a race with a concurrent import of the same charge
            log.info("payment_skipped", reason=SKIP_ALREADY_IMPORTED, concurrent=True)
            return ImportResult.skip(SKIP_ALREADY_IMPORTED)
        log.error("payment_import_integrity_error", error=str(error.orig))
        return ImportResult.failure(f"Database integrity error: {error.orig}", "unexpected", DatabaseError.error_code)

    def _already_imported(self, charge_id: str) -> bool:
        if self.db.query(StripeInvoice.id).filter(StripeInvoice.stripe_charge_id == charge_id).first():
            return True
        return self.db.query(Donation.id).filter(Donation.stripe_charge_id == charge_id).first() is not None

    def _import(self, record: PaymentRecord) -> List[Donation]:
        occurred_at = as_naive_utc(record.occurred_at)

        # Claims the idempotency key; a concurrent import fails here
        self.db.add(StripeInvoice(
            stripe_charge_id=record.charge_id,
            stripe_invoice_id=record.grouping_invoice_id,
            stripe_customer_id=record.customer_id,
            stripe_subscription_id=record.subscription_id,
            total_amount_cents=record.amount_cents,
            invoice_date=occurred_at.date(),
        ))
        self.db.flush()

        resolution = self._donor_resolver.resolve(
            DonorIdentity(
                name=record.payer_name,
                email=record.payer_email,
                customer_id=record.customer_id,
            ),
            occurred_at,
        )
        donor = resolution.donor

        child = self._explicit_child(record)
        if child is not None:
            target = self._materializer.sponsor_child(
                donor, child, record.amount_cents, record.subscription_id, occurred_at.date(),
            )
            return [self._book_sponsorship(record, donor, target, record.amount_cents)]

        project = self._explicit_project(record)
        if project is not None:
            return [self._book(record, donor, project, record.amount_cents)]

        intent = self._classifier.classify(record.description_text)
        if isinstance(intent, SponsorshipIntent):
            return self._sponsorship_donations(record, donor, intent)

        project = self._materializer.project_for(intent)
        return [self._book(record, donor, project, record.amount_cents)]

    def _sponsorship_donations(
        self,
        record: PaymentRecord,
        donor: Donor,
        intent: SponsorshipIntent,
    ) -> List[Donation]:
        amounts = split_amount(record.amount_cents, len(intent.child_names), self._split_policy)
        start_date = as_naive_utc(record.occurred_at).date()

        donations = []
        for child_name, amount in zip(intent.child_names, amounts):
            if amount <= 0:
                # Too few cents to go round; only children with a share are booked
                logger.warning(
                    "sponsorship_share_dropped",
                    charge_id=record.charge_id,
                    child_name=child_name,
                    amount_cents=record.amount_cents,
                    children=len(intent.child_names),
                )
                continue
            target = self._materializer.materialize_sponsorship(
                donor, child_name, amount, record.subscription_id, start_date,
            )
            donations.append(self._book_sponsorship(record, donor, target, amount))
        return donations

    def _book_sponsorship(
        self,
        record: PaymentRecord,
        donor: Donor,
        target: SponsorshipTarget,
        amount: int,
    ) -> Donation:
        duplicate = (
            self.db.query(Donation.id)
            .filter(
                Donation.stripe_invoice_id == record.grouping_invoice_id,
                Donation.child_id == target.child.id,
            )
            .first()
            is not None
        )
        return self._book(
            record,
            donor,
            target.project,
            amount,
            child=target.child,
            sponsorship=target.sponsorship,
            needs_attention_reason=DUPLICATE_CHILD_REASON if duplicate else None,
        )

    def _book(
        self,
        record: PaymentRecord,
        donor: Donor,
        project: Project,
        amount: int,
        child: Optional[Child] = None,
        sponsorship=None,
        needs_attention_reason: Optional[str] = None,
    ) -> Donation:
        donation = Donation(
            amount=amount,
            date=as_naive_utc(record.occurred_at).date(),
            status=DonationStatus.NEEDS_ATTENTION if needs_attention_reason else DonationStatus.SUCCEEDED,
            needs_attention_reason=needs_attention_reason,
            payment_method="stripe",
            donor=donor,
            project=project,
            child=child,
            sponsorship=sponsorship,
            stripe_charge_id=record.charge_id,
            stripe_invoice_id=record.grouping_invoice_id,
            stripe_customer_id=record.customer_id,
            stripe_subscription_id=record.subscription_id,
        )
        donation.check_invariants()
        self.db.add(donation)
        self.db.flush()
        return donation

    def _explicit_child(self, record: PaymentRecord) -> Optional[Child]:
        return self._lookup_by_metadata(record, "child_id", Child)

    def _explicit_project(self, record: PaymentRecord) -> Optional[Project]:
        return self._lookup_by_metadata(record, "project_id", Project)

    def _lookup_by_metadata(self, record: PaymentRecord, key: str, model):
        value = (record.metadata or {}).get(key)
        if not value:
            return None
        try:
            entity_id = uuid.UUID(str(value))
        except ValueError:
            logger.warning("metadata_reference_invalid", key=key, value=str(value))
            return None

        entity = self.db.get(model, entity_id)
        if entity is None:
            logger.warning("metadata_reference_unknown", key=key, value=str(value))
        return entity
