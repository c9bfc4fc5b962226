"""
Stripe CSV batch importer.

Reads a Stripe payments export and feeds every row through the
PaymentImporter, one transaction per row. A bad row is recorded and the
batch carries on; only an unreadable file stops it.
"""
import csv
import io
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, IO, List, Optional, Union

import structlog
from sqlalchemy.orm import Session

from donation_ledger.exceptions import CsvFormatError, ValidationError
from donation_ledger.models import DonationStatus
from donation_ledger.services.payment_importer import PaymentImporter
from donation_ledger.services.payment_record import ImportResult, PaymentRecord

logger = structlog.get_logger(__name__)

# Stripe export column names
COL_AMOUNT = "Amount"
COL_NAME = "Billing Details Name"
COL_EMAIL = "Cust Email"
COL_BILLING_EMAIL = "Billing Details Email"
COL_CREATED = "Created Formatted"
COL_DESCRIPTION = "Description"
COL_NICKNAME = "Cust Subscription Data Plan Nickname"
COL_TRANSACTION_ID = "Transaction ID"
COL_CUSTOMER_ID = "Cust ID"
COL_SUBSCRIPTION_ID = "Cust Subscription Data ID"
COL_STATUS = "Status"

REQUIRED_COLUMNS = (COL_AMOUNT, COL_TRANSACTION_ID, COL_STATUS)

DATE_FORMATS = (
    "%Y-%m-%d %H:%M:%S %z",
    "%Y-%m-%d %H:%M:%S",
    "%Y-%m-%d %H:%M",
    "%Y-%m-%d",
    "%m/%d/%Y %H:%M",
    "%m/%d/%Y",
)

CsvSource = Union[str, os.PathLike, IO[str]]


@dataclass
class BatchImportResult:
    """Tally of one CSV import."""

    succeeded: int = 0
    skipped: int = 0
    failed: int = 0
    donations_created: int = 0
    needs_attention: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def rows_processed(self) -> int:
        return self.succeeded + self.skipped + self.failed

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "succeeded": self.succeeded,
            "skipped": self.skipped,
            "failed": self.failed,
            "donations_created": self.donations_created,
            "needs_attention": self.needs_attention,
            "errors": self.errors,
        }


def parse_amount_cents(value: Optional[str]) -> int:
    """
    Convert a dollar amount such as "$1,234.50" to cents.

    Raises:
        ValidationError: If the value is blank or not a number.
    """
    cleaned = (value or "").strip().replace("$", "").replace(",", "").strip()
    if not cleaned:
        raise ValidationError("Amount is missing", field="amount")
    try:
        dollars = Decimal(cleaned)
    except InvalidOperation:
        raise ValidationError(f"Amount is not a number: {value!r}", field="amount")
    if not dollars.is_finite():
        raise ValidationError(f"Amount is not a number: {value!r}", field="amount")
    return int((dollars * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_created_at(value: Optional[str]) -> Optional[datetime]:
    """Parse the export's creation timestamp; None when unreadable."""
    text = (value or "").strip()
    if not text:
        return None

    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue

    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _clean(value: Optional[str]) -> Optional[str]:
    value = (value or "").strip()
    return value or None


class StripeCsvBatchImporter:
    """
    Imports a Stripe CSV export row by row.

    Usage:
        importer = StripeCsvBatchImporter(db)
        result = importer.import_file("stripe_export.csv")
    """

    def __init__(self, db: Session, importer: Optional[PaymentImporter] = None):
        self.db = db
        self._importer = importer or PaymentImporter(db)

    def import_file(self, source: CsvSource) -> BatchImportResult:
        """
        Import every row of a CSV export.

        Args:
            source: File path, or an open text file object.

        Returns:
            BatchImportResult; a malformed file yields one error with no row number.
        """
        if hasattr(source, "read"):
            return self._import_stream(source)

        with open(source, newline="", encoding="utf-8-sig") as handle:
            return self._import_stream(handle)

    def import_text(self, text: str) -> BatchImportResult:
        """Import CSV content already held in memory."""
        return self._import_stream(io.StringIO(text, newline=""))

    def _import_stream(self, stream: IO[str]) -> BatchImportResult:
        result = BatchImportResult()
        reader = csv.DictReader(stream, strict=True)

        try:
            self._check_header(reader.fieldnames)
        except (csv.Error, CsvFormatError) as e:
            message = e.message if isinstance(e, CsvFormatError) else str(e)
            logger.warning("csv_import_malformed", error=message)
            result.errors.append({"row_number": None, "message": f"CSV parsing error: {message}", "data": None})
            return result

        while True:
            try:
                row = next(reader)
            except StopIteration:
                break
            except csv.Error as e:
                # The reader has consumed the broken line; carry on with the next one
                self._record_unreadable_row(result, reader.reader.line_num, e)
                continue
            # line_num is the file line the row ends on
            self._import_row(reader.line_num, row, result)

        logger.info(
            "csv_import_completed",
            succeeded=result.succeeded,
            skipped=result.skipped,
            failed=result.failed,
            donations_created=result.donations_created,
        )
        return result

    def _check_header(self, fieldnames: Optional[List[str]]) -> None:
        if not fieldnames:
            raise CsvFormatError("File has no header row")
        missing = [column for column in REQUIRED_COLUMNS if column not in fieldnames]
        if missing:
            raise CsvFormatError(
                f"Missing required columns: {', '.join(missing)}",
                details={"missing_columns": missing},
            )

    def _import_row(self, row_number: int, row: Dict[str, Any], result: BatchImportResult) -> None:
        try:
            record = self.row_to_record(row)
        except ValidationError as e:
            self._record_failure(result, row_number, row, ImportResult.failure(e.message, "validation", e.error_code))
            return

        outcome = self._importer.import_record(record)

        if not outcome.success:
            self._record_failure(result, row_number, row, outcome)
        elif outcome.skipped:
            result.skipped += 1
        else:
            result.succeeded += 1
            result.donations_created += len(outcome.donations)
            result.needs_attention += sum(
                1 for donation in outcome.donations if donation.status == DonationStatus.NEEDS_ATTENTION
            )

    def _record_failure(
        self,
        result: BatchImportResult,
        row_number: int,
        row: Dict[str, Any],
        outcome: ImportResult,
    ) -> None:
        result.failed += 1
        result.errors.append({
            "row_number": row_number,
            "message": outcome.error,
            "error_kind": outcome.error_kind,
            "data": self.sanitize_row(row),
        })
        logger.warning(
            "csv_row_failed",
            row_number=row_number,
            error=outcome.error,
            error_kind=outcome.error_kind,
        )

    def _record_unreadable_row(self, result: BatchImportResult, row_number: int, error: csv.Error) -> None:
        result.failed += 1
        result.errors.append({
            "row_number": row_number,
            "message": f"CSV parsing error: {error}",
            "error_kind": "validation",
            "data": None,
        })
        logger.warning("csv_row_unreadable", row_number=row_number, error=str(error))

    def row_to_record(self, row: Dict[str, Any]) -> PaymentRecord:
        """
        Convert one export row to a PaymentRecord.

        Raises:
            ValidationError: If the amount cannot be read.
        """
        status = _clean(row.get(COL_STATUS)) or ""
        transaction_id = _clean(row.get(COL_TRANSACTION_ID))

        # Amounts of skipped rows are never looked at
        if status.lower() == "succeeded":
            amount_cents = parse_amount_cents(row.get(COL_AMOUNT))
        else:
            amount_cents = 0

        occurred_at = parse_created_at(row.get(COL_CREATED))
        if occurred_at is None:
            logger.warning("csv_row_date_unreadable", value=row.get(COL_CREATED), charge_id=transaction_id)
            occurred_at = datetime.now(timezone.utc)

        return PaymentRecord(
            amount_cents=amount_cents,
            occurred_at=occurred_at,
            charge_id=transaction_id,
            transaction_status=status,
            payer_name=_clean(row.get(COL_NAME)),
            payer_email=_clean(row.get(COL_EMAIL)) or _clean(row.get(COL_BILLING_EMAIL)),
            description_text=_clean(row.get(COL_NICKNAME)) or _clean(row.get(COL_DESCRIPTION)),
            customer_id=_clean(row.get(COL_CUSTOMER_ID)),
            subscription_id=_clean(row.get(COL_SUBSCRIPTION_ID)),
            invoice_id=transaction_id,
            source="csv",
        )

    @staticmethod
    def sanitize_row(row: Dict[str, Any]) -> Dict[str, Optional[str]]:
        """Subset of a row safe to echo back in an error report."""
        return {
            "amount": row.get(COL_AMOUNT),
            "name": row.get(COL_NAME),
            "email": row.get(COL_EMAIL),
            "description": row.get(COL_DESCRIPTION),
            "nickname": row.get(COL_NICKNAME),
            "date": row.get(COL_CREATED),
            "status": row.get(COL_STATUS),
        }
