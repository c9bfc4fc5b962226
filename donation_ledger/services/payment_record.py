"""
Canonical payment record and import result types.

Every source adapter (CSV export, webhook push) converts its input into a
PaymentRecord; the importer only ever sees this shape and returns an
ImportResult.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from donation_ledger.models import Donation

SUCCEEDED_STATUS = "succeeded"

SKIP_NOT_SUCCEEDED = "not_succeeded"
SKIP_ALREADY_IMPORTED = "already_imported"


@dataclass(frozen=True)
class PaymentRecord:
    """One payment event, independent of the transport it arrived on."""

    amount_cents: int
    occurred_at: datetime
    charge_id: Optional[str]
    transaction_status: str
    payer_name: Optional[str] = None
    payer_email: Optional[str] = None
    description_text: Optional[str] = None
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    invoice_id: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    source: str = "unknown"

    @property
    def succeeded(self) -> bool:
        return (self.transaction_status or "").strip().lower() == SUCCEEDED_STATUS

    @property
    def grouping_invoice_id(self) -> Optional[str]:
        """Invoice id stamped on donations; a bare charge is its own invoice."""
        return self.invoice_id or self.charge_id


@dataclass
class ImportResult:
    """Structured outcome of importing one PaymentRecord."""

    success: bool
    skipped: bool = False
    reason: Optional[str] = None
    donations: List[Donation] = field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None
    error_kind: Optional[str] = None  # "validation" or "unexpected"

    @classmethod
    def imported(cls, donations: List[Donation]) -> "ImportResult":
        return cls(success=True, donations=donations)

    @classmethod
    def skip(cls, reason: str) -> "ImportResult":
        return cls(success=True, skipped=True, reason=reason)

    @classmethod
    def failure(
        cls,
        error: str,
        error_kind: str,
        error_code: Optional[str] = None,
    ) -> "ImportResult":
        return cls(
            success=False,
            error=error,
            error_kind=error_kind,
            error_code=error_code,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "skipped": self.skipped,
            "reason": self.reason,
            "donations": [
                {
                    "id": str(donation.id),
                    "amount": donation.amount,
                    "date": donation.date.isoformat() if donation.date else None,
                    "project_id": str(donation.project_id) if donation.project_id else None,
                    "child_id": str(donation.child_id) if donation.child_id else None,
                    "status": donation.status.value if donation.status else None,
                }
                for donation in self.donations
            ],
            "error": self.error,
            "error_code": self.error_code,
            "error_kind": self.error_kind,
        }
