"""
Pydantic schemas for the payment import endpoints.

Defines response models for CSV batch imports and Stripe webhook deliveries.
"""
import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class DonationSummary(BaseModel):
    """A donation created by an import."""

    id: UUID = Field(..., description="Donation identifier")
    amount: int = Field(..., description="Amount in cents")
    date: Optional[datetime.date] = Field(None, description="Donation date")
    project_id: Optional[UUID] = Field(None, description="Project the money went to")
    child_id: Optional[UUID] = Field(None, description="Sponsored child, if any")
    status: Optional[str] = Field(None, description="succeeded or needs_attention")


class ImportResultResponse(BaseModel):
    """Outcome of importing one payment record."""

    success: bool
    skipped: bool = False
    reason: Optional[str] = Field(None, description="Skip reason: not_succeeded or already_imported")
    donations: List[DonationSummary] = Field(default_factory=list)
    error: Optional[str] = None
    error_code: Optional[str] = None
    error_kind: Optional[str] = Field(None, description="validation or unexpected")


class RowError(BaseModel):
    """A CSV row that could not be imported."""

    row_number: Optional[int] = Field(None, description="1-based file line the row ends on; the header is line 1")
    message: Optional[str] = None
    error_kind: Optional[str] = None
    data: Optional[Dict[str, Any]] = Field(None, description="Sanitized subset of the row")


class BatchImportResponse(BaseModel):
    """Tally of a CSV batch import."""

    succeeded: int = Field(..., description="Rows that created donations")
    skipped: int = Field(..., description="Rows skipped as not succeeded or already imported")
    failed: int = Field(..., description="Rows that failed")
    donations_created: int = 0
    needs_attention: int = 0
    errors: List[RowError] = Field(default_factory=list)


class WebhookResponse(BaseModel):
    """What a Stripe webhook delivery did."""

    event_id: Optional[str] = None
    event_type: str
    action: str = Field(..., description="imported, deferred_to_invoice, sponsorships_ended or ignored")
    import_result: Optional[ImportResultResponse] = None
    sponsorships_ended: int = 0
