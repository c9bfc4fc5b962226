"""
Custom exceptions for the donation ledger.

Provides a hierarchy of exceptions with error codes for consistent error handling.
"""
from typing import Optional, Dict, Any


class DonationLedgerError(Exception):
    """
    Base exception for all donation ledger errors.

    Attributes:
        error_code: Unique error code (e.g., DLG-001)
        message: Human-readable error message
        details: Additional error context
    """
    error_code: str = "DLG-000"
    http_status: int = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        details: Optional[Dict[str, Any]] = None,
        error_code: Optional[str] = None,
    ):
        self.message = message
        self.details = details or {}
        if error_code:
            self.error_code = error_code
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API response."""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


# Record Validation Errors (DLG-1XX)
class ValidationError(DonationLedgerError):
    """A payment record failed validation."""
    error_code = "DLG-100"
    http_status = 422

    def __init__(self, message: str = "Validation failed", field: Optional[str] = None, **kwargs):
        details = kwargs.pop("details", None) or {}
        if field:
            details["field"] = field
        super().__init__(message, details=details, **kwargs)


class InvariantViolationError(DonationLedgerError):
    """A ledger invariant would be broken by the requested write."""
    error_code = "DLG-101"
    http_status = 422

    def __init__(self, message: str = "Ledger invariant violated", **kwargs):
        super().__init__(message, **kwargs)


# Donor Errors (DLG-2XX)
class MergeCycleError(DonationLedgerError):
    """Donor forward pointers form a cycle or exceed the allowed depth."""
    error_code = "DLG-200"
    http_status = 500

    def __init__(self, donor_id: str, chain: Optional[list] = None, **kwargs):
        message = f"Donor merge chain starting at {donor_id} does not terminate"
        super().__init__(
            message,
            details={"donor_id": donor_id, "chain": chain or []},
            **kwargs,
        )


class DonorMergeError(DonationLedgerError):
    """Donor merge request is invalid."""
    error_code = "DLG-201"
    http_status = 400

    def __init__(self, message: str = "Cannot merge donors", **kwargs):
        super().__init__(message, **kwargs)


# Webhook Errors (DLG-3XX)
class WebhookSignatureError(DonationLedgerError):
    """Webhook signature verification failed."""
    error_code = "DLG-300"
    http_status = 400

    def __init__(self, message: str = "Invalid webhook signature", **kwargs):
        super().__init__(message, **kwargs)


class WebhookPayloadError(DonationLedgerError):
    """Webhook payload could not be interpreted."""
    error_code = "DLG-301"
    http_status = 400

    def __init__(self, message: str = "Invalid webhook payload", **kwargs):
        super().__init__(message, **kwargs)


class WebhookNotConfiguredError(DonationLedgerError):
    """No webhook signing secret is configured."""
    error_code = "DLG-302"
    http_status = 500

    def __init__(self, message: str = "Webhook not configured", **kwargs):
        super().__init__(message, **kwargs)


# Import File Errors (DLG-4XX)
class CsvFormatError(DonationLedgerError):
    """Uploaded CSV could not be parsed."""
    error_code = "DLG-400"
    http_status = 400

    def __init__(self, message: str = "Malformed CSV file", **kwargs):
        super().__init__(message, **kwargs)


# Database Errors (DLG-8XX)
class DatabaseError(DonationLedgerError):
    """Database operation failed."""
    error_code = "DLG-800"
    http_status = 500

    def __init__(self, message: str = "Database operation failed", **kwargs):
        super().__init__(message, **kwargs)
