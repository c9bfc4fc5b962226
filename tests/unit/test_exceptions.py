"""
Unit tests for custom exceptions.

Tests exception hierarchy and error formatting.
"""
import pytest

from donation_ledger.exceptions import (
    CsvFormatError,
    DatabaseError,
    DonationLedgerError,
    DonorMergeError,
    InvariantViolationError,
    MergeCycleError,
    ValidationError,
    WebhookNotConfiguredError,
    WebhookPayloadError,
    WebhookSignatureError,
)


class TestExceptionHierarchy:
    """Tests for exception class hierarchy."""

    def test_base_exception(self):
        """Test base DonationLedgerError."""
        exc = DonationLedgerError("Test error")

        assert exc.error_code == "DLG-000"
        assert exc.message == "Test error"
        assert exc.http_status == 500

    @pytest.mark.parametrize(
        "exc_class,code,status",
        [
            (ValidationError, "DLG-100", 422),
            (InvariantViolationError, "DLG-101", 422),
            (DonorMergeError, "DLG-201", 400),
            (WebhookSignatureError, "DLG-300", 400),
            (WebhookPayloadError, "DLG-301", 400),
            (WebhookNotConfiguredError, "DLG-302", 500),
            (CsvFormatError, "DLG-400", 400),
            (DatabaseError, "DLG-800", 500),
        ],
    )
    def test_codes_and_statuses(self, exc_class, code, status):
        """Each error class carries its own code and HTTP status."""
        exc = exc_class()

        assert isinstance(exc, DonationLedgerError)
        assert exc.error_code == code
        assert exc.http_status == status

    def test_merge_cycle_error(self):
        """MergeCycleError names the starting donor and the chain walked."""
        exc = MergeCycleError("d1", chain=["d1", "d2", "d1"])

        assert exc.error_code == "DLG-200"
        assert "d1" in exc.message
        assert exc.details["chain"] == ["d1", "d2", "d1"]


class TestExceptionDetails:
    """Tests for exception details and formatting."""

    def test_validation_error_with_field(self):
        """Test ValidationError records the offending field."""
        exc = ValidationError("Amount must be positive", field="amount_cents")

        assert exc.details["field"] == "amount_cents"

    def test_validation_error_merges_details(self):
        """Explicit details and the field are combined."""
        exc = ValidationError("Bad", field="amount_cents", details={"amount_cents": -5})

        assert exc.details == {"amount_cents": -5, "field": "amount_cents"}

    def test_custom_error_code(self):
        """Test custom error code override."""
        exc = DonationLedgerError("Test", error_code="CUSTOM-001")

        assert exc.error_code == "CUSTOM-001"

    def test_to_dict(self):
        """Test exception serialization to dict."""
        exc = DonorMergeError("Target donor not found", details={"target_id": "abc"})
        data = exc.to_dict()

        assert data == {
            "error": True,
            "error_code": "DLG-201",
            "message": "Target donor not found",
            "details": {"target_id": "abc"},
        }

    def test_str_is_message(self):
        """Test str() returns the message."""
        assert str(WebhookSignatureError()) == "Invalid webhook signature"
