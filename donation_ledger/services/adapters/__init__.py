"""Payment source adapters."""
from donation_ledger.services.adapters.csv_importer import BatchImportResult, StripeCsvBatchImporter
from donation_ledger.services.adapters.webhook_processor import StripeWebhookProcessor, WebhookResult

__all__ = ["BatchImportResult", "StripeCsvBatchImporter", "StripeWebhookProcessor", "WebhookResult"]
