"""
CSV import route.

Accepts a Stripe payments export and imports it row by row.
"""
import structlog
from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from donation_ledger.database import get_db
from donation_ledger.exceptions import CsvFormatError
from donation_ledger.schemas.imports import BatchImportResponse
from donation_ledger.services.adapters import StripeCsvBatchImporter

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/imports", tags=["Imports"])


@router.post("/stripe-csv", response_model=BatchImportResponse)
async def import_stripe_csv(
    file: UploadFile = File(..., description="Stripe payments CSV export"),
    db: Session = Depends(get_db),
) -> dict:
    """
    Import a Stripe CSV export.

    Rows are imported one transaction at a time; failed rows are listed in
    `errors` with their line number and the import carries on.
    """
    content = await file.read()
    try:
        text = content.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise CsvFormatError("File is not UTF-8 encoded", details={"filename": file.filename})

    logger.info("csv_import_started", filename=file.filename, size_bytes=len(content))

    importer = StripeCsvBatchImporter(db)
    result = importer.import_text(text)
    return result.to_dict()
