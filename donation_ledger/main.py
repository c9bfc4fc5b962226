"""
FastAPI application entry point.

Configures the application with routes, middleware, and settings.
"""
import os

import sentry_sdk
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from donation_ledger.api.routes import imports, webhooks
from donation_ledger.config import get_settings
from donation_ledger.database import init_db
from donation_ledger.exceptions import DonationLedgerError
from donation_ledger.middleware.logging import (
    CorrelationIdMiddleware,
    RequestLoggingMiddleware,
    add_correlation_id_processor,
    redact_sensitive_data,
    redact_sensitive_processor,
)

APP_VERSION = "1.0.0"

sentry_dsn = os.getenv("SENTRY_DSN")
if sentry_dsn:
    sentry_sdk.init(
        dsn=sentry_dsn,
        environment=os.getenv("ENVIRONMENT", "development"),
        release=os.getenv("APP_VERSION", APP_VERSION),
        traces_sample_rate=float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1")),
        integrations=[
            FastApiIntegration(transaction_style="endpoint"),
            SqlalchemyIntegration(),
        ],
        # Donor names and emails stay out of Sentry
        send_default_pii=False,
        before_send=lambda event, hint: _filter_sensitive_data(event),
    )


def _filter_sensitive_data(event: dict) -> dict:
    """Filter secrets from Sentry events before sending."""
    request = event.get("request")
    if isinstance(request, dict) and isinstance(request.get("headers"), dict):
        request["headers"] = redact_sensitive_data(request["headers"])
    if "extra" in event:
        event["extra"] = redact_sensitive_data(event["extra"])
    return event


structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        add_correlation_id_processor,
        redact_sensitive_processor,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

settings = get_settings()

app = FastAPI(
    title="Donation Ledger API",
    description="""
## Donation payment reconciliation

Imports Stripe payments into a ledger of donors, children, projects,
sponsorships and donations. Payments arrive either as a historical CSV
export or as live webhook deliveries; both go through the same importer,
which is idempotent on the Stripe charge id.
    """,
    version=APP_VERSION,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {"name": "Webhooks", "description": "Stripe webhook deliveries"},
        {"name": "Imports", "description": "Stripe CSV export imports"},
        {"name": "Health", "description": "Health checks"},
    ],
)

# Order matters: correlation ID first
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(CorrelationIdMiddleware)

app.include_router(webhooks.router, prefix="/api/v1")
app.include_router(imports.router, prefix="/api/v1")


@app.exception_handler(DonationLedgerError)
async def donation_ledger_exception_handler(request: Request, exc: DonationLedgerError):
    """Handle all donation ledger exceptions."""
    log = logger.error if exc.http_status >= 500 else logger.warning
    log(
        "donation_ledger_error",
        error_code=exc.error_code,
        message=exc.message,
        details=exc.details,
        path=str(request.url.path),
    )
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unexpected exceptions with consistent format."""
    sentry_sdk.capture_exception(exc)

    logger.error(
        "unhandled_error",
        error_type=type(exc).__name__,
        message=str(exc),
        path=str(request.url.path),
        exc_info=exc,
    )
    return JSONResponse(
        status_code=500,
        content={
            "error": True,
            "error_code": "DLG-999",
            "message": "An unexpected error occurred. Please try again.",
            "details": {"error_type": type(exc).__name__} if settings.debug else {},
        },
    )


@app.on_event("startup")
async def startup_event() -> None:
    """Initialize application on startup."""
    logger.info("donation_ledger_starting", debug=settings.debug)

    if sentry_dsn:
        logger.info("sentry_enabled", environment=os.getenv("ENVIRONMENT", "development"))
    else:
        logger.warning("sentry_not_configured")

    if not settings.stripe_webhook_secret:
        logger.warning("stripe_webhook_secret_not_configured")

    init_db()

    logger.info("donation_ledger_started", split_policy=settings.sponsorship_split_policy)


@app.get("/health", tags=["Health"])
async def health_check() -> dict:
    """Health check endpoint."""
    return {"status": "healthy", "version": APP_VERSION}
