"""
Ledger persistence.

One engine per process; every import runs in its own session transaction,
so the database is the only state shared between concurrent imports.
"""
from typing import Generator

import structlog
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from donation_ledger.config import get_settings

logger = structlog.get_logger(__name__)

settings = get_settings()


def _build_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        sqlite_engine = create_engine(
            database_url,
            echo=settings.debug,
            connect_args={"check_same_thread": False},
        )

        # SQLite leaves foreign keys unenforced unless asked per connection
        @event.listens_for(sqlite_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return sqlite_engine

    return create_engine(
        database_url,
        echo=settings.debug,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
    )


engine = _build_engine(settings.database_url)

# Services flush explicitly before relying on generated ids
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """
    FastAPI dependency that provides a ledger session.

    Yields:
        Session closed after the request; commits are the services' job.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db() -> None:
    """Create the ledger tables that do not exist yet."""
    from donation_ledger import models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    logger.info("ledger_tables_ready", tables=sorted(Base.metadata.tables))
