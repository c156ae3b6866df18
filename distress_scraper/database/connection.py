"""Database connection and session management."""

from pathlib import Path
from typing import Generator, Optional
import logging

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import sessionmaker, Session

from ..config import settings
from ..models.property_models import Base

logger = logging.getLogger(__name__)


def create_db_engine(database_url: Optional[str] = None, echo: Optional[bool] = None) -> Engine:
    """Create an engine for the configured database.

    SQLite file databases get their parent directory created.
    """
    database_url = database_url or settings.database.database_url
    url = make_url(database_url)

    if url.get_backend_name() == "sqlite" and url.database and url.database != ":memory:":
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_recycle=300,
        echo=settings.database.database_echo if echo is None else echo,
    )


# Create database engine
engine = create_db_engine()

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db() -> Generator[Session, None, None]:
    """Get database session.

    Yields:
        Session: Database session
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None) -> None:
    """Create the properties, saved_searches and scrape_logs tables."""
    try:
        # Registers SavedSearch and ScrapeLog on the shared metadata
        from ..models import scraper_models  # noqa: F401

        Base.metadata.create_all(bind=bind or engine)
        logger.info("Database initialized successfully")

    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise


def check_db_connection(bind: Optional[Engine] = None) -> bool:
    """Check if database connection is working.

    Returns:
        bool: True if connection is working, False otherwise
    """
    try:
        with (bind or engine).connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database connection failed: {e}")
        return False
