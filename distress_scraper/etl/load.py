"""Load module for persisting pipeline output."""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.orm import Session

from ..config import settings
from ..models.property_models import PropertyRecord, ScrapedProperty, utcnow
from ..models.scraper_models import AgentError, OrchestratorResult, ScrapeLog, ScrapingStatus
from ..monitoring.logger import ETLLogger

logger = logging.getLogger(__name__)

NATURAL_KEY = ("address", "city", "state")

# Columns left alone when an existing row is updated
INSERT_ONLY_COLUMNS = NATURAL_KEY + ("created_at",)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

# Longest error text written to a scrape log row
MAX_ERROR_MESSAGE_LENGTH = 4000


def _whole(value: Optional[float]) -> Optional[int]:
    return None if value is None else int(round(value))


def _lot_size_text(value: Optional[float]) -> Optional[str]:
    return None if value is None else format(value, "g")


def property_to_row(prop: ScrapedProperty, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Map a scraped record onto ``properties`` columns.

    Args:
        prop: Record to store
        now: Timestamp for created_at/updated_at

    Returns:
        Dict[str, Any]: Column values
    """
    now = now or utcnow()

    estimated_price = prop.estimated_value
    if estimated_price is None:
        estimated_price = prop.zestimate if prop.zestimate is not None else prop.list_price

    return {
        "address": prop.address,
        "city": prop.city,
        "state": prop.state,
        "zip": prop.zip or None,
        "county": prop.county or None,
        "latitude": prop.latitude,
        "longitude": prop.longitude,
        "distress_type": prop.distress_types[0] if prop.distress_types else None,
        "distress_types": list(prop.distress_types),
        "estimated_price": _whole(estimated_price),
        "arv": _whole(prop.arv_estimate),
        "zillow_zestimate": _whole(prop.zestimate),
        "bedrooms": prop.bedrooms,
        "bathrooms": prop.bathrooms,
        "sqft": prop.sqft,
        "lot_size": _lot_size_text(prop.lot_size),
        "year_built": prop.year_built,
        "owner_name": prop.owner_name,
        "owner_occupied": prop.owner_occupied,
        "loan_balance": _whole(prop.loan_balance),
        "equity_estimate": _whole(prop.equity_estimate),
        "has_equity": prop.equity_estimate is not None and prop.equity_estimate > 0,
        "low_confidence": prop.low_confidence,
        "source": prop.source,
        "source_url": prop.source_url,
        "raw_data": prop.raw_data,
        "created_at": now,
        "updated_at": now,
    }


class PropertyLoader:
    """Batched upserts into the ``properties`` table.

    Rows are keyed on ``(address, city, state)``; storing an address that
    already exists updates the stored row in place.
    """

    def __init__(self, session_factory: Optional[Callable[[], Session]] = None,
                 batch_size: Optional[int] = None):
        """Initialize the loader.

        Args:
            session_factory: Returns a new Session, defaults to SessionLocal
            batch_size: Rows per INSERT round-trip
        """
        if session_factory is None:
            from ..database.connection import SessionLocal
            session_factory = SessionLocal
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.etl.upsert_batch_size
        self.etl_logger = ETLLogger("load")

    def _upsert_statement(self, session: Session, rows: List[Dict[str, Any]]):
        dialect = session.get_bind().dialect.name
        insert = _INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            raise NotImplementedError(f"Upsert is not supported for dialect {dialect}")

        stmt = insert(PropertyRecord).values(rows)
        update_columns = {
            column: stmt.excluded[column]
            for column in rows[0]
            if column not in INSERT_ONLY_COLUMNS
        }
        return stmt.on_conflict_do_update(index_elements=list(NATURAL_KEY), set_=update_columns)

    def _collapse_keys(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        # One statement cannot touch the same conflict target twice; last row wins
        by_key: Dict[tuple, Dict[str, Any]] = {}
        for row in rows:
            by_key[tuple(row[column] for column in NATURAL_KEY)] = row
        return list(by_key.values())

    def save_properties(self, properties: List[ScrapedProperty],
                        errors: Optional[List[AgentError]] = None) -> int:
        """Upsert records in batches of ``batch_size``.

        A failed batch is rolled back, logged and recorded in ``errors``;
        later batches still run.

        Args:
            properties: Records to store
            errors: List that failed-batch errors are appended to

        Returns:
            int: Rows written by committed batches
        """
        started = time.monotonic()
        saved = 0
        failed_batches = 0
        now = utcnow()

        for offset in range(0, len(properties), self.batch_size):
            batch = properties[offset:offset + self.batch_size]
            batch_number = offset // self.batch_size + 1
            rows = self._collapse_keys([property_to_row(p, now) for p in batch])

            session = self.session_factory()
            try:
                session.execute(self._upsert_statement(session, rows))
                session.commit()
                saved += len(rows)
                logger.debug(f"Upserted batch {batch_number} ({len(rows)} rows)")
            except Exception as e:
                session.rollback()
                failed_batches += 1
                logger.error(f"Failed to upsert batch {batch_number}: {e}")
                if errors is not None:
                    errors.append(AgentError(
                        message=f"Failed to save batch {batch_number}: {e}",
                        code=type(e).__name__,
                        agent="loader",
                    ))
            finally:
                session.close()

        self.etl_logger.log_load_results(saved, failed_batches, time.monotonic() - started)
        return saved

    def log_scrape_run(self, saved_search_id: Optional[int], result: OrchestratorResult,
                       started_at: Optional[datetime] = None) -> int:
        """Write one ``scrape_logs`` row for a finished run.

        The run is marked failed only when it produced errors and saved
        nothing.

        Returns:
            int: ID of the new log row
        """
        failed = bool(result.errors) and result.total_saved == 0
        error_message = None
        if result.errors:
            error_message = "; ".join(e.message for e in result.errors)[:MAX_ERROR_MESSAGE_LENGTH]

        completed_at = utcnow()
        status = (ScrapingStatus.FAILED if failed else ScrapingStatus.COMPLETED).value
        log = ScrapeLog(
            saved_search_id=saved_search_id,
            source="orchestrator",
            status=status,
            properties_found=result.total_found,
            new_properties=result.total_saved,
            error_message=error_message,
            results_summary=result.summary(),
            duration_ms=result.duration_ms,
            started_at=started_at or completed_at,
            completed_at=completed_at,
        )

        with self.session_factory() as session:
            session.add(log)
            session.commit()
            log_id = log.id

        logger.info(f"Scrape run logged as {status} (log {log_id})")
        return log_id
