"""Logging configuration and setup."""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional
import structlog

from ..config import settings


def setup_logging(log_file: Optional[str] = None, log_level: Optional[str] = None) -> None:
    """Set up structured logging for the pipeline.

    Args:
        log_file: Optional log file path, defaults to settings.log_file
        log_level: Logging level, defaults to settings.log_level
    """
    if log_file is None:
        log_file = settings.log_file
    if log_level is None:
        log_level = settings.log_level

    level = getattr(logging, log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    ))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10MB
            backupCount=5
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(
            '{"timestamp": "%(asctime)s", "logger": "%(name)s", "level": "%(levelname)s", "message": "%(message)s"}'
        ))
        root_logger.addHandler(file_handler)

    # Per-request noise from the HTTP and DB stacks
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    logging.info(f"Logging configured - Level: {log_level}, File: {log_file}")


class ScrapingLogger:
    """Structured events for one agent run."""

    def __init__(self, agent_name: str, run_id: Optional[str] = None):
        """Initialize scraping logger.

        Args:
            agent_name: Name of the source agent
            run_id: Optional run ID for correlating events
        """
        self.agent_name = agent_name
        self.run_id = run_id
        self.logger = structlog.get_logger(f"scraper.{agent_name}")

        if run_id:
            self.logger = self.logger.bind(run_id=run_id)

    def log_search_start(self, city: str, state: str, filters: Optional[dict] = None):
        self.logger.info(
            "Agent search started",
            city=city,
            state=state,
            filters=filters or {},
            agent=self.agent_name
        )

    def log_page_fetched(self, url: str, properties_found: int):
        """Log one fetched page or API response.

        Args:
            url: URL that was fetched
            properties_found: Records extracted from it
        """
        self.logger.info(
            "Page fetched",
            url=url,
            properties_found=properties_found,
            agent=self.agent_name
        )

    def log_rate_limit(self, wait_seconds: float):
        self.logger.warning(
            "Rate limit wait",
            wait_seconds=round(wait_seconds, 3),
            agent=self.agent_name
        )

    def log_error(self, error: Exception, context: Optional[dict] = None):
        """Log a swallowed error with context.

        Args:
            error: Exception that occurred
            context: Additional context information
        """
        self.logger.warning(
            "Agent error captured",
            error=str(error),
            error_type=type(error).__name__,
            context=context or {},
            agent=self.agent_name
        )

    def log_search_complete(self, total_properties: int, errors: int,
                            duration_ms: int, request_count: int):
        """Log completion of an agent run.

        Args:
            total_properties: Records returned
            errors: Captured error count
            duration_ms: Wall time in milliseconds
            request_count: Outbound HTTP calls made
        """
        self.logger.info(
            "Agent search completed",
            total_properties=total_properties,
            errors=errors,
            duration_ms=duration_ms,
            request_count=request_count,
            agent=self.agent_name
        )


class ETLLogger:
    """Structured events for the dedup, enrichment and load stages."""

    def __init__(self, process_name: str, batch_id: Optional[str] = None):
        """Initialize ETL logger.

        Args:
            process_name: Name of the ETL process
            batch_id: Optional batch ID for tracking
        """
        self.process_name = process_name
        self.batch_id = batch_id
        self.logger = structlog.get_logger(f"etl.{process_name}")

        if batch_id:
            self.logger = self.logger.bind(batch_id=batch_id)

    def log_batch_start(self, record_count: int, source: str):
        self.logger.info(
            "ETL batch started",
            record_count=record_count,
            source=source,
            process=self.process_name
        )

    def log_deduplication_results(self, input_count: int, unique_count: int):
        """Log deduplication results.

        Args:
            input_count: Number of input records
            unique_count: Number of records after merging
        """
        duplicates = input_count - unique_count
        self.logger.info(
            "Deduplication completed",
            input_records=input_count,
            unique_records=unique_count,
            duplicates=duplicates,
            duplication_rate=duplicates / input_count if input_count > 0 else 0,
            process=self.process_name
        )

    def log_enrichment_results(self, input_count: int, failed: int, processing_time: float):
        self.logger.info(
            "Enrichment completed",
            input_records=input_count,
            failed_records=failed,
            processing_time=processing_time,
            process=self.process_name
        )

    def log_load_results(self, records_saved: int, errors: int, processing_time: float):
        """Log data loading results.

        Args:
            records_saved: Number of records committed
            errors: Number of failed batches
            processing_time: Processing time in seconds
        """
        self.logger.info(
            "Data loading completed",
            records_saved=records_saved,
            errors=errors,
            processing_time=processing_time,
            process=self.process_name
        )

    def log_batch_complete(self, total_time: float, success: bool, summary: dict):
        self.logger.info(
            "ETL batch completed",
            total_time=total_time,
            success=success,
            summary=summary,
            process=self.process_name
        )
