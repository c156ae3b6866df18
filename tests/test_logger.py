import logging

import pytest

from distress_scraper.monitoring.logger import ETLLogger, ScrapingLogger, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def test_setup_logging_creates_log_directory(tmp_path, restore_root_logger):
    log_file = tmp_path / "logs" / "pipeline.log"
    setup_logging(log_file=str(log_file), log_level="debug")

    assert log_file.parent.is_dir()
    assert restore_root_logger.level == logging.DEBUG
    assert len(restore_root_logger.handlers) == 2
    assert logging.getLogger("httpx").level == logging.WARNING


def test_loggers_bind_run_ids():
    scrape_logger = ScrapingLogger("zillow", run_id="abc123")
    etl_logger = ETLLogger("deduplication", batch_id="batch-1")

    assert scrape_logger.agent_name == "zillow"
    assert etl_logger.process_name == "deduplication"
    # structured events never raise, whatever the configuration
    scrape_logger.log_search_complete(1, 0, 12, 1)
    etl_logger.log_deduplication_results(0, 0)
