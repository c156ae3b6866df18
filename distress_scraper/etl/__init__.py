"""ETL pipeline package.

The orchestrator is imported from ``distress_scraper.etl.orchestrator``;
it depends on the agents, which depend on ``etl.transform``.
"""

from .deduplication import deduplicate_properties, merge_properties
from .load import PropertyLoader

__all__ = [
    "deduplicate_properties",
    "merge_properties",
    "PropertyLoader",
]
