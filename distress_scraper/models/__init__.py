"""Data models package."""

from .property_models import (
    Base,
    DistressType,
    PropertyRecord,
    ScrapedProperty,
    empty_scraped_property,
)
from .scraper_models import (
    AgentError,
    AgentResult,
    OrchestratorResult,
    SavedSearch,
    ScrapeLog,
    ScrapingStatus,
    SearchCriteria,
)

__all__ = [
    "Base",
    "DistressType",
    "PropertyRecord",
    "ScrapedProperty",
    "empty_scraped_property",
    "AgentError",
    "AgentResult",
    "OrchestratorResult",
    "SavedSearch",
    "ScrapeLog",
    "ScrapingStatus",
    "SearchCriteria",
]
