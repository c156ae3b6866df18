"""Scraper-related data models."""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, Boolean
from pydantic import BaseModel, Field

from .property_models import Base, ScrapedProperty, utcnow


class ScrapingStatus(str, Enum):
    """Scrape run status enumeration."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class AgentError(BaseModel):
    """A failure captured as data instead of being raised."""

    message: str
    code: Optional[str] = None
    url: Optional[str] = None
    agent: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        prefix: str = "",
        agent: Optional[str] = None,
        url: Optional[str] = None,
    ) -> "AgentError":
        """Build an error record from a caught exception.

        Args:
            exc: The caught exception
            prefix: Context prepended to the message
            agent: Agent that caught it
            url: Request URL, if any

        Returns:
            AgentError: The error record
        """
        message = f"{prefix}: {exc}" if prefix else str(exc)
        code = getattr(exc, "code", None) or type(exc).__name__
        return cls(
            message=message,
            code=str(code),
            url=url or getattr(exc, "url", None),
            agent=agent,
        )


class AgentResult(BaseModel):
    """Per-agent output envelope."""

    agent: str
    properties: List[ScrapedProperty] = Field(default_factory=list)
    errors: List[AgentError] = Field(default_factory=list)
    duration_ms: int = 0
    request_count: int = 0

    @classmethod
    def failed(cls, agent: str, message: str, code: Optional[str] = None) -> "AgentResult":
        """Envelope for an agent that could not run at all."""
        return cls(agent=agent, errors=[AgentError(message=message, code=code, agent=agent)])


# camelCase keys as stored in saved searches
CRITERIA_ALIASES = {
    "distressTypes": "distress_types",
    "minPrice": "min_price",
    "maxPrice": "max_price",
    "minEquity": "min_equity",
}


class SearchCriteria(BaseModel):
    """Parameters for one orchestrator run."""

    city: str = ""
    state: str = ""
    distress_types: List[str] = Field(default_factory=list)
    min_price: Optional[float] = None
    max_price: Optional[float] = None
    min_equity: Optional[float] = None
    source: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SearchCriteria":
        """Build criteria from either camelCase or snake_case keys.

        Unknown keys are ignored so stored search payloads with extra UI
        fields still load.
        """
        data = data or {}
        normalized: Dict[str, Any] = {}
        for key, value in data.items():
            name = CRITERIA_ALIASES.get(key, key)
            if name in cls.model_fields and value is not None:
                normalized[name] = value
        return cls(**normalized)


class OrchestratorResult(BaseModel):
    """Summary of one pipeline run. Never persisted as an entity."""

    total_found: int = 0
    total_after_dedup: int = 0
    total_enriched: int = 0
    total_saved: int = 0
    agent_results: List[AgentResult] = Field(default_factory=list)
    errors: List[AgentError] = Field(default_factory=list)
    duration_ms: int = 0

    def summary(self) -> Dict[str, Any]:
        """Counts and error text for logging and the scrape log row."""
        return {
            "total_found": self.total_found,
            "total_after_dedup": self.total_after_dedup,
            "total_enriched": self.total_enriched,
            "total_saved": self.total_saved,
            "agents": {r.agent: len(r.properties) for r in self.agent_results},
            "error_count": len(self.errors),
            "duration_ms": self.duration_ms,
        }


class SavedSearch(Base):
    """A stored set of search criteria that can be re-run."""

    __tablename__ = "saved_searches"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    search_params = Column(JSON, nullable=True)
    is_active = Column(Boolean, default=True)
    results_count = Column(Integer, default=0)
    last_run_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


class ScrapeLog(Base):
    """One row per orchestrator run."""

    __tablename__ = "scrape_logs"

    id = Column(Integer, primary_key=True, index=True)
    saved_search_id = Column(Integer, nullable=True)
    source = Column(String(100), nullable=False, default="orchestrator")
    status = Column(String(50), nullable=False, default=ScrapingStatus.RUNNING.value)

    properties_found = Column(Integer, default=0)
    new_properties = Column(Integer, default=0)
    error_message = Column(Text, nullable=True)
    results_summary = Column(JSON, nullable=True)
    duration_ms = Column(Integer, default=0)

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)
