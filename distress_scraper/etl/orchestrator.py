"""Scrape orchestrator.

Picks the agents a search needs, runs them concurrently, then takes the
combined output through dedup, filtering, enrichment and persistence.
"""

import asyncio
import logging
import time
import uuid
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Union

from .deduplication import deduplicate_properties
from .enrichment import PropertyEnricher
from .load import PropertyLoader
from ..config import settings
from ..models.property_models import (
    FORECLOSURE_TYPES, PRE_FORECLOSURE_TYPES, REO_TYPES, ScrapedProperty, utcnow,
)
from ..models.scraper_models import AgentError, AgentResult, OrchestratorResult, SavedSearch, SearchCriteria
from ..monitoring.logger import ETLLogger
from ..scrapers.attom_scraper import AttomScraper
from ..scrapers.base_scraper import BaseScraper, SleepFunc
from ..scrapers.county_records_scraper import CountyRecordsScraper, guess_county
from ..scrapers.foreclosure_sites_scraper import ForeclosureSitesScraper
from ..scrapers.rate_limiter import SlidingWindowRateLimiter
from ..scrapers.zillow_scraper import ZillowScraper

logger = logging.getLogger(__name__)

AgentFactory = Callable[[], BaseScraper]

ZILLOW = ZillowScraper.AGENT_NAME
FORECLOSURE_SITES = ForeclosureSitesScraper.AGENT_NAME
ATTOM = AttomScraper.AGENT_NAME
COUNTY_RECORDS = CountyRecordsScraper.AGENT_NAME

SOURCES = (ZILLOW, FORECLOSURE_SITES, ATTOM, COUNTY_RECORDS)


class AgentCall(NamedTuple):
    """One planned ``agent.search(location, state, **filters)`` call."""
    source: str
    location: str
    state: str
    filters: Dict[str, Any]


def wants(distress_types: List[str], category: frozenset) -> bool:
    """True when no filter is given or the filter touches ``category``."""
    return not distress_types or any(t in category for t in distress_types)


def plan_agent_calls(criteria: SearchCriteria, attom_configured: bool) -> List[AgentCall]:
    """Decide which agent calls a search needs.

    A ``source`` restriction limits the plan to that one agent. ATTOM is
    skipped while it has no key unless it was asked for by name, in which
    case it runs and reports the missing key itself.

    Args:
        criteria: Validated search criteria
        attom_configured: Whether an ATTOM key is available

    Returns:
        List[AgentCall]: Calls to run concurrently
    """
    city, state = criteria.city.strip(), criteria.state.strip()
    types = criteria.distress_types
    source = criteria.source

    wants_foreclosure = wants(types, FORECLOSURE_TYPES)
    wants_pre_foreclosure = wants(types, PRE_FORECLOSURE_TYPES)
    wants_reo = wants(types, REO_TYPES)

    def selected(name: str) -> bool:
        return not source or source == name

    calls: List[AgentCall] = []

    if selected(ZILLOW):
        if types:
            calls.extend(AgentCall(ZILLOW, city, state, {"distress_type": t}) for t in types)
        else:
            calls.append(AgentCall(ZILLOW, city, state, {}))

    if selected(FORECLOSURE_SITES) and (wants_foreclosure or wants_reo):
        calls.append(AgentCall(FORECLOSURE_SITES, city, state, {}))

    if selected(ATTOM) and (attom_configured or source == ATTOM):
        if wants_pre_foreclosure:
            calls.append(AgentCall(ATTOM, city, state, {"kind": "preforeclosure"}))
        if wants_foreclosure:
            calls.append(AgentCall(ATTOM, city, state, {"kind": "foreclosure"}))

    if selected(COUNTY_RECORDS) and wants_pre_foreclosure:
        calls.append(AgentCall(COUNTY_RECORDS, guess_county(city, state), state, {}))

    return calls


def price_of(prop: ScrapedProperty) -> float:
    if prop.list_price is not None:
        return prop.list_price
    if prop.estimated_value is not None:
        return prop.estimated_value
    return 0


def filter_by_price(properties: List[ScrapedProperty], min_price: Optional[float],
                    max_price: Optional[float]) -> List[ScrapedProperty]:
    """Keep records priced within ``[min_price, max_price]``, both inclusive."""
    low = min_price if min_price is not None else 0
    high = max_price if max_price is not None else float("inf")
    return [p for p in properties if low <= price_of(p) <= high]


def filter_by_equity(properties: List[ScrapedProperty], min_equity: float) -> List[ScrapedProperty]:
    return [p for p in properties if p.equity_estimate is not None and p.equity_estimate >= min_equity]


class ScrapeOrchestrator:
    """Runs searches across all source agents and persists the results.

    Agents are created fresh for every call through ``agent_factories`` and
    closed afterwards. The ATTOM rate limiter is the exception: it lives on
    the orchestrator so every ATTOM agent in the process shares one window.
    """

    def __init__(self, agent_factories: Optional[Dict[str, AgentFactory]] = None,
                 enricher: Optional[PropertyEnricher] = None,
                 loader: Optional[PropertyLoader] = None,
                 attom_configured: Optional[bool] = None,
                 attom_rate_limiter: Optional[SlidingWindowRateLimiter] = None,
                 sleep: Optional[SleepFunc] = None):
        """Initialize the orchestrator.

        Args:
            agent_factories: Source name -> zero-argument agent factory.
                Missing sources fall back to the real agents.
            enricher: Enrichment chain, defaults to Zillow valuations plus
                Nominatim geocoding
            loader: Persistence adapter, defaults to the configured database
            attom_configured: Whether ATTOM may be selected, defaults to
                whether ATTOM_API_KEY is set
            attom_rate_limiter: Process-wide ATTOM limiter
            sleep: Sleep coroutine handed to the default agents and enricher
        """
        self.sleep = sleep
        self.attom_rate_limiter = attom_rate_limiter or SlidingWindowRateLimiter(
            settings.api.attom_max_requests,
            settings.api.attom_window_seconds,
            sleep=sleep,
        )

        self.agent_factories: Dict[str, AgentFactory] = {
            ZILLOW: lambda: ZillowScraper(sleep=self.sleep),
            FORECLOSURE_SITES: lambda: ForeclosureSitesScraper(sleep=self.sleep),
            ATTOM: lambda: AttomScraper(rate_limiter=self.attom_rate_limiter, sleep=self.sleep),
            COUNTY_RECORDS: lambda: CountyRecordsScraper(sleep=self.sleep),
        }
        self.agent_factories.update(agent_factories or {})

        self._valuation_agent: Optional[ZillowScraper] = None
        if enricher is None:
            self._valuation_agent = ZillowScraper(sleep=sleep)
            enricher = PropertyEnricher(valuation=self._valuation_agent.get_zestimate, sleep=sleep)
        self.enricher = enricher

        self.loader = loader or PropertyLoader()
        self.attom_configured = (
            bool(settings.api.attom_api_key) if attom_configured is None else attom_configured
        )

    async def _invoke(self, call: AgentCall) -> AgentResult:
        agent = self.agent_factories[call.source]()
        try:
            return await agent.search(call.location, call.state, **call.filters)
        finally:
            await agent.aclose()

    async def run_search(self, criteria: Union[SearchCriteria, Dict[str, Any]]) -> OrchestratorResult:
        """Run one search end to end.

        Anticipated failures come back as ``errors`` on the result; only
        programming errors propagate.

        Args:
            criteria: SearchCriteria, or a dict in either key style

        Returns:
            OrchestratorResult: Per-stage counts, agent envelopes and errors
        """
        started = time.monotonic()
        if not isinstance(criteria, SearchCriteria):
            criteria = SearchCriteria.from_dict(criteria)

        result = OrchestratorResult()

        if not criteria.city.strip() or not criteria.state.strip():
            result.errors.append(AgentError(
                message="City and state are required for search",
                code="InvalidCriteria",
            ))
            result.duration_ms = int((time.monotonic() - started) * 1000)
            return result

        run_id = uuid.uuid4().hex[:12]
        etl_logger = ETLLogger("orchestrator", run_id)

        # Agents
        calls = plan_agent_calls(criteria, self.attom_configured)
        logger.info(
            f"Running {len(calls)} agent calls for {criteria.city}, {criteria.state}: "
            f"{[c.source for c in calls]}"
        )
        outcomes = await asyncio.gather(*(self._invoke(c) for c in calls), return_exceptions=True)

        properties: List[ScrapedProperty] = []
        for call, outcome in zip(calls, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(f"Agent {call.source} failed entirely: {outcome}")
                result.errors.append(AgentError(
                    message=f"Agent failed entirely: {outcome}",
                    code=type(outcome).__name__,
                    agent=call.source,
                ))
                continue
            result.agent_results.append(outcome)
            properties.extend(outcome.properties)
            result.errors.extend(outcome.errors)

        result.total_found = len(properties)
        etl_logger.log_batch_start(result.total_found, ",".join(c.source for c in calls))

        # Dedup
        properties = deduplicate_properties(properties, etl_logger)
        result.total_after_dedup = len(properties)

        # Price filter
        if criteria.min_price is not None or criteria.max_price is not None:
            properties = filter_by_price(properties, criteria.min_price, criteria.max_price)

        # Enrichment
        try:
            enriched = await self.enricher.enrich_properties(properties)
        except Exception as e:
            logger.error(f"Enrichment failed: {e}")
            result.errors.append(AgentError(message=f"Enrichment failed: {e}", code=type(e).__name__))
            enriched = properties

        # Equity filter
        if criteria.min_equity is not None and criteria.min_equity > 0:
            enriched = filter_by_equity(enriched, criteria.min_equity)
        result.total_enriched = len(enriched)

        # Persist
        if enriched:
            try:
                result.total_saved = self.loader.save_properties(enriched, result.errors)
            except Exception as e:
                logger.error(f"Failed to save properties: {e}")
                result.errors.append(AgentError(
                    message=f"Failed to save properties: {e}",
                    code=type(e).__name__,
                ))

        result.duration_ms = int((time.monotonic() - started) * 1000)
        etl_logger.log_batch_complete(
            result.duration_ms / 1000, not result.errors, result.summary()
        )
        return result

    async def run_saved_search(self, saved_search_id: int) -> OrchestratorResult:
        """Re-run a stored search and record the run.

        Args:
            saved_search_id: ``saved_searches.id``

        Returns:
            OrchestratorResult: Result of the run

        Raises:
            LookupError: If no saved search has that ID
        """
        session_factory = self.loader.session_factory

        with session_factory() as session:
            saved = session.get(SavedSearch, saved_search_id)
            if saved is None:
                raise LookupError(f"Saved search {saved_search_id} not found")
            params = dict(saved.search_params or {})
            saved.last_run_at = utcnow()
            session.commit()

        started_at = utcnow()
        result = await self.run_search(SearchCriteria.from_dict(params))

        try:
            self.loader.log_scrape_run(saved_search_id, result, started_at)
        except Exception as e:
            logger.error(f"Failed to log scrape run for saved search {saved_search_id}: {e}")

        with session_factory() as session:
            saved = session.get(SavedSearch, saved_search_id)
            if saved is not None:
                saved.results_count = result.total_saved
                saved.last_run_at = utcnow()
                session.commit()

        return result

    async def aclose(self) -> None:
        if self._valuation_agent is not None:
            await self._valuation_agent.aclose()
        await self.enricher.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()
