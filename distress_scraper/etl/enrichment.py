"""Best-effort enrichment of scraped records.

Each step fills one gap on a record and is skipped when the gap is
already filled. No step can fail the record: lookups that go wrong are
logged and the record moves on with what it has.
"""

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable, List, Optional

from .geocoding import NominatimGeocoder
from ..config import settings
from ..models.property_models import ScrapedProperty
from ..monitoring.logger import ETLLogger
from ..scrapers.base_scraper import SleepFunc

logger = logging.getLogger(__name__)

ValuationLookup = Callable[[str], Awaitable[Optional[float]]]

# After-repair value multipliers
ARV_VALUE_MULTIPLIER = 1.1
ARV_LIST_PRICE_MULTIPLIER = 1.3


def estimate_arv(prop: ScrapedProperty) -> Optional[int]:
    """After-repair value from the best price signal on the record.

    Distressed list prices sit well below repaired value, so list price
    carries the larger multiplier.
    """
    if prop.zestimate:
        return round(prop.zestimate * ARV_VALUE_MULTIPLIER)
    if prop.estimated_value:
        return round(prop.estimated_value * ARV_VALUE_MULTIPLIER)
    if prop.list_price:
        return round(prop.list_price * ARV_LIST_PRICE_MULTIPLIER)
    return None


def compute_equity(prop: ScrapedProperty) -> Optional[int]:
    """``value - loan_balance``, negative when the property is underwater."""
    value = prop.zestimate if prop.zestimate is not None else prop.estimated_value
    if value is None or prop.loan_balance is None:
        return None
    return round(value - prop.loan_balance)


class PropertyEnricher:
    """Runs the enrichment chain: valuation, ARV, equity, geocode."""

    def __init__(self, valuation: Optional[ValuationLookup] = None,
                 geocoder: Optional[NominatimGeocoder] = None,
                 sleep: Optional[SleepFunc] = None,
                 min_delay: Optional[float] = None,
                 max_delay: Optional[float] = None):
        """Initialize the enricher.

        Args:
            valuation: Coroutine returning a market value for a full address,
                typically ``ZillowScraper.get_zestimate``. Skipped when None.
            geocoder: Geocoder used for records without coordinates
            sleep: Sleep coroutine for the between-record delay
            min_delay: Lower bound of the between-record delay in seconds
            max_delay: Upper bound of the between-record delay in seconds
        """
        self.valuation = valuation
        self.geocoder = geocoder if geocoder is not None else NominatimGeocoder(sleep=sleep)
        self.sleep: SleepFunc = sleep or asyncio.sleep
        self.min_delay = settings.etl.enrich_min_delay if min_delay is None else min_delay
        self.max_delay = settings.etl.enrich_max_delay if max_delay is None else max_delay
        self.etl_logger = ETLLogger("enrichment")

    async def lookup_valuation(self, prop: ScrapedProperty) -> None:
        if self.valuation is None or prop.zestimate is not None:
            return
        if not (prop.address and prop.city and prop.state):
            return

        address = prop.full_address()
        try:
            value = await self.valuation(address)
        except Exception as e:
            logger.warning(f"Valuation lookup failed for {address}: {e}")
            return

        if value:
            prop.zestimate = value
            if prop.estimated_value is None:
                prop.estimated_value = value

    async def geocode(self, prop: ScrapedProperty) -> None:
        if prop.latitude is not None and prop.longitude is not None:
            return
        if not prop.address:
            return

        address = prop.full_address()
        try:
            coords = await self.geocoder.geocode(address)
        except Exception as e:
            logger.warning(f"Geocoding raised for {address}: {e}")
            return

        if coords:
            prop.latitude, prop.longitude = coords

    async def enrich_property(self, prop: ScrapedProperty) -> ScrapedProperty:
        """Enrich one record.

        Args:
            prop: Record to enrich; it is not modified

        Returns:
            ScrapedProperty: Enriched copy
        """
        enriched = prop.model_copy(deep=True)

        await self.lookup_valuation(enriched)

        if enriched.arv_estimate is None:
            enriched.arv_estimate = estimate_arv(enriched)

        if enriched.equity_estimate is None:
            enriched.equity_estimate = compute_equity(enriched)

        await self.geocode(enriched)
        return enriched

    async def enrich_properties(self, properties: List[ScrapedProperty]) -> List[ScrapedProperty]:
        """Enrich records one at a time.

        Records are never processed concurrently; the geocoder allows a
        single caller. A record whose enrichment raises is returned
        unenriched, so the output always has the same length and order as
        the input.

        Args:
            properties: Records to enrich

        Returns:
            List[ScrapedProperty]: Enriched records
        """
        started = time.monotonic()
        enriched: List[ScrapedProperty] = []
        failed = 0

        for index, prop in enumerate(properties):
            if index > 0:
                await self.sleep(random.uniform(self.min_delay, self.max_delay))
            try:
                enriched.append(await self.enrich_property(prop))
            except Exception as e:
                failed += 1
                logger.error(f"Enrichment failed for {prop.full_address()}: {e}")
                enriched.append(prop)

        self.etl_logger.log_enrichment_results(len(properties), failed, time.monotonic() - started)
        return enriched

    async def aclose(self) -> None:
        await self.geocoder.aclose()
