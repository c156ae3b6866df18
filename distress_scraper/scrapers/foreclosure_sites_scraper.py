"""Foreclosure and REO listing sites.

Each site gets a small scraper of its own; ``ForeclosureSitesScraper`` runs
them side by side and folds their envelopes into one.
"""

import asyncio
import re
from typing import Dict, Any, Optional, List, Sequence
from urllib.parse import urlencode, urljoin, quote

from .base_scraper import BaseScraper, AgentRun
from .extraction import ExtractionChain, css_cards_strategy, json_ld_strategy
from ..config import settings
from ..etl.transform import as_int, as_number, as_text, city_slug, first_present, parse_price, state_slug
from ..models.property_models import ScrapedProperty, DistressType

# Card addresses this short are navigation text, not addresses
MIN_ADDRESS_LENGTH = 5


class ListingSiteScraper(BaseScraper):
    """One listing site: fetch a results page, then map its cards.

    Subclasses set the site URL, card selectors in priority order and the
    field selectors used inside a card.
    """

    SITE_URL = ""
    CARD_SELECTORS: Sequence[str] = ()
    ADDRESS_SELECTOR = '.address, [class*="address"], h3, h4'
    PRICE_SELECTOR = '.price, [class*="price"]'
    LINK_SELECTOR = "a[href]"
    DISTRESS_TYPE = DistressType.REO.value

    def __init__(self, **kwargs):
        kwargs.setdefault("min_delay", settings.scraper.html_min_delay)
        kwargs.setdefault("max_delay", settings.scraper.html_max_delay)
        super().__init__(**kwargs)
        self.card_chain = ExtractionChain([css_cards_strategy(s) for s in self.CARD_SELECTORS])

    def absolute_url(self, link: str) -> str:
        return urljoin(self.SITE_URL, link)

    @staticmethod
    def has_usable_address(prop: ScrapedProperty) -> bool:
        return len(prop.address.strip()) > MIN_ADDRESS_LENGTH

    def map_card(self, card, city: str, state: str,
                 distress_type: Optional[str] = None) -> ScrapedProperty:
        """Map a listing card with the site's selectors.

        Args:
            card: Card element
            city: Searched city
            state: Searched state
            distress_type: Tag override, defaults to the site's type

        Returns:
            ScrapedProperty: Normalized record
        """
        prop = self.new_property()
        prop.address = self.safe_extract_text(card, self.ADDRESS_SELECTOR)
        prop.city = city
        prop.state = state.upper()
        prop.list_price = parse_price(self.safe_extract_text(card, self.PRICE_SELECTOR))

        details = self.parse_details_text(card.get_text(" ", strip=True))
        prop.bedrooms = details["bedrooms"]
        prop.bathrooms = details["bathrooms"]
        prop.sqft = details["sqft"]

        link = self.safe_extract_attribute(card, self.LINK_SELECTOR, "href")
        if link:
            prop.source_url = self.absolute_url(link)

        prop.source_id = re.sub(r"\s+", "-", f"{self.AGENT_NAME.split('.')[0]}-{prop.address}")
        prop.distress_types = [distress_type or self.DISTRESS_TYPE]
        return prop

    def collect_cards(self, run: AgentRun, html: str, url: str, city: str, state: str,
                      distress_type: Optional[str] = None) -> int:
        """Map every card on a results page into ``run``.

        Returns:
            int: Records added
        """
        soup = self.parse_html(html)
        result = self.card_chain.extract(soup)

        added = 0
        for card in result.items:
            try:
                prop = self.map_card(card, city, state, distress_type)
            except Exception as e:
                run.add_error(e, url=url, prefix=f"{self.AGENT_NAME} card parse error")
                continue
            if self.has_usable_address(prop):
                run.add(prop)
                added += 1

        self.scrape_logger.log_page_fetched(url, added)
        return added


class ForeclosureDotComScraper(ListingSiteScraper):
    """foreclosure.com city listings."""

    AGENT_NAME = "foreclosure.com"
    SITE_URL = "https://www.foreclosure.com"
    CARD_SELECTORS = (".result-item", ".search-result", '[class*="listing"]', '[class*="property"]')
    ADDRESS_SELECTOR = '[class*="address"], .property-address, h3, h4, a[href*="/listing/"]'
    PRICE_SELECTOR = '[class*="price"], .property-price, .listing-price'
    LINK_SELECTOR = 'a[href*="/listing/"]'
    DISTRESS_TYPE = DistressType.AUCTION.value

    TYPE_SLUGS = {
        DistressType.AUCTION.value: "foreclosure",
        DistressType.PRE_FORECLOSURE.value: "preforeclosure",
        DistressType.REO.value: "bankruptcy",
        DistressType.TAX_LIEN.value: "tax-lien",
    }

    def build_url(self, city: str, state: str, distress_type: Optional[str] = None) -> str:
        path_type = self.TYPE_SLUGS.get(distress_type or "", "foreclosure")
        return f"{self.SITE_URL}/listings/{path_type}/{state_slug(state)}/{city_slug(city)}.html"

    def map_card(self, card, city: str, state: str,
                 distress_type: Optional[str] = None) -> ScrapedProperty:
        prop = super().map_card(card, city, state, distress_type)
        link = self.safe_extract_attribute(card, self.LINK_SELECTOR, "href")
        if link:
            prop.source_id = re.sub(r"[^a-zA-Z0-9]", "-", link)
        return prop

    async def _search(self, run: AgentRun, city: str, state: str,
                      distress_type: Optional[str] = None, **filters) -> None:
        url = self.build_url(city, state, distress_type)
        html = await self.fetch_text(url, run=run, headers={"Referer": "https://www.google.com/"})
        self.collect_cards(run, html, url, city, state, distress_type)


class HudHomesScraper(ListingSiteScraper):
    """HUD Home Store government-owned listings."""

    AGENT_NAME = "hudhomestore.gov"
    SITE_URL = "https://www.hudhomestore.gov"
    CARD_SELECTORS = (".property-card", ".listing-row", "table.results tbody tr", ".search-result-item")
    ADDRESS_SELECTOR = ".property-address, .address, td:nth-child(1)"
    PRICE_SELECTOR = ".property-price, .price, .list-price, td:nth-child(5)"
    LINK_SELECTOR = 'a[href*="Property"]'

    def build_url(self, city: str, state: str) -> str:
        params = urlencode({
            "State": state.upper(),
            "City": city,
            "Zip": "",
            "sLanguage": "ENGLISH",
            "iPS": "50",
            "iNP": "1",
            "bSP": "false",
        })
        return f"{self.SITE_URL}/Listing/PropertySearchResult?{params}"

    def map_card(self, card, city: str, state: str,
                 distress_type: Optional[str] = None) -> ScrapedProperty:
        prop = super().map_card(card, city, state, None)
        prop.city = self.safe_extract_text(card, ".property-city, .city, td:nth-child(2)") or city
        prop.zip = self.safe_extract_text(card, ".property-zip, .zip, td:nth-child(4)")

        case_number = (
            self.safe_extract_text(card, ".case-number, .hud-case, td:nth-child(6)")
            or card.get("data-case-number", "")
        )
        prop.source_id = case_number or re.sub(r"\s+", "-", f"hud-{prop.address}")
        return prop

    async def _search(self, run: AgentRun, city: str, state: str, **filters) -> None:
        url = self.build_url(city, state)
        html = await self.fetch_text(url, run=run, headers={"Referer": "https://www.google.com/"})
        self.collect_cards(run, html, url, city, state)


class HomePathScraper(ListingSiteScraper):
    """Fannie Mae HomePath REO listings.

    The search endpoint answers a form POST with JSON or HTML depending on
    the day; both are handled.
    """

    AGENT_NAME = "homepath.fanniemae.com"
    SITE_URL = "https://www.homepath.fanniemae.com"
    SEARCH_PATH = "/cgi-bin/searchMgr/search.cgi"
    CARD_SELECTORS = (".property-listing", ".result-item", '[class*="listing"]')
    LINK_SELECTOR = "a[href]"

    def build_form(self, city: str, state: str) -> Dict[str, str]:
        return {
            "city": city,
            "state": state.upper(),
            "zip": "",
            "radius": "25",
            "minPrice": "0",
            "maxPrice": "999999999",
            "minBeds": "0",
            "minBaths": "0",
            "propertyType": "SFR,CONDO,MULTI",
            "pageSize": "50",
            "page": "1",
        }

    def map_json_listing(self, listing: Dict[str, Any], city: str, state: str) -> ScrapedProperty:
        prop = self.new_property()
        prop.source_id = as_text(first_present(listing, "id", "caseNumber"))
        prop.address = as_text(first_present(listing, "address", "streetAddress"))
        prop.city = as_text(listing.get("city"), city)
        prop.state = state.upper()
        prop.zip = as_text(first_present(listing, "zip", "zipCode"))

        list_price = as_number(listing.get("listPrice"))
        prop.list_price = list_price if list_price is not None else parse_price(as_text(listing.get("listPrice")))
        prop.bedrooms = as_int(listing.get("bedrooms"))
        prop.bathrooms = as_number(listing.get("bathrooms"))
        prop.sqft = as_int(listing.get("sqft"))

        prop.distress_types = [self.DISTRESS_TYPE]
        url = listing.get("url")
        prop.source_url = self.absolute_url(str(url)) if url else None
        prop.raw_data = listing
        return prop

    async def _search(self, run: AgentRun, city: str, state: str, **filters) -> None:
        url = f"{self.SITE_URL}{self.SEARCH_PATH}"
        response = await self.post_form(
            url, self.build_form(city, state), run=run,
            headers={"Accept": "text/html,application/json,*/*"},
        )

        if "json" not in response.headers.get("content-type", ""):
            self.collect_cards(run, response.text, url, city, state)
            return

        try:
            data = response.json()
        except ValueError as e:
            run.add_error(e, url=url, prefix="HomePath JSON parse error")
            return

        listings = []
        if isinstance(data, dict):
            listings = first_present(data, "properties", "results", default=[])
        for listing in listings:
            try:
                prop = self.map_json_listing(listing, city, state)
            except Exception as e:
                run.add_error(e, url=url, prefix="HomePath listing parse error")
                continue
            if self.has_usable_address(prop):
                run.add(prop)
        self.scrape_logger.log_page_fetched(url, len(run.properties))


class HomeStepsScraper(ListingSiteScraper):
    """Freddie Mac HomeSteps REO listings."""

    AGENT_NAME = "homesteps.com"
    SITE_URL = "https://www.homesteps.com"
    CARD_SELECTORS = (".listing-card", ".property-card", ".result-item", '[class*="listing"]')

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.json_ld_chain = ExtractionChain([json_ld_strategy(types=("Product", "RealEstateListing"))])

    def build_url(self, city: str, state: str) -> str:
        return (
            f"{self.SITE_URL}/listings?state={quote(state.upper(), safe='')}"
            f"&city={quote(city, safe='')}&page=1"
        )

    def map_json_ld_listing(self, listing: Dict[str, Any], city: str, state: str) -> ScrapedProperty:
        prop = self.new_property()
        address = listing.get("address") if isinstance(listing.get("address"), dict) else {}
        offers = listing.get("offers") if isinstance(listing.get("offers"), dict) else {}

        prop.address = as_text(first_present(listing, "name", default=address.get("streetAddress")))
        prop.city = as_text(address.get("addressLocality"), city)
        prop.state = state.upper()
        prop.zip = as_text(address.get("postalCode"))
        prop.list_price = parse_price(as_text(offers.get("price")))
        prop.distress_types = [self.DISTRESS_TYPE]
        prop.source_id = re.sub(r"\s+", "-", f"homesteps-{prop.address}")
        url = listing.get("url")
        prop.source_url = self.absolute_url(str(url)) if url else None
        prop.raw_data = listing
        return prop

    async def _search(self, run: AgentRun, city: str, state: str, **filters) -> None:
        url = self.build_url(city, state)
        html = await self.fetch_text(url, run=run)

        for listing in self.json_ld_chain.extract(self.parse_html(html)).items:
            try:
                prop = self.map_json_ld_listing(listing, city, state)
            except Exception as e:
                run.add_error(e, url=url, prefix="HomeSteps JSON-LD parse error")
                continue
            if self.has_usable_address(prop):
                run.add(prop)

        if run.properties:
            self.scrape_logger.log_page_fetched(url, len(run.properties))
            return

        self.collect_cards(run, html, url, city, state)


class ForeclosureSitesScraper(BaseScraper):
    """Listing-aggregator agent over several foreclosure/REO sites.

    Sites run concurrently; one site failing never affects the others.
    """

    AGENT_NAME = "foreclosure-sites"

    def __init__(self, sites: Optional[List[BaseScraper]] = None, **kwargs):
        """Initialize the aggregator.

        Args:
            sites: Site scrapers to run, defaults to all four known sites
            **kwargs: BaseScraper options, shared with the default sites
        """
        super().__init__(**kwargs)
        if sites is None:
            sites = [
                ForeclosureDotComScraper(**kwargs),
                HudHomesScraper(**kwargs),
                HomePathScraper(**kwargs),
                HomeStepsScraper(**kwargs),
            ]
        self.sites = sites

    async def _search(self, run: AgentRun, city: str, state: str,
                      distress_type: Optional[str] = None, **filters) -> None:
        results = await asyncio.gather(
            *(site.search(city, state, distress_type=distress_type) for site in self.sites),
            return_exceptions=True,
        )

        for site, result in zip(self.sites, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                run.add_error(result, prefix=f"Foreclosure site agent {site.AGENT_NAME} failed")
            else:
                run.merge(result)

    async def aclose(self) -> None:
        for site in self.sites:
            await site.aclose()
        await super().aclose()
